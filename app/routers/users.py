"""
Users router.

POST /users                — create an account
POST /users/login          — resolve an account by username, refresh its streak
GET  /users/{id}/profile   — profile with a freshly synced streak
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.models.user import User
from app.schemas.common import INVALID_VALUE, NOT_FOUND
from app.schemas.streak import StreakSnapshotResponse
from app.schemas.user import LoginRequest, ProfileResponse, UserCreateRequest, UserResponse
from app.services.streak_sync import StreakSyncService, get_streak_sync
from app.services.users import create_user, get_user, get_user_by_username

router = APIRouter(prefix="/users", tags=["users"])


def _user_out(u: User) -> UserResponse:
    return UserResponse(id=u.id, username=u.username, display_name=u.display_name)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED,
             summary="Create a user", responses=INVALID_VALUE)
def users_create(payload: UserCreateRequest, db: Session = Depends(get_db)):
    return _user_out(create_user(db, payload.username, payload.display_name))


@router.post(
    "/login",
    response_model=ProfileResponse,
    summary="Log in by username",
    responses=NOT_FOUND,
)
def users_login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    """Credentials are checked upstream; this resolves the user and syncs the streak."""
    user = get_user_by_username(db, payload.username)
    snapshot = sync.sync(db, user.id)
    return ProfileResponse(user=_user_out(user), streak=StreakSnapshotResponse.from_snapshot(snapshot))


@router.get("/{user_id}/profile", response_model=ProfileResponse, summary="Profile with synced streak",
            responses=NOT_FOUND)
def users_profile(
    user_id: int,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    user = get_user(db, user_id)
    snapshot = sync.sync(db, user.id)
    return ProfileResponse(user=_user_out(user), streak=StreakSnapshotResponse.from_snapshot(snapshot))
