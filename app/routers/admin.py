"""
Admin router — streak debugging for development and staging.

POST /admin/users/{id}/streak/set-freezes
POST /admin/users/{id}/streak/add-history
POST /admin/users/{id}/streak/reset
POST /admin/users/{id}/streak/preset

Every mutation goes through StreakSyncService, so counts stay derived.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.schemas.common import INVALID_VALUE, NOT_FOUND
from app.schemas.streak import (
    AddHistoryRequest,
    AdminStreakResponse,
    PresetRequest,
    SetFreezesRequest,
    StreakSnapshotResponse,
)
from app.services.streak_sync import StreakSyncService, get_streak_sync

router = APIRouter(
    prefix="/admin/users/{user_id}/streak",
    tags=["admin"],
    responses={**NOT_FOUND, **INVALID_VALUE},
)


@router.post("/set-freezes", response_model=AdminStreakResponse)
def admin_set_freezes(
    user_id: int,
    payload: SetFreezesRequest,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    snapshot = sync.set_freezes(db, user_id, payload.freezes)
    return AdminStreakResponse(
        message=f"Streak freezes set to {payload.freezes}",
        streak=StreakSnapshotResponse.from_snapshot(snapshot),
    )


@router.post("/add-history", response_model=AdminStreakResponse)
def admin_add_history(
    user_id: int,
    payload: AddHistoryRequest,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    snapshot = sync.add_history_days(db, user_id, payload.dates)
    return AdminStreakResponse(
        message=f"Added {len(payload.dates)} dates to history",
        streak=StreakSnapshotResponse.from_snapshot(snapshot),
    )


@router.post("/reset", response_model=AdminStreakResponse)
def admin_reset(
    user_id: int,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    snapshot = sync.reset(db, user_id)
    return AdminStreakResponse(
        message="Streak data reset to defaults",
        streak=StreakSnapshotResponse.from_snapshot(snapshot),
    )


@router.post("/preset", response_model=AdminStreakResponse)
def admin_preset(
    user_id: int,
    payload: PresetRequest,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    snapshot = sync.apply_preset(db, user_id, payload.preset)
    return AdminStreakResponse(
        message=f"Applied preset: {payload.preset}",
        streak=StreakSnapshotResponse.from_snapshot(snapshot),
    )
