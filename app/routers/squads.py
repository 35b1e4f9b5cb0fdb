"""
Squads router.

POST /squads                — create a squad (creator joins)
POST /squads/{id}/members   — add a member / link a habit
GET  /squads/{id}           — squad streak plus members' stored streaks
POST /squads/reset-stale    — zero squad streaks not credited since yesterday
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.models.squad import Squad
from app.schemas.common import INVALID_VALUE, NOT_FOUND
from app.schemas.squad import (
    AddMemberRequest,
    SquadCreateRequest,
    SquadMemberResponse,
    SquadResponse,
    StaleResetResponse,
)
from app.schemas.streak import StreakSnapshotResponse
from app.services import squads as squad_service
from app.services.streak_sync import StreakSyncService, get_streak_sync

router = APIRouter(prefix="/squads", tags=["squads"], responses={**NOT_FOUND, **INVALID_VALUE})


def _squad_out(db: Session, sync: StreakSyncService, squad: Squad) -> SquadResponse:
    return SquadResponse(
        id=squad.id,
        name=squad.name,
        description=squad.description,
        creator_id=squad.creator_id,
        group_streak=squad.group_streak,
        last_completed_date_ist=str(squad.last_completed_date_ist) if squad.last_completed_date_ist else None,
        members=[
            SquadMemberResponse(
                user_id=m.user_id,
                username=m.username,
                habit_id=m.habit_id,
                completed_today=m.completed_today,
                streak=StreakSnapshotResponse.from_snapshot(m.streak),
            )
            for m in squad_service.member_views(db, sync, squad.id)
        ],
    )


@router.post("", response_model=SquadResponse, status_code=status.HTTP_201_CREATED)
def squads_create(
    payload: SquadCreateRequest,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    squad = squad_service.create_squad(db, payload.creator_id, payload.name, payload.description)
    return _squad_out(db, sync, squad)


@router.post("/reset-stale", response_model=StaleResetResponse)
def squads_reset_stale(
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    return StaleResetResponse(reset=squad_service.reset_stale_squad_streaks(db, sync.anchor.today()))


@router.post("/{squad_id}/members", response_model=SquadResponse)
def squads_add_member(
    squad_id: int,
    payload: AddMemberRequest,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    squad_service.add_member(db, squad_id, payload.user_id, payload.habit_id)
    squad = squad_service.get_squad(db, squad_id)
    if squad_service.refresh_squad_streak(db, squad, sync.anchor.today()):
        db.commit()
    return _squad_out(db, sync, squad)


@router.get("/{squad_id}", response_model=SquadResponse)
def squads_get(
    squad_id: int,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    return _squad_out(db, sync, squad_service.get_squad(db, squad_id))
