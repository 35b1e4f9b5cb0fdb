"""
Streaks router.

GET  /users/{id}/streak            — persisted snapshot (read only)
POST /users/{id}/streak/sync       — run a sync
GET  /users/{id}/streak/count      — ad-hoc recount, no write
GET  /users/{id}/streak/recovery   — recovery plan for a broken streak
POST /users/{id}/streak/freeze     — spend freezes to recover the gap
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.schemas.common import CONFLICT, NOT_FOUND
from app.schemas.streak import (
    FreezeResponse,
    RecoveryPlanResponse,
    StreakCountResponse,
    StreakSnapshotResponse,
)
from app.services.streak_sync import StreakSyncService, get_streak_sync

router = APIRouter(prefix="/users/{user_id}/streak", tags=["streaks"], responses=NOT_FOUND)


@router.get("", response_model=StreakSnapshotResponse, summary="Stored streak snapshot")
def streak_get(
    user_id: int,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    return StreakSnapshotResponse.from_snapshot(sync.get_snapshot(db, user_id))


@router.post("/sync", response_model=StreakSnapshotResponse, summary="Recompute today's streak")
def streak_sync(
    user_id: int,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    return StreakSnapshotResponse.from_snapshot(sync.sync(db, user_id))


@router.get("/count", response_model=StreakCountResponse, summary="Recount without syncing")
def streak_count(
    user_id: int,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    return StreakCountResponse(userId=user_id, streak=sync.recount(db, user_id), asOf=sync.anchor.today())


@router.get("/recovery", response_model=RecoveryPlanResponse, summary="Plan a freeze recovery")
def streak_recovery(
    user_id: int,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    return RecoveryPlanResponse.from_plan(sync.recovery_plan(db, user_id))


@router.post(
    "/freeze",
    response_model=FreezeResponse,
    summary="Apply streak freezes",
    responses=CONFLICT,
)
def streak_freeze(
    user_id: int,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    """
    Fill the most recent gap in the streak with frozen days.

    Costs one freeze per missing day; rejected as a whole when the balance is short.
    """
    snapshot, plan = sync.apply_freeze(db, user_id)
    return FreezeResponse(
        message=f"Recovered {plan.days_needed} day(s) with streak freezes",
        recovery=RecoveryPlanResponse.from_plan(plan),
        streak=StreakSnapshotResponse.from_snapshot(snapshot),
    )
