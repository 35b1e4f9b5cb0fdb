"""
Habits router.

POST   /users/{id}/habits   — create habit (syncs streak)
GET    /users/{id}/habits   — list habits
PUT    /habits/{id}         — rename / replace completions (syncs streak)
POST   /habits/{id}/toggle  — toggle one day's completion (syncs streak)
DELETE /habits/{id}         — delete habit, unlink from squads (syncs streak)
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.schemas.common import INVALID_VALUE, NOT_FOUND
from app.schemas.habit import (
    HabitCreateRequest,
    HabitDeletedResponse,
    HabitResponse,
    HabitUpdateRequest,
    HabitWithStreakResponse,
    ToggleRequest,
    ToggleResponse,
)
from app.schemas.streak import StreakSnapshotResponse
from app.services import habits as habit_service
from app.services.streak_sync import StreakSyncService, get_streak_sync

router = APIRouter(tags=["habits"], responses={**NOT_FOUND, **INVALID_VALUE})


@router.post(
    "/users/{user_id}/habits",
    response_model=HabitWithStreakResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a habit",
)
def habits_create(
    user_id: int,
    payload: HabitCreateRequest,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    draft = habit_service.HabitDraft(
        name=payload.name,
        identity=payload.identity,
        habit_type=payload.type,
        goal=payload.goal,
        active_days=payload.days,
        duration_target=payload.duration,
        visibility=payload.visibility,
    )
    habit, snapshot = habit_service.create_habit(db, sync, user_id, draft)
    return HabitWithStreakResponse(
        habit=HabitResponse.from_habit(habit),
        streak=StreakSnapshotResponse.from_snapshot(snapshot),
    )


@router.get("/users/{user_id}/habits", response_model=list[HabitResponse], summary="List habits")
def habits_list(user_id: int, db: Session = Depends(get_db)):
    return [HabitResponse.from_habit(h) for h in habit_service.list_habits(db, user_id)]


@router.put("/habits/{habit_id}", response_model=HabitWithStreakResponse, summary="Update a habit")
def habits_update(
    habit_id: int,
    payload: HabitUpdateRequest,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    habit, snapshot = habit_service.update_habit(
        db, sync, habit_id, name=payload.name, completions=payload.completions
    )
    return HabitWithStreakResponse(
        habit=HabitResponse.from_habit(habit),
        streak=StreakSnapshotResponse.from_snapshot(snapshot),
    )


@router.post("/habits/{habit_id}/toggle", response_model=ToggleResponse, summary="Toggle a completion")
def habits_toggle(
    habit_id: int,
    payload: Optional[ToggleRequest] = None,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    day = payload.day if payload else None
    habit, completed, snapshot = habit_service.toggle_completion(db, sync, habit_id, day)
    return ToggleResponse(
        habit=HabitResponse.from_habit(habit),
        day=str(day or sync.anchor.today()),
        completed=completed,
        streak=StreakSnapshotResponse.from_snapshot(snapshot),
    )


@router.delete("/habits/{habit_id}", response_model=HabitDeletedResponse, summary="Delete a habit")
def habits_delete(
    habit_id: int,
    db: Session = Depends(get_db),
    sync: StreakSyncService = Depends(get_streak_sync),
):
    snapshot = habit_service.delete_habit(db, sync, habit_id)
    return HabitDeletedResponse(
        message="Habit removed",
        streak=StreakSnapshotResponse.from_snapshot(snapshot),
    )
