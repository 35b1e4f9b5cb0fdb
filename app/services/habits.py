"""
Habit service: habit CRUD and the completion ledger.

Every mutation that can change today's classification ends with a call to
StreakSyncService.sync(); nothing here touches streak state directly.

Public API
----------
create_habit(db, sync, user_id, data)            -> (Habit, StreakSnapshot)
list_habits(db, user_id)                         -> list[Habit]
update_habit(db, sync, habit_id, name, completions) -> (Habit, StreakSnapshot)
toggle_completion(db, sync, habit_id, day)       -> (Habit, bool, StreakSnapshot)
delete_habit(db, sync, habit_id)                 -> StreakSnapshot
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, ValidationError
from app.models.habit import (
    ALL_WEEKDAYS,
    DEFAULT_DURATION_TARGET,
    Habit,
    HabitCompletion,
    HabitType,
    HabitVisibility,
)
from app.services import squads
from app.services.streak_state import StreakSnapshot
from app.services.streak_sync import StreakSyncService
from app.services.users import get_user

logger = logging.getLogger("streaks.habits")


@dataclass
class HabitDraft:
    """Lightweight DTO so the service layer stays schema-agnostic."""
    name: str
    identity: str = ""
    habit_type: str = HabitType.build.value
    goal: int = 1
    active_days: list[int] = field(default_factory=lambda: list(ALL_WEEKDAYS))
    duration_target: Optional[int] = DEFAULT_DURATION_TARGET
    visibility: str = HabitVisibility.private.value


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _validate(draft: HabitDraft) -> None:
    if not draft.name or not draft.name.strip():
        raise ValidationError("name", "Habit name must not be empty.")
    if draft.goal < 1:
        raise ValidationError("goal", "Goal must be at least 1.", draft.goal)
    if not draft.active_days:
        raise ValidationError("active_days", "At least one active weekday is required.")
    bad = [d for d in draft.active_days if d not in ALL_WEEKDAYS]
    if bad:
        raise ValidationError("active_days", "Weekdays must be within 1 (Mon) .. 7 (Sun).", bad)
    if draft.duration_target is not None and draft.duration_target < 1:
        raise ValidationError("duration_target", "Duration target must be at least 1.", draft.duration_target)
    if draft.habit_type not in {t.value for t in HabitType}:
        raise ValidationError("habit_type", "Habit type must be 'build' or 'break'.", draft.habit_type)
    if draft.visibility not in {v.value for v in HabitVisibility}:
        raise ValidationError("visibility", "Visibility must be 'public' or 'private'.", draft.visibility)


def get_habit(db: Session, habit_id: int) -> Habit:
    habit = db.get(Habit, habit_id)
    if habit is None:
        raise NotFoundError("Habit", habit_id)
    return habit


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def create_habit(
    db: Session, sync: StreakSyncService, user_id: int, draft: HabitDraft
) -> tuple[Habit, StreakSnapshot]:
    get_user(db, user_id)
    _validate(draft)
    habit = Habit(
        user_id=user_id,
        name=draft.name.strip(),
        identity=draft.identity.strip(),
        habit_type=HabitType(draft.habit_type),
        goal=draft.goal,
        active_days=json.dumps(sorted(set(draft.active_days))),
        duration_target=draft.duration_target,
        visibility=HabitVisibility(draft.visibility),
    )
    db.add(habit)
    db.commit()
    db.refresh(habit)
    logger.info("habit created", extra={"user_id": user_id, "habit_id": habit.id})
    # A new applicable habit can turn a full day back into a partial one.
    snapshot = sync.sync(db, user_id)
    return habit, snapshot


def list_habits(db: Session, user_id: int) -> list[Habit]:
    get_user(db, user_id)
    return (
        db.query(Habit)
        .filter(Habit.user_id == user_id)
        .order_by(Habit.created_at.desc(), Habit.id.desc())
        .all()
    )


def _replace_completions(habit: Habit, days: Iterable[date]) -> None:
    wanted = set(days)
    habit.completions = [c for c in habit.completions if c.day in wanted]
    have = {c.day for c in habit.completions}
    for day in sorted(wanted - have):
        habit.completions.append(HabitCompletion(day=day))


def update_habit(
    db: Session,
    sync: StreakSyncService,
    habit_id: int,
    name: Optional[str] = None,
    completions: Optional[list[date]] = None,
) -> tuple[Habit, StreakSnapshot]:
    """Rename and/or replace the whole completion ledger (retroactive edits)."""
    habit = get_habit(db, habit_id)
    today = sync.anchor.today()
    if completions is not None:
        future = sorted(d for d in set(completions) if d > today)
        if future:
            raise ValidationError(
                "completions",
                "Cannot record completions on a future day.",
                [str(d) for d in future],
            )
    if name is not None:
        if not name.strip():
            raise ValidationError("name", "Habit name must not be empty.")
        habit.name = name.strip()
    if completions is not None:
        _replace_completions(habit, completions)
    db.commit()
    db.refresh(habit)
    squads.refresh_squads_for_user(db, habit.user_id, today)
    snapshot = sync.sync(db, habit.user_id)
    return habit, snapshot


def _flip_once(db: Session, habit_id: int, day: date) -> bool:
    existing = (
        db.query(HabitCompletion)
        .filter(HabitCompletion.habit_id == habit_id, HabitCompletion.day == day)
        .first()
    )
    if existing is not None:
        db.delete(existing)
        completed = False
    else:
        db.add(HabitCompletion(habit_id=habit_id, day=day))
        completed = True
    db.commit()
    return completed


def _flip_completion(db: Session, habit_id: int, day: date) -> bool:
    """Insert or delete one ledger row, reading it fresh. Returns the new completed flag."""
    try:
        return _flip_once(db, habit_id, day)
    except IntegrityError:
        # Another process inserted the same day first; flip from its row.
        db.rollback()
        return _flip_once(db, habit_id, day)


def toggle_completion(
    db: Session,
    sync: StreakSyncService,
    habit_id: int,
    day: Optional[date] = None,
) -> tuple[Habit, bool, StreakSnapshot]:
    """Flip the ledger entry for `day` (default today). Returns the new completed flag."""
    habit = get_habit(db, habit_id)
    user_id = habit.user_id
    today = sync.anchor.today()
    target = day or today
    if target > today:
        raise ValidationError("day", "Cannot complete a habit on a future day.", str(target))

    with sync.locks.hold(user_id):
        completed = _flip_completion(db, habit_id, target)
    db.refresh(habit)
    logger.info(
        "habit completion toggled",
        extra={"habit_id": habit_id, "day": str(target), "completed": completed},
    )

    squads.refresh_squads_for_user(db, user_id, today)
    snapshot = sync.sync(db, user_id)
    return habit, completed, snapshot


def delete_habit(db: Session, sync: StreakSyncService, habit_id: int) -> StreakSnapshot:
    habit = get_habit(db, habit_id)
    user_id = habit.user_id
    squads.unlink_habit(db, habit.id, sync.anchor.today())
    db.delete(habit)
    db.commit()
    logger.info("habit deleted", extra={"user_id": user_id, "habit_id": habit_id})
    # Removing the last unfinished habit can complete the day.
    return sync.sync(db, user_id)
