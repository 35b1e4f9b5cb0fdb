"""
Streak sync — the single writer of per-user streak state.

Public API
----------
StreakSyncService.sync(db, user_id)                  -> StreakSnapshot
StreakSyncService.get_snapshot(db, user_id)          -> StreakSnapshot  (read only)
StreakSyncService.recovery_plan(db, user_id)         -> RecoveryPlan    (read only)
StreakSyncService.apply_freeze(db, user_id)          -> (StreakSnapshot, RecoveryPlan)
StreakSyncService.set_freezes / add_history_days / reset / apply_preset   (admin)

sync() algorithm
----------------
  1. Load the user's habits and streak state (default state if none stored).
  2. Classify today. A rest day (no applicable habits) returns the stored
     snapshot untouched: no writes.
  3. Full    -> today in history, out of ember days, stamp last completed.
     Partial -> today in ember days, out of history, stamp last completed.
     None    -> today out of both; if that removed something, the last
                completed day falls back to the latest history day.
     `history_changed` records whether any membership actually moved.
  4. Recount the streak from history + frozen days.
  5. Milestones: a drop to 0 clears awarded milestones. A rise with
     history_changed pays one freeze for milestone floor(count / 7), once.
     Gating on history_changed stops re-syncs and toggle-off/toggle-on from
     paying the same milestone twice.
  6. Persist only when something differs; one commit per call.

Concurrency
-----------
Calls for one user are serialized by an in-process lock. Across processes the
row's version counter rejects a stale write, and a lost race to insert the
user's first row trips the unique key; either way the call rolls back and
re-runs from a fresh read, up to settings.SYNC_MAX_RETRIES times. Any other
integrity error (a CHECK constraint) propagates unchanged.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Iterable, Iterator, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.errors import (
    InsufficientCurrencyError,
    NoRecoveryAvailableError,
    NotFoundError,
    StreakWriteConflictError,
    ValidationError,
)
from app.models.habit import Habit
from app.models.streak import StreakRecord
from app.models.user import User
from app.services.classifier import DayClass, DayClassification, HabitView, classify
from app.services.recovery import RecoveryPlan, plan_recovery
from app.services.streak_counter import count_streak
from app.services.streak_state import (
    STATUS_FOR_DAY,
    StreakSnapshot,
    StreakState,
    StreakStatus,
    load_record,
    load_state,
    write_state,
)
from app.services.time_anchor import TimeAnchor, get_time_anchor, parse_civil_date

logger = logging.getLogger("streaks.sync")

T = TypeVar("T")

PRESETS = ("test-freeze", "test-recovery", "test-long-streak")


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class UserLockRegistry:
    """One lock per user id; different users never contend.

    An entry lives only while some caller holds or waits on it, so the map
    stays bounded by the number of users with a call in flight.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[int, _LockEntry] = {}

    @contextmanager
    def hold(self, user_id: int) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(user_id)
            if entry is None:
                entry = self._entries[user_id] = _LockEntry()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[user_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


class _ConcurrentCreate(Exception):
    """Another writer inserted the user's streak row first; re-run from a fresh read."""


class StreakSyncService:

    def __init__(
        self,
        anchor: TimeAnchor,
        locks: Optional[UserLockRegistry] = None,
        milestone_interval: Optional[int] = None,
        max_retries: Optional[int] = None,
    ):
        self.anchor = anchor
        self.locks = locks if locks is not None else UserLockRegistry()
        self.milestone_interval = milestone_interval or settings.FREEZE_MILESTONE_INTERVAL
        self.max_retries = max_retries or settings.SYNC_MAX_RETRIES

    # ------------------------------------------------------------------
    # Write path plumbing
    # ------------------------------------------------------------------

    def _run(self, db: Session, user_id: int, operation: Callable[[Session, int], T]) -> T:
        """Run one read-compute-write under the user's lock, retrying stale writes."""
        with self.locks.hold(user_id):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return operation(db, user_id)
                except (StaleDataError, _ConcurrentCreate) as exc:
                    db.rollback()
                    logger.warning(
                        "streak write conflict",
                        extra={"user_id": user_id, "attempt": attempt, "error": type(exc).__name__},
                    )
                    if attempt >= self.max_retries:
                        raise StreakWriteConflictError(user_id, attempt) from exc
                except Exception:
                    db.rollback()
                    raise

    def _persist(
        self,
        db: Session,
        record: Optional[StreakRecord],
        state: StreakState,
    ) -> None:
        if record is not None:
            write_state(record, state)
            db.commit()
            return

        record = StreakRecord(user_id=state.user_id)
        write_state(record, state)
        db.add(record)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            # Only a lost race on the unique user_id is retryable.
            if load_record(db, state.user_id) is None:
                raise
            raise _ConcurrentCreate(state.user_id) from exc

    @staticmethod
    def _require_user(db: Session, user_id: int) -> None:
        if db.get(User, user_id) is None:
            raise NotFoundError("User", user_id)

    def _classify_today(self, db: Session, user_id: int) -> DayClassification:
        habits = (
            db.query(Habit)
            .options(selectinload(Habit.completions))
            .filter(Habit.user_id == user_id)
            .all()
        )
        return classify([HabitView.from_habit(h) for h in habits], self.anchor.today())

    def _recount(self, state: StreakState) -> None:
        """Refresh streak_count; a drop to zero forfeits awarded milestones."""
        old = state.streak_count
        state.streak_count = count_streak(
            state.history, state.frozen_days, state.ember_days, today=self.anchor.today()
        )
        if state.streak_count == 0 and old > 0:
            state.awarded_milestones.clear()

    # ------------------------------------------------------------------
    # sync
    # ------------------------------------------------------------------

    def sync(self, db: Session, user_id: int) -> StreakSnapshot:
        return self._run(db, user_id, self._sync_once)

    def _sync_once(self, db: Session, user_id: int) -> StreakSnapshot:
        self._require_user(db, user_id)
        result = self._classify_today(db, user_id)
        record, state = load_state(db, user_id)

        if result.is_rest_day:
            logger.debug("rest day, streak untouched", extra={"user_id": user_id})
            return StreakSnapshot.from_state(state, streak_updated=False)

        before = state.copy()
        history_changed = self._apply_day(state, result)

        old_count = before.streak_count
        self._recount(state)
        awarded = self._award_milestone(state, old_count, history_changed)

        state.completion_percentage = result.percentage
        state.streak_state = STATUS_FOR_DAY[result.state]

        changed = history_changed or state != before
        if changed:
            self._persist(db, record, state)
            logger.info(
                "streak synced",
                extra={
                    "user_id": user_id,
                    "day_class": result.state.value,
                    "old_count": old_count,
                    "new_count": state.streak_count,
                    "freeze_awarded": awarded,
                },
            )
        else:
            logger.debug("streak unchanged", extra={"user_id": user_id})

        return StreakSnapshot.from_state(
            state,
            streak_updated=changed,
            completed_habits=result.completed_count,
            total_habits=result.total_count,
        )

    def _apply_day(self, state: StreakState, result: DayClassification) -> bool:
        today = result.day
        if result.state is DayClass.full:
            changed = state.mark_full(today)
        elif result.state is DayClass.partial:
            changed = state.mark_partial(today)
        else:
            changed = state.mark_none(today)
            if changed:
                state.last_completed_date_ist = state.latest_history_day()
                state.last_completed_date = (
                    self.anchor.start_of_day(state.last_completed_date_ist)
                    if state.last_completed_date_ist else None
                )
            return changed

        if changed:
            state.last_completed_date_ist = today
            state.last_completed_date = self.anchor.now()
        return changed

    def _award_milestone(self, state: StreakState, old_count: int, history_changed: bool) -> bool:
        new_count = state.streak_count
        if new_count <= old_count or not history_changed:
            return False
        milestone = new_count // self.milestone_interval
        if milestone == 0 or milestone in state.awarded_milestones:
            return False
        state.streak_freezes += 1
        state.awarded_milestones.add(milestone)
        return True

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def get_snapshot(self, db: Session, user_id: int) -> StreakSnapshot:
        """Persisted snapshot plus today's habit tally; never writes."""
        self._require_user(db, user_id)
        result = self._classify_today(db, user_id)
        _, state = load_state(db, user_id)
        return StreakSnapshot.from_state(
            state,
            streak_updated=False,
            completed_habits=result.completed_count,
            total_habits=result.total_count,
        )

    def recount(self, db: Session, user_id: int) -> int:
        """Ad-hoc StreakCounter run over the stored days (no sync, no write)."""
        self._require_user(db, user_id)
        _, state = load_state(db, user_id)
        return count_streak(
            state.history, state.frozen_days, state.ember_days, today=self.anchor.today()
        )

    def recovery_plan(self, db: Session, user_id: int) -> RecoveryPlan:
        self._require_user(db, user_id)
        _, state = load_state(db, user_id)
        return plan_recovery(state.history, state.frozen_days, today=self.anchor.today())

    # ------------------------------------------------------------------
    # Freeze spend: the only path that grows frozen_days
    # ------------------------------------------------------------------

    def apply_freeze(self, db: Session, user_id: int) -> tuple[StreakSnapshot, RecoveryPlan]:
        return self._run(db, user_id, self._apply_freeze_once)

    def _apply_freeze_once(self, db: Session, user_id: int) -> tuple[StreakSnapshot, RecoveryPlan]:
        self._require_user(db, user_id)
        record, state = load_state(db, user_id)
        plan = plan_recovery(state.history, state.frozen_days, today=self.anchor.today())
        if not plan.recoverable:
            raise NoRecoveryAvailableError()
        if state.streak_freezes < plan.days_needed:
            raise InsufficientCurrencyError(available=state.streak_freezes, required=plan.days_needed)

        state.frozen_days.update(plan.missing_dates)
        state.streak_freezes -= plan.days_needed
        self._recount(state)
        self._persist(db, record, state)
        logger.info(
            "streak freeze applied",
            extra={
                "user_id": user_id,
                "days_frozen": plan.days_needed,
                "freezes_left": state.streak_freezes,
                "new_count": state.streak_count,
            },
        )
        return StreakSnapshot.from_state(state, streak_updated=True), plan

    # ------------------------------------------------------------------
    # Admin / debug mutations
    # ------------------------------------------------------------------

    def set_freezes(self, db: Session, user_id: int, freezes: int) -> StreakSnapshot:
        if isinstance(freezes, bool) or not isinstance(freezes, int):
            raise ValidationError("freezes", "Freeze count must be an integer.", freezes)
        if not 0 <= freezes <= settings.MAX_STREAK_FREEZES:
            raise ValidationError(
                "freezes",
                f"Freeze count must be between 0 and {settings.MAX_STREAK_FREEZES}.",
                freezes,
            )

        def _op(db: Session, user_id: int) -> StreakSnapshot:
            self._require_user(db, user_id)
            record, state = load_state(db, user_id)
            state.streak_freezes = freezes
            self._persist(db, record, state)
            logger.info("admin set freezes", extra={"user_id": user_id, "freezes": freezes})
            return StreakSnapshot.from_state(state, streak_updated=True)

        return self._run(db, user_id, _op)

    def add_history_days(self, db: Session, user_id: int, days: Iterable[str | date]) -> StreakSnapshot:
        parsed = self._parse_days(days)

        def _op(db: Session, user_id: int) -> StreakSnapshot:
            self._require_user(db, user_id)
            record, state = load_state(db, user_id)
            for day in parsed:
                state.mark_full(day)
            latest = max(parsed)
            if state.last_completed_date_ist is None or latest > state.last_completed_date_ist:
                state.last_completed_date_ist = latest
                state.last_completed_date = self.anchor.start_of_day(latest)
            self._recount(state)
            self._persist(db, record, state)
            logger.info("admin added history", extra={"user_id": user_id, "days": len(parsed)})
            return StreakSnapshot.from_state(state, streak_updated=True)

        return self._run(db, user_id, _op)

    def _parse_days(self, days: Iterable[str | date]) -> list[date]:
        parsed: list[date] = []
        for raw in days or []:
            try:
                day = raw if isinstance(raw, date) else parse_civil_date(raw)
            except (TypeError, ValueError):
                raise ValidationError("dates", "Dates must be YYYY-MM-DD strings.", raw)
            if day > self.anchor.today():
                raise ValidationError("dates", "History days cannot be in the future.", str(day))
            parsed.append(day)
        if not parsed:
            raise ValidationError("dates", "At least one date is required.")
        return parsed

    def reset(self, db: Session, user_id: int) -> StreakSnapshot:
        def _op(db: Session, user_id: int) -> StreakSnapshot:
            self._require_user(db, user_id)
            record, _ = load_state(db, user_id)
            state = StreakState(user_id=user_id)
            self._persist(db, record, state)
            logger.info("admin reset streak", extra={"user_id": user_id})
            return StreakSnapshot.from_state(state, streak_updated=True)

        return self._run(db, user_id, _op)

    def apply_preset(self, db: Session, user_id: int, preset: str) -> StreakSnapshot:
        if preset not in PRESETS:
            raise ValidationError("preset", f"Invalid preset. Options: {', '.join(PRESETS)}", preset)

        def _op(db: Session, user_id: int) -> StreakSnapshot:
            self._require_user(db, user_id)
            record, _ = load_state(db, user_id)
            state = self._preset_state(user_id, preset)
            self._persist(db, record, state)
            logger.info("admin applied preset", extra={"user_id": user_id, "preset": preset})
            return StreakSnapshot.from_state(state, streak_updated=True)

        return self._run(db, user_id, _op)

    def _preset_state(self, user_id: int, preset: str) -> StreakState:
        today = self.anchor.today()

        def days_back(n: int, skip: int = 0) -> set[date]:
            return {today - timedelta(days=i) for i in range(skip, n + skip)}

        if preset == "test-freeze":
            # 7-day streak through today, milestone 1 paid, 2 freezes banked
            state = StreakState(user_id, history=days_back(7), streak_freezes=2, awarded_milestones={1})
        elif preset == "test-recovery":
            # 5 full days ending the day before yesterday; yesterday missed
            state = StreakState(user_id, history=days_back(5, skip=2), streak_freezes=1)
        else:
            # 30-day streak, every milestone paid and spent
            state = StreakState(user_id, history=days_back(30), awarded_milestones={1, 2, 3, 4})

        state.streak_count = count_streak(state.history, state.frozen_days, today=today)
        state.streak_state = StreakStatus.active if today in state.history else StreakStatus.extinguished
        state.completion_percentage = 100 if today in state.history else 0
        state.last_completed_date_ist = state.latest_history_day()
        state.last_completed_date = self.anchor.start_of_day(state.last_completed_date_ist)
        return state


_default_service: Optional[StreakSyncService] = None


def get_streak_sync() -> StreakSyncService:
    """FastAPI dependency; the lock registry must be shared, so the service is too."""
    global _default_service
    if _default_service is None:
        _default_service = StreakSyncService(get_time_anchor())
    return _default_service
