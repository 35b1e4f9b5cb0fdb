"""
Streak state — the per-user derived record and its persisted representation.

Day bookkeeping
---------------
Every civil day is in at most one of `history` (full day) and `ember_days`
(partial day). The only way to move a day between them is through
mark_full / mark_partial / mark_none, so the two sets stay disjoint by
construction. `frozen_days` is separate: days bought back with freezes, counted
together with history, kept apart for audit and display.

Persisted form
--------------
to_document() / from_document() produce the camelCase JSON document:

  streakCount: int, history/emberDays/frozenDays: ["YYYY-MM-DD", ...],
  streakFreezes: int, awardedMilestones: [int, ...],
  streakState: "active" | "frozen" | "extinguished",
  completionPercentage: 0..100, lastCompletedDateIST: "YYYY-MM-DD" | null,
  lastCompletedDate: ISO-8601 timestamp | null

The ORM row (app/models/streak.py) stores the same values column by column.
"""
from __future__ import annotations

import copy
import enum
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from app.models.streak import StreakRecord
from app.services.classifier import DayClass
from app.services.time_anchor import format_civil_date, parse_civil_date


class StreakStatus(str, enum.Enum):
    active = "active"              # today is a full day
    frozen = "frozen"              # today is an ember (partial) day
    extinguished = "extinguished"  # nothing done today


STATUS_FOR_DAY: dict[DayClass, StreakStatus] = {
    DayClass.full: StreakStatus.active,
    DayClass.partial: StreakStatus.frozen,
    DayClass.none: StreakStatus.extinguished,
}


def _dates_to_json(days: Iterable[date]) -> str:
    return json.dumps(sorted(format_civil_date(d) for d in days))


def _dates_from_json(raw: Optional[str]) -> set[date]:
    return {parse_civil_date(s) for s in json.loads(raw or "[]")}


@dataclass
class StreakState:
    user_id: int
    streak_count: int = 0
    history: set[date] = field(default_factory=set)
    ember_days: set[date] = field(default_factory=set)
    frozen_days: set[date] = field(default_factory=set)
    streak_freezes: int = 0
    awarded_milestones: set[int] = field(default_factory=set)
    streak_state: StreakStatus = StreakStatus.extinguished
    completion_percentage: int = 0
    last_completed_date: Optional[datetime] = None
    last_completed_date_ist: Optional[date] = None

    # -- day bookkeeping --------------------------------------------------

    def mark_full(self, day: date) -> bool:
        """Put `day` in history. Returns True if membership changed."""
        changed = day not in self.history or day in self.ember_days
        self.history.add(day)
        self.ember_days.discard(day)
        return changed

    def mark_partial(self, day: date) -> bool:
        changed = day not in self.ember_days or day in self.history
        self.ember_days.add(day)
        self.history.discard(day)
        return changed

    def mark_none(self, day: date) -> bool:
        changed = day in self.history or day in self.ember_days
        self.history.discard(day)
        self.ember_days.discard(day)
        return changed

    def latest_history_day(self) -> Optional[date]:
        return max(self.history) if self.history else None

    def copy(self) -> "StreakState":
        return copy.deepcopy(self)

    # -- persisted document -----------------------------------------------

    def to_document(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "streakCount": self.streak_count,
            "history": sorted(format_civil_date(d) for d in self.history),
            "emberDays": sorted(format_civil_date(d) for d in self.ember_days),
            "frozenDays": sorted(format_civil_date(d) for d in self.frozen_days),
            "streakFreezes": self.streak_freezes,
            "awardedMilestones": sorted(self.awarded_milestones),
            "streakState": self.streak_state.value,
            "completionPercentage": self.completion_percentage,
            "lastCompletedDateIST": (
                format_civil_date(self.last_completed_date_ist)
                if self.last_completed_date_ist else None
            ),
            "lastCompletedDate": (
                self.last_completed_date.isoformat() if self.last_completed_date else None
            ),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "StreakState":
        last_ist = doc.get("lastCompletedDateIST")
        last_ts = doc.get("lastCompletedDate")
        return cls(
            user_id=doc["userId"],
            streak_count=int(doc.get("streakCount", 0)),
            history={parse_civil_date(s) for s in doc.get("history", [])},
            ember_days={parse_civil_date(s) for s in doc.get("emberDays", [])},
            frozen_days={parse_civil_date(s) for s in doc.get("frozenDays", [])},
            streak_freezes=int(doc.get("streakFreezes", 0)),
            awarded_milestones={int(m) for m in doc.get("awardedMilestones", [])},
            streak_state=StreakStatus(doc.get("streakState", StreakStatus.extinguished.value)),
            completion_percentage=int(doc.get("completionPercentage", 0)),
            last_completed_date_ist=parse_civil_date(last_ist) if last_ist else None,
            last_completed_date=datetime.fromisoformat(last_ts) if last_ts else None,
        )


@dataclass
class StreakSnapshot:
    """What a sync call returns to its caller."""
    streak: int
    streak_updated: bool
    last_completed_date: Optional[datetime]
    history: list[date]
    last_completed_date_ist: Optional[date]
    streak_freezes: int
    frozen_days: list[date]
    ember_days: list[date]
    streak_state: StreakStatus
    completion_percentage: int
    completed_habits: int
    total_habits: int

    @classmethod
    def from_state(
        cls,
        state: StreakState,
        *,
        streak_updated: bool,
        completed_habits: int = 0,
        total_habits: int = 0,
    ) -> "StreakSnapshot":
        return cls(
            streak=state.streak_count,
            streak_updated=streak_updated,
            last_completed_date=state.last_completed_date,
            history=sorted(state.history),
            last_completed_date_ist=state.last_completed_date_ist,
            streak_freezes=state.streak_freezes,
            frozen_days=sorted(state.frozen_days),
            ember_days=sorted(state.ember_days),
            streak_state=state.streak_state,
            completion_percentage=state.completion_percentage,
            completed_habits=completed_habits,
            total_habits=total_habits,
        )


# ---------------------------------------------------------------------------
# ORM mapping
# ---------------------------------------------------------------------------

def state_from_record(record: StreakRecord) -> StreakState:
    return StreakState(
        user_id=record.user_id,
        streak_count=record.streak_count,
        history=_dates_from_json(record.history),
        ember_days=_dates_from_json(record.ember_days),
        frozen_days=_dates_from_json(record.frozen_days),
        streak_freezes=record.streak_freezes,
        awarded_milestones=set(json.loads(record.awarded_milestones or "[]")),
        streak_state=StreakStatus(record.streak_state),
        completion_percentage=record.completion_percentage,
        last_completed_date=record.last_completed_date,
        last_completed_date_ist=record.last_completed_date_ist,
    )


def write_state(record: StreakRecord, state: StreakState) -> None:
    """Copy every field of `state` onto `record` (caller commits)."""
    record.streak_count = state.streak_count
    record.history = _dates_to_json(state.history)
    record.ember_days = _dates_to_json(state.ember_days)
    record.frozen_days = _dates_to_json(state.frozen_days)
    record.streak_freezes = state.streak_freezes
    record.awarded_milestones = json.dumps(sorted(state.awarded_milestones))
    record.streak_state = state.streak_state.value
    record.completion_percentage = state.completion_percentage
    record.last_completed_date = state.last_completed_date
    record.last_completed_date_ist = state.last_completed_date_ist


def load_record(db: Session, user_id: int) -> Optional[StreakRecord]:
    return db.query(StreakRecord).filter(StreakRecord.user_id == user_id).first()


def load_state(db: Session, user_id: int) -> tuple[Optional[StreakRecord], StreakState]:
    """Return (row or None, state). A missing row yields a default state, unsaved."""
    record = load_record(db, user_id)
    if record is None:
        return None, StreakState(user_id=user_id)
    return record, state_from_record(record)
