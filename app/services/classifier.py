"""
Daily classifier — turns today's applicable habits into a Full / Partial / None day.

A habit is applicable on a day when
  1. it is not finished (completions < duration_target, when a target is set), and
  2. the day's ISO weekday is in the habit's active days.

No applicable habits means a rest day: the result is a sentinel and callers
must leave the streak untouched. Pure: no DB, no clock.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional


class DayClass(str, enum.Enum):
    full = "full"
    partial = "partial"
    none = "none"


@dataclass(frozen=True)
class HabitView:
    """The classifier's only view of a habit record."""
    habit_id: int
    completions: frozenset[date]
    active_days: frozenset[int]
    duration_target: Optional[int] = None

    @classmethod
    def from_habit(cls, habit) -> "HabitView":
        return cls(
            habit_id=habit.id,
            completions=habit.completion_days,
            active_days=habit.active_day_set,
            duration_target=habit.duration_target,
        )

    def is_finished(self) -> bool:
        return self.duration_target is not None and len(self.completions) >= self.duration_target

    def is_applicable(self, day: date) -> bool:
        if self.is_finished():
            return False
        return day.isoweekday() in self.active_days


@dataclass(frozen=True)
class DayClassification:
    day: date
    percentage: int
    completed_count: int
    total_count: int
    state: Optional[DayClass]   # None on a rest day

    @property
    def is_rest_day(self) -> bool:
        return self.total_count == 0


def completion_percentage(completed: int, total: int) -> int:
    if total == 0:
        return 0
    raw = Decimal(100 * completed) / Decimal(total)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def applicable_habits(habits: Iterable[HabitView], day: date) -> list[HabitView]:
    return [h for h in habits if h.is_applicable(day)]


def classify(habits: Iterable[HabitView], day: date) -> DayClassification:
    active = applicable_habits(habits, day)
    if not active:
        return DayClassification(day=day, percentage=0, completed_count=0, total_count=0, state=None)

    completed = sum(1 for h in active if day in h.completions)
    pct = completion_percentage(completed, len(active))
    # Classify on counts; a partial day stays within 1..99 after rounding.
    if completed == len(active):
        state = DayClass.full
    elif completed > 0:
        state = DayClass.partial
        pct = min(max(pct, 1), 99)
    else:
        state = DayClass.none
    return DayClassification(
        day=day,
        percentage=pct,
        completed_count=completed,
        total_count=len(active),
        state=state,
    )
