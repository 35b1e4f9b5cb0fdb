"""
Recovery planner — can a broken streak be bought back with freezes?

Walk back from yesterday over the intact tail of counted days, then collect
the missing days of the gap until a counted day (the anchor) shows up again.
No anchor within the scan cap means there was no streak to recover.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import AbstractSet

from app.core.config import settings


@dataclass(frozen=True)
class RecoveryPlan:
    recoverable: bool
    missing_dates: list[date] = field(default_factory=list)   # newest first

    @property
    def days_needed(self) -> int:
        return len(self.missing_dates)


NOT_RECOVERABLE = RecoveryPlan(recoverable=False)


def plan_recovery(
    history: AbstractSet[date],
    frozen_days: AbstractSet[date],
    *,
    today: date,
    scan_cap: int | None = None,
) -> RecoveryPlan:
    cap = settings.RECOVERY_SCAN_CAP if scan_cap is None else scan_cap
    effective = set(history) | set(frozen_days)
    if not effective:
        return NOT_RECOVERABLE

    check = today - timedelta(days=1)
    # The tail is bounded by len(effective), so this walk terminates.
    while check in effective:
        check -= timedelta(days=1)

    missing: list[date] = []
    for _ in range(cap):
        if check in effective:
            return RecoveryPlan(recoverable=True, missing_dates=missing)
        missing.append(check)
        check -= timedelta(days=1)
    return NOT_RECOVERABLE
