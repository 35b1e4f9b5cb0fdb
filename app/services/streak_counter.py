"""
Streak counter — consecutive counted days ending today or yesterday.

Counted days are history (full days) plus frozen days (bought back with
freezes). Ember days never count and never bridge a gap: the parameter is
accepted so every caller can hand over a full state, and it is ignored the
same way everywhere.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import AbstractSet, Optional


def count_streak(
    history: AbstractSet[date],
    frozen_days: AbstractSet[date],
    ember_days: Optional[AbstractSet[date]] = None,
    *,
    today: date,
) -> int:
    effective = set(history) | set(frozen_days)
    if not effective:
        return 0

    latest = max(effective)
    if latest != today and latest != today - timedelta(days=1):
        return 0

    streak = 0
    expected = latest
    for day in sorted(effective, reverse=True):
        if day != expected:
            break
        streak += 1
        expected = day - timedelta(days=1)
    return streak
