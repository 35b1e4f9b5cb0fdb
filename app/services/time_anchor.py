"""
TimeAnchor — the single source of "today" for the streak engine.

Every civil date (a calendar day with no time of day) is evaluated in one fixed
timezone taken from settings.STREAK_TIMEZONE, never in server-local time or
UTC. Civil dates are plain `datetime.date` values; their ISO form
"YYYY-MM-DD" sorts lexicographically in chronological order.

Tests and debug tooling inject FixedTimeAnchor instead of reading the clock.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from app.core.config import settings


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_civil_date(value: str) -> date:
    """Parse a strict "YYYY-MM-DD" string. Raises ValueError otherwise."""
    if not isinstance(value, str) or len(value) != 10:
        raise ValueError(f"not a YYYY-MM-DD civil date: {value!r}")
    return date.fromisoformat(value)


def format_civil_date(day: date) -> str:
    return day.isoformat()


class TimeAnchor:
    """Civil calendar in a fixed timezone, driven by an injectable clock."""

    def __init__(self, tz_name: Optional[str] = None, clock: Callable[[], datetime] = _utc_now):
        self.tz = ZoneInfo(tz_name or settings.STREAK_TIMEZONE)
        self._clock = clock

    def now(self) -> datetime:
        return self._clock().astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def yesterday(self, day: Optional[date] = None) -> date:
        return (day or self.today()) - timedelta(days=1)

    def weekday(self, day: date) -> int:
        """ISO weekday, 1=Mon .. 7=Sun."""
        return day.isoweekday()

    def start_of_day(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz)


class FixedTimeAnchor(TimeAnchor):
    """A TimeAnchor pinned to one civil day (noon local time)."""

    def __init__(self, today: date | str, tz_name: Optional[str] = None):
        super().__init__(tz_name)
        self.set_today(today)

    def set_today(self, today: date | str) -> None:
        day = parse_civil_date(today) if isinstance(today, str) else today
        self._fixed = datetime.combine(day, time(12, 0), tzinfo=self.tz)
        self._clock = lambda: self._fixed


_default_anchor: Optional[TimeAnchor] = None


def get_time_anchor() -> TimeAnchor:
    """FastAPI dependency returning the process-wide anchor."""
    global _default_anchor
    if _default_anchor is None:
        _default_anchor = TimeAnchor()
    return _default_anchor
