"""Clock and calendar helpers shared by the synthesis and backlog engines."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional, Union

MINUTES_PER_DAY = 24 * 60


def time_to_minutes(value: Optional[str], fallback: int = 0) -> int:
    """Convert an ``HH:MM`` clock string into minutes after midnight."""
    if not value:
        return fallback
    hours, _, minutes = value.strip().partition(":")
    try:
        total = int(hours) * 60 + int(minutes or 0)
    except ValueError:
        return fallback
    return max(0, min(MINUTES_PER_DAY, total))


def minutes_to_time(total: int) -> str:
    """Format minutes after midnight as ``HH:MM``; midnight at the end of a day is ``24:00``."""
    total = max(0, min(MINUTES_PER_DAY, int(total)))
    return f"{total // 60:02d}:{total % 60:02d}"


def add_minutes(clock: str, minutes: int) -> str:
    return minutes_to_time(time_to_minutes(clock) + minutes)


def date_key(value: Union[date, datetime]) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def iter_dates(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def utc_midnight(value: date) -> datetime:
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "MINUTES_PER_DAY",
    "add_minutes",
    "date_key",
    "ensure_aware",
    "iter_dates",
    "minutes_to_time",
    "time_to_minutes",
    "utc_midnight",
    "utcnow",
]
