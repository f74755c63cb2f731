"""
Time helpers for deadline checks.
All comparisons happen on timezone-aware UTC datetimes.
"""
from datetime import datetime, timedelta
from typing import Optional
import pytz


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns;
    those are stored as UTC, so they are tagged rather than converted.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def is_past(deadline: Optional[datetime], now: datetime) -> bool:
    """True when ``now`` is strictly later than ``deadline``. A missing deadline never passes."""
    if deadline is None:
        return False
    return as_utc(now) > as_utc(deadline)


def days_from(now: datetime, days: int) -> datetime:
    return as_utc(now) + timedelta(days=days)
