"""Timezone helpers.

All instants handled by the booking core are timezone-aware UTC. Some
databases (SQLite in tests) hand back naive datetimes even for
``DateTime(timezone=True)`` columns; those are assumed to be UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(value: Union[date, datetime]) -> datetime:
    """Midnight UTC of the calendar day containing ``value``."""
    if isinstance(value, datetime):
        value = ensure_utc(value).date()
    return datetime.combine(value, time.min, tzinfo=timezone.utc)
