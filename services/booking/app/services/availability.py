"""Working hours of schedulable resources.

A resource's ``availability_schedule`` maps weekday names to a list of
``"HH:MM-HH:MM"`` ranges in the resource's own timezone. Days missing from
the schedule are days off; an empty schedule places no restriction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shared import ensure_utc

logger = logging.getLogger(__name__)

WEEKDAY_KEYS = [
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
]


def is_known_zone(tz_name: str) -> bool:
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_zone(tz_name: Optional[str]) -> ZoneInfo:
    if not tz_name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", tz_name)
        return ZoneInfo("UTC")


def parse_schedule_entry(entry: str) -> Tuple[time, time]:
    """Parse ``"09:00-17:00"``; raises ``ValueError`` on malformed or empty ranges."""
    start_raw, separator, end_raw = str(entry).partition("-")
    if not separator:
        raise ValueError(f"Invalid availability range {entry!r}")
    start_time = time.fromisoformat(start_raw.strip())
    end_time = time.fromisoformat(end_raw.strip())
    if end_time <= start_time:
        raise ValueError(f"Availability range {entry!r} ends before it starts")
    return start_time, end_time


def working_hours_for(schedule: Optional[Dict[str, List[str]]], day: date) -> List[Tuple[time, time]]:
    entries = (schedule or {}).get(WEEKDAY_KEYS[day.weekday()]) or []
    ranges = []
    for entry in entries:
        try:
            ranges.append(parse_schedule_entry(entry))
        except ValueError:
            logger.warning("Skipping malformed availability entry %r", entry)
    return ranges


def fits_working_hours(resource, start: datetime, end: datetime, *, whole_days: bool) -> bool:
    """Whether ``[start, end)`` falls inside the resource's working hours.

    Day-based windows need every calendar day they cover to be a working
    day. Hour-based windows must sit inside a single range of one local day.
    """
    schedule = resource.availability_schedule or {}
    if not schedule:
        return True

    start = ensure_utc(start)
    end = ensure_utc(end)

    if whole_days:
        day = start.date()
        last = (end - timedelta(microseconds=1)).date() if end > start else day
        while day <= last:
            if not working_hours_for(schedule, day):
                return False
            day += timedelta(days=1)
        return True

    zone = resolve_zone(resource.timezone)
    local_start = start.astimezone(zone)
    local_end = end.astimezone(zone)
    if local_end.date() != local_start.date():
        return False
    for range_start, range_end in working_hours_for(schedule, local_start.date()):
        if range_start <= local_start.time() and local_end.time() <= range_end:
            return True
    return False
