"""Scheduling engine for project bookings.

Turns a customer's requested start (date, optional time of day, optional
subproject) plus the project's configured durations into a concrete
reservation window, and rejects selections that are too early or that
collide with existing blocks.

All arithmetic is done on timezone-aware UTC datetimes:

* ``hours`` durations add wall-clock hours;
* ``days`` durations add whole calendar days and keep the time of day.

The reservation window runs from the start to the end of the buffer. It is
checked with half-open overlap (see ``TimeRange``) against the resource
ledger and against other bookings still occupying the resource. Customer
blocks are only checked against the execution part; the buffer is the
professional's time, not the customer's.

A resource with an availability schedule is only offered windows whose
execution part falls inside its working hours.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.project import Project, ProjectStatus
from app.models.resource import Resource
from app.services import availability, blocking, results
from app.services.blocking import TimeRange
from app.services.results import OperationResult
from shared import ensure_utc, start_of_day, utcnow

logger = logging.getLogger(__name__)

PROPOSAL_SEARCH_DAYS = 180


class DurationUnit:
    HOURS = "hours"
    DAYS = "days"

    ALL = (HOURS, DAYS)


@dataclass(frozen=True)
class Duration:
    value: float
    unit: str

    @classmethod
    def from_config(cls, raw: Optional[Dict[str, Any]], default_unit: Optional[str] = None) -> Optional["Duration"]:
        if not raw:
            return None
        value = raw.get("value")
        if value is None:
            return None
        unit = raw.get("unit") or default_unit or DurationUnit.DAYS
        if unit not in DurationUnit.ALL:
            raise ValueError(f"Unsupported duration unit: {unit}")
        value = float(value)
        if value < 0:
            raise ValueError("Duration must not be negative")
        return cls(value=value, unit=unit)

    @property
    def is_zero(self) -> bool:
        return self.value <= 0

    def add_to(self, instant: datetime) -> datetime:
        if self.unit == DurationUnit.HOURS:
            return instant + timedelta(hours=self.value)
        return instant + timedelta(days=math.ceil(self.value))


def add_duration(instant: datetime, duration: Optional[Duration]) -> datetime:
    if duration is None or duration.is_zero:
        return instant
    return duration.add_to(instant)


@dataclass(frozen=True)
class ProjectDurations:
    execution: Duration
    buffer: Optional[Duration] = None
    preparation: Optional[Duration] = None


@dataclass(frozen=True)
class ScheduleWindow:
    start: datetime
    execution_end: datetime
    buffer_start: Optional[datetime]
    buffer_end: datetime
    buffer_unit: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    @property
    def has_buffer(self) -> bool:
        return self.buffer_start is not None and self.buffer_end > self.execution_end

    @property
    def execution_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.execution_end, source="execution")

    @property
    def reservation_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.buffer_end, source="reservation")


@dataclass(frozen=True)
class ScheduleRequest:
    start_date: date
    start_time: Optional[time] = None
    subproject_index: Optional[int] = None
    customer_blocks: Optional[Dict[str, Any]] = None


@dataclass
class ScheduleSelection:
    window: ScheduleWindow
    assigned_resources: List[UUID] = field(default_factory=list)


def get_project_durations(project: Project, subproject_index: Optional[int] = None) -> Optional[ProjectDurations]:
    """Resolve execution/buffer/preparation durations, subproject overrides first.

    Raises ``IndexError`` for an out-of-range subproject index and
    ``ValueError`` for a malformed duration.
    """
    execution_raw = project.execution_duration
    buffer_raw = project.buffer_duration
    preparation_raw = project.preparation_duration

    if subproject_index is not None:
        subprojects = project.subprojects or []
        if subproject_index < 0 or subproject_index >= len(subprojects):
            raise IndexError(f"Subproject {subproject_index} does not exist")
        subproject = subprojects[subproject_index] or {}
        execution_raw = subproject.get("execution_duration") or execution_raw
        buffer_raw = subproject.get("buffer_duration") or buffer_raw
        preparation_raw = subproject.get("preparation_duration") or preparation_raw

    execution = Duration.from_config(execution_raw)
    if execution is None or execution.is_zero:
        return None
    return ProjectDurations(
        execution=execution,
        buffer=Duration.from_config(buffer_raw, default_unit=execution.unit),
        # preparation without a unit follows the execution unit
        preparation=Duration.from_config(preparation_raw, default_unit=execution.unit),
    )


def earliest_bookable(now: datetime, preparation: Optional[Duration]) -> datetime:
    return add_duration(ensure_utc(now), preparation)


def _format_time(instant: datetime) -> str:
    return instant.strftime("%H:%M")


def compute_window(start: datetime, durations: ProjectDurations) -> ScheduleWindow:
    start = ensure_utc(start)
    execution_end = durations.execution.add_to(start)
    buffer = durations.buffer if durations.buffer and not durations.buffer.is_zero else None
    buffer_end = add_duration(execution_end, buffer)
    hours_mode = durations.execution.unit == DurationUnit.HOURS
    return ScheduleWindow(
        start=start,
        execution_end=execution_end,
        buffer_start=execution_end if buffer else None,
        buffer_end=buffer_end,
        buffer_unit=buffer.unit if buffer else None,
        start_time=_format_time(start) if hours_mode else None,
        end_time=_format_time(execution_end) if hours_mode else None,
    )


def resolve_start(request: ScheduleRequest, durations: ProjectDurations) -> OperationResult[datetime]:
    if durations.execution.unit == DurationUnit.HOURS and request.start_time is None:
        return results.validation_error("Start time required for hours mode", code="START_TIME_REQUIRED")
    start_time = request.start_time or time.min
    if start_time.tzinfo is None:
        return results.success(datetime.combine(request.start_date, start_time, tzinfo=timezone.utc))
    # offset-aware times are local to the requester
    return results.success(datetime.combine(request.start_date, start_time).astimezone(timezone.utc))


def _parse_clock(raw: Optional[str]) -> Optional[time]:
    if not raw:
        return None
    return time.fromisoformat(raw)


def customer_block_ranges(customer_blocks: Optional[Dict[str, Any]]) -> List[TimeRange]:
    """Expand ``{"dates": [...], "windows": [...]}`` into UTC ranges.

    A blocked date covers the whole calendar day; a window covers
    ``start_time`` to ``end_time`` on its date.
    """
    if not customer_blocks:
        return []

    ranges: List[TimeRange] = []
    for entry in customer_blocks.get("dates") or []:
        day = date.fromisoformat(str(entry["date"])[:10])
        start = start_of_day(day)
        ranges.append(
            TimeRange(start=start, end=start + timedelta(days=1), reason=entry.get("reason"), source="customer")
        )
    for entry in customer_blocks.get("windows") or []:
        day = date.fromisoformat(str(entry["date"])[:10])
        start_clock = _parse_clock(entry.get("start_time")) or time.min
        end_clock = _parse_clock(entry.get("end_time"))
        start = datetime.combine(day, start_clock, tzinfo=timezone.utc)
        end = (
            datetime.combine(day, end_clock, tzinfo=timezone.utc)
            if end_clock is not None
            else start_of_day(day) + timedelta(days=1)
        )
        ranges.append(TimeRange(start=start, end=end, reason=entry.get("reason"), source="customer"))
    return ranges


def validate_and_dedupe_resource_ids(resource_ids: Optional[Iterable[Any]]) -> List[UUID]:
    """Keep well-formed UUIDs only, first occurrence wins."""
    seen = set()
    valid: List[UUID] = []
    for raw in resource_ids or []:
        try:
            value = raw if isinstance(raw, UUID) else UUID(str(raw))
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed resource id %r", raw)
            continue
        if value in seen:
            continue
        seen.add(value)
        valid.append(value)
    return valid


def candidate_resources(project: Project) -> List[UUID]:
    resources = validate_and_dedupe_resource_ids(project.resources)
    return resources or [project.professional_id]


def required_resource_count(project: Project, candidate_count: int) -> int:
    """``min_resources`` clamped to ``[1, candidate_count]``."""
    minimum = project.min_resources or 1
    return max(1, min(minimum, max(candidate_count, 1)))


def _conflict_payload(ranges: Sequence[TimeRange]) -> List[dict]:
    return [item.as_dict() for item in ranges]


@dataclass
class _ResourcePick:
    free: List[UUID] = field(default_factory=list)
    conflicts: List[TimeRange] = field(default_factory=list)


def _load_resources(db: Session, resource_ids: Sequence[UUID]) -> Dict[UUID, Resource]:
    if not resource_ids:
        return {}
    rows = db.query(Resource).filter(Resource.id.in_(list(resource_ids))).all()
    return {row.id: row for row in rows}


def _select_resources(
    candidates: Sequence[UUID],
    resources: Dict[UUID, Resource],
    blocked: Dict[UUID, List[TimeRange]],
    window: ScheduleWindow,
    *,
    whole_days: bool,
) -> _ResourcePick:
    """Split candidates into free ones and the block conflicts of the others.

    Working hours are checked against the execution part of the window,
    blocks against the whole reservation. Unregistered resources have no
    working hours to respect.
    """
    pick = _ResourcePick()
    reservation = window.reservation_range
    for resource_id in candidates:
        resource = resources.get(resource_id)
        if resource is not None and not availability.fits_working_hours(
            resource, window.start, window.execution_end, whole_days=whole_days
        ):
            continue
        found = [item for item in blocked.get(resource_id, []) if item.overlaps(reservation)]
        if found:
            pick.conflicts.extend(found)
        else:
            pick.free.append(resource_id)
    return pick


def _assign(free: List[UUID], required: int) -> List[UUID]:
    return free[:1] if required == 1 else free


def validate_project_schedule(
    db: Session,
    project: Optional[Project],
    request: ScheduleRequest,
    *,
    now: Optional[datetime] = None,
    ignore_booking_id: Optional[UUID] = None,
) -> OperationResult[ScheduleSelection]:
    """Compute the window for a project booking and pick free resources."""
    if project is None:
        return results.not_found("Project not found", code="PROJECT_NOT_FOUND")
    if project.status not in ProjectStatus.BOOKABLE:
        return results.not_found("Project is not available for booking", code="PROJECT_NOT_BOOKABLE")

    try:
        durations = get_project_durations(project, request.subproject_index)
    except IndexError as exc:
        return results.not_found(str(exc), code="SUBPROJECT_NOT_FOUND")
    except ValueError as exc:
        return results.validation_error(str(exc), code="INVALID_DURATION")
    if durations is None:
        return results.validation_error("Missing execution duration", code="MISSING_EXECUTION_DURATION")

    start_result = resolve_start(request, durations)
    if not start_result.ok:
        return start_result
    start = start_result.value

    earliest = earliest_bookable(now or utcnow(), durations.preparation)
    date_only = request.start_time is None
    too_early = start_of_day(start) < start_of_day(earliest) if date_only else start < earliest
    if too_early:
        return results.validation_error(
            f"Requested start is before the earliest bookable date {earliest.isoformat()}",
            code="BEFORE_PREPARATION_WINDOW",
        )

    window = compute_window(start, durations)

    customer_conflicts = [
        item for item in customer_block_ranges(request.customer_blocks) if item.overlaps(window.execution_range)
    ]
    if customer_conflicts:
        return results.conflict(
            "Requested window overlaps the customer's own blocked time",
            code="CUSTOMER_BLOCKED",
            conflicts=_conflict_payload(customer_conflicts),
        )

    candidates = candidate_resources(project)
    required = required_resource_count(project, len(candidates))
    blocked = {
        resource_id: blocking.find_conflicts(
            db,
            resource_id,
            window.reservation_range,
            ignore_booking_id=ignore_booking_id,
        )
        for resource_id in candidates
    }
    pick = _select_resources(
        candidates,
        _load_resources(db, candidates),
        blocked,
        window,
        whole_days=durations.execution.unit == DurationUnit.DAYS,
    )

    if len(pick.free) < required:
        if not pick.conflicts:
            return results.validation_error(
                f"Requested window {window.start.isoformat()} - {window.execution_end.isoformat()} "
                "is outside the working hours of the assigned resources",
                code="OUTSIDE_WORKING_HOURS",
            )
        first = pick.conflicts[0]
        return results.conflict(
            f"Requested window {window.start.isoformat()} - {window.buffer_end.isoformat()} "
            f"conflicts with blocked range {first.start.isoformat()} - {first.end.isoformat()}",
            code="WINDOW_UNAVAILABLE",
            conflicts=_conflict_payload(pick.conflicts),
        )

    return results.success(ScheduleSelection(window=window, assigned_resources=_assign(pick.free, required)))


def _proposal_starts(earliest: datetime, unit: str):
    if unit == DurationUnit.DAYS:
        cursor, step = start_of_day(earliest), timedelta(days=1)
    else:
        cursor, step = earliest.replace(minute=0, second=0, microsecond=0), timedelta(hours=1)
        if cursor < earliest:
            cursor += step
    horizon = cursor + timedelta(days=PROPOSAL_SEARCH_DAYS)
    while cursor < horizon:
        yield cursor
        cursor += step


def build_schedule_proposal(
    db: Session,
    project: Optional[Project],
    subproject_index: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
) -> OperationResult[dict]:
    """First window from the earliest bookable instant that enough resources can take.

    Days-mode windows start at midnight UTC and advance a day at a time;
    hours-mode windows start on whole hours and advance an hour at a time.
    """
    if project is None:
        return results.not_found("Project not found", code="PROJECT_NOT_FOUND")
    try:
        durations = get_project_durations(project, subproject_index)
    except IndexError as exc:
        return results.not_found(str(exc), code="SUBPROJECT_NOT_FOUND")
    except ValueError as exc:
        return results.validation_error(str(exc), code="INVALID_DURATION")
    if durations is None:
        return results.validation_error("Missing execution duration", code="MISSING_EXECUTION_DURATION")

    unit = durations.execution.unit
    earliest = earliest_bookable(now or utcnow(), durations.preparation)
    candidates = candidate_resources(project)
    required = required_resource_count(project, len(candidates))
    resources = _load_resources(db, candidates)

    starts = list(_proposal_starts(earliest, unit))
    horizon = TimeRange(start=starts[0], end=compute_window(starts[-1], durations).buffer_end)
    blocked = {resource_id: blocking.find_conflicts(db, resource_id, horizon) for resource_id in candidates}

    for start in starts:
        window = compute_window(start, durations)
        pick = _select_resources(candidates, resources, blocked, window, whole_days=unit == DurationUnit.DAYS)
        if len(pick.free) >= required:
            return results.success(
                {
                    "earliest_bookable": earliest,
                    "execution_unit": unit,
                    "window": window,
                    "assigned_resources": _assign(pick.free, required),
                }
            )

    logger.info("No free window for project %s within %s days", project.id, PROPOSAL_SEARCH_DAYS)
    return results.conflict(
        f"No free window within {PROPOSAL_SEARCH_DAYS} days of {earliest.isoformat()}",
        code="NO_AVAILABILITY",
    )


def window_from_booking(booking) -> Optional[ScheduleWindow]:
    start = ensure_utc(booking.scheduled_start_date)
    if start is None:
        return None
    execution_end = ensure_utc(booking.scheduled_execution_end_date) or start
    return ScheduleWindow(
        start=start,
        execution_end=execution_end,
        buffer_start=ensure_utc(booking.scheduled_buffer_start_date),
        buffer_end=ensure_utc(booking.scheduled_buffer_end_date) or execution_end,
        buffer_unit=booking.scheduled_buffer_unit,
        start_time=booking.scheduled_start_time,
        end_time=booking.scheduled_end_time,
    )


def apply_selection(booking, selection: ScheduleSelection) -> None:
    window = selection.window
    booking.scheduled_start_date = window.start
    booking.scheduled_execution_end_date = window.execution_end
    booking.scheduled_buffer_start_date = window.buffer_start
    booking.scheduled_buffer_end_date = window.buffer_end
    booking.scheduled_buffer_unit = window.buffer_unit
    booking.scheduled_start_time = window.start_time
    booking.scheduled_end_time = window.end_time
    booking.assigned_team_members = [str(resource_id) for resource_id in selection.assigned_resources]
