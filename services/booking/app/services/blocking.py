"""Resource blocking ledger.

Per-resource "do not schedule here" ranges, merging manual blocks with the
execution/buffer blocks written for bookings. Booking blocks carry both the
``project-booking:<id>`` tag in ``reason`` and typed ``booking_id`` /
``block_type`` columns; release deletes by tag.

Functions here flush but never commit: they run inside the caller's
transaction so a block write and the status write that caused it succeed or
fail together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func
from sqlalchemy.orm import Session

from app.models.booking import Booking, BookingStatus
from app.models.resource import BlockType, Resource, ResourceBlockedRange, booking_tag
from app.services import results
from app.services.results import OperationResult
from shared import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeRange:
    """Half-open interval ``[start, end)``.

    Two ranges overlap iff ``a.start < b.end and a.end > b.start``; ranges that
    only touch at an endpoint do not conflict, so back-to-back bookings are
    allowed once the buffer is part of the reserved range.
    """

    start: datetime
    end: datetime
    reason: Optional[str] = None
    resource_id: Optional[UUID] = None
    booking_id: Optional[UUID] = None
    source: str = BlockType.MANUAL

    def overlaps(self, other: "TimeRange") -> bool:
        return self.start < other.end and self.end > other.start

    def as_dict(self) -> dict:
        return {
            "start": self.start,
            "end": self.end,
            "reason": self.reason,
            "resource_id": self.resource_id,
            "booking_id": self.booking_id,
            "source": self.source,
        }


def _range_from_row(row: ResourceBlockedRange) -> TimeRange:
    return TimeRange(
        start=ensure_utc(row.start_date),
        end=ensure_utc(row.end_date),
        reason=row.reason,
        resource_id=row.resource_id,
        booking_id=row.booking_id,
        source=row.block_type,
    )


def has_booking_blocks(db: Session, booking_id: UUID, resource_id: Optional[UUID] = None) -> bool:
    query = db.query(ResourceBlockedRange.id).filter(ResourceBlockedRange.reason == booking_tag(booking_id))
    if resource_id is not None:
        query = query.filter(ResourceBlockedRange.resource_id == resource_id)
    return query.first() is not None


def reserve(
    db: Session,
    resource_ids: Sequence[UUID],
    window,
    booking_id: UUID,
) -> OperationResult[List[ResourceBlockedRange]]:
    """Write execution and buffer blocks for every resource of a booking.

    Resources that already hold a block tagged for this booking are skipped,
    so calling this again for the same booking never duplicates entries.
    Unknown resources are skipped with a warning rather than failing the
    booking.
    """
    tag = booking_tag(booking_id)
    created: List[ResourceBlockedRange] = []
    warnings: List[str] = []

    for resource_id in resource_ids:
        if db.get(Resource, resource_id) is None:
            message = f"Resource {resource_id} not found; no block written for booking {booking_id}"
            logger.warning(message)
            warnings.append(message)
            continue

        if has_booking_blocks(db, booking_id, resource_id):
            logger.debug("Resource %s already blocked for booking %s", resource_id, booking_id)
            continue

        entries = [
            ResourceBlockedRange(
                resource_id=resource_id,
                start_date=window.start,
                end_date=window.execution_end,
                reason=tag,
                booking_id=booking_id,
                block_type=BlockType.EXECUTION,
            )
        ]
        if window.has_buffer:
            entries.append(
                ResourceBlockedRange(
                    resource_id=resource_id,
                    start_date=window.buffer_start,
                    end_date=window.buffer_end,
                    reason=tag,
                    booking_id=booking_id,
                    block_type=BlockType.BUFFER,
                )
            )
        db.add_all(entries)
        created.extend(entries)

    db.flush()
    if created:
        logger.info("Reserved %d blocked ranges for booking %s", len(created), booking_id)
    return results.success(created, warnings=warnings)


def release(db: Session, booking_id: UUID) -> int:
    """Delete every block tagged for ``booking_id``; returns the number removed.

    Deleting by tag is idempotent, so a booking without blocks is a no-op.
    """
    outcome = db.execute(
        delete(ResourceBlockedRange)
        .where(ResourceBlockedRange.reason == booking_tag(booking_id))
        .execution_options(synchronize_session=False)
    )
    removed = outcome.rowcount or 0
    if removed:
        logger.info("Released %d blocked ranges for booking %s", removed, booking_id)
    return removed


def list_blocking(db: Session, resource_id: UUID) -> List[TimeRange]:
    """All ranges of a resource, manual and booking-derived, ordered by start."""
    rows = (
        db.query(ResourceBlockedRange)
        .filter(ResourceBlockedRange.resource_id == resource_id)
        .order_by(ResourceBlockedRange.start_date.asc())
        .all()
    )
    return [_range_from_row(row) for row in rows]


def _assigned_ids(booking: Booking) -> List[str]:
    members = booking.assigned_team_members or []
    if members:
        return [str(member) for member in members]
    if booking.professional_id:
        return [str(booking.professional_id)]
    return []


def booking_blocked_ranges(
    db: Session,
    resource_id: UUID,
    window: TimeRange,
    *,
    ignore_booking_id: Optional[UUID] = None,
    statuses: Optional[Iterable[str]] = None,
) -> List[TimeRange]:
    """Windows of other bookings still occupying ``resource_id`` that overlap ``window``.

    Covers bookings whose ledger entries have not been written yet (RFQ,
    quoted, payment pending), each contributing an execution range and, when
    present, a buffer range.
    ``statuses`` narrows the occupying bookings to those statuses.
    """
    buffer_or_execution_end = func.coalesce(
        Booking.scheduled_buffer_end_date, Booking.scheduled_execution_end_date
    )
    query = (
        db.query(Booking)
        .filter(Booking.status.notin_(sorted(BookingStatus.RELEASING)))
        .filter(Booking.scheduled_start_date.isnot(None))
        .filter(Booking.scheduled_start_date < window.end)
        .filter(buffer_or_execution_end > window.start)
    )
    if ignore_booking_id is not None:
        query = query.filter(Booking.id != ignore_booking_id)
    if statuses is not None:
        query = query.filter(Booking.status.in_(sorted(statuses)))

    target = str(resource_id)
    ranges: List[TimeRange] = []
    for booking in query.all():
        if target not in _assigned_ids(booking):
            continue
        start = ensure_utc(booking.scheduled_start_date)
        execution_end = ensure_utc(booking.scheduled_execution_end_date) or start
        ranges.append(
            TimeRange(
                start=start,
                end=execution_end,
                reason="booking",
                resource_id=resource_id,
                booking_id=booking.id,
                source=BlockType.EXECUTION,
            )
        )
        buffer_end = ensure_utc(booking.scheduled_buffer_end_date)
        if buffer_end and buffer_end > execution_end:
            ranges.append(
                TimeRange(
                    start=ensure_utc(booking.scheduled_buffer_start_date) or execution_end,
                    end=buffer_end,
                    reason="booking-buffer",
                    resource_id=resource_id,
                    booking_id=booking.id,
                    source=BlockType.BUFFER,
                )
            )
    return [item for item in ranges if item.overlaps(window)]


def find_conflicts(
    db: Session,
    resource_id: UUID,
    window: TimeRange,
    *,
    ignore_booking_id: Optional[UUID] = None,
    statuses: Optional[Iterable[str]] = None,
) -> List[TimeRange]:
    """Ledger ranges plus occupying bookings of a resource that overlap ``window``."""
    conflicts: List[TimeRange] = []
    ledger_bookings = set()
    for item in list_blocking(db, resource_id):
        if ignore_booking_id is not None and item.booking_id == ignore_booking_id:
            continue
        if item.booking_id is not None:
            ledger_bookings.add(item.booking_id)
        if item.overlaps(window):
            conflicts.append(item)

    for item in booking_blocked_ranges(
        db, resource_id, window, ignore_booking_id=ignore_booking_id, statuses=statuses
    ):
        if item.booking_id in ledger_bookings:
            continue
        conflicts.append(item)
    return conflicts


def _can_manage(resource: Resource, actor) -> bool:
    if actor.is_admin:
        return True
    return actor.id in (resource.id, resource.owner_id)


def add_manual_block(
    db: Session,
    resource_id: UUID,
    start: datetime,
    end: datetime,
    reason: Optional[str],
    actor,
) -> OperationResult[ResourceBlockedRange]:
    resource = db.get(Resource, resource_id)
    if resource is None:
        return results.not_found("Resource not found")
    if not _can_manage(resource, actor):
        return results.authorization_error("Only the resource owner can manage its blocks")
    if start > end:
        return results.validation_error("Block start must not be after its end")
    if reason and reason.startswith(booking_tag("")):
        return results.validation_error("Reason prefix is reserved for booking blocks")

    block = ResourceBlockedRange(
        resource_id=resource_id,
        start_date=start,
        end_date=end,
        reason=reason,
        block_type=BlockType.MANUAL,
    )
    db.add(block)
    db.flush()
    return results.success(block)


def remove_manual_block(
    db: Session,
    resource_id: UUID,
    block_id: UUID,
    actor,
) -> OperationResult[None]:
    resource = db.get(Resource, resource_id)
    if resource is None:
        return results.not_found("Resource not found")
    if not _can_manage(resource, actor):
        return results.authorization_error("Only the resource owner can manage its blocks")

    block = db.get(ResourceBlockedRange, block_id)
    if block is None or block.resource_id != resource_id:
        return results.not_found("Blocked range not found")
    if block.block_type != BlockType.MANUAL:
        return results.conflict(
            "Booking blocks are released with their booking",
            code="BOOKING_BLOCK",
        )
    db.delete(block)
    db.flush()
    return results.success(None)

