"""Booking status transitions and the side effects tied to them.

``transition_booking`` is the single place where ``Booking.status`` changes.
It checks the transition table, appends the history entry and keeps the
resource ledger in step with the new status:

* entering ``booked`` or ``in_progress`` reserves the project window the
  first time (re-verified against the ledger first);
* entering ``quote_rejected``, ``cancelled``, ``completed`` or ``refunded``
  releases every block tagged for the booking.

Nothing here commits; the caller owns the transaction, so a status write and
its ledger changes land together or not at all.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional
from uuid import UUID

from app.models.booking import Booking, BookingStatus, BookingStatusHistory, BookingType
from app.services import blocking, results
from app.services.context import BookingContext
from app.services.results import OperationResult
from app.services.scheduling import window_from_booking

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    BookingStatus.RFQ: frozenset({BookingStatus.QUOTED, BookingStatus.CANCELLED}),
    BookingStatus.QUOTED: frozenset(
        {BookingStatus.QUOTE_ACCEPTED, BookingStatus.QUOTE_REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.QUOTE_ACCEPTED: frozenset(
        {BookingStatus.PAYMENT_PENDING, BookingStatus.BOOKED, BookingStatus.CANCELLED}
    ),
    BookingStatus.QUOTE_REJECTED: frozenset(),
    BookingStatus.PAYMENT_PENDING: frozenset({BookingStatus.BOOKED, BookingStatus.CANCELLED}),
    BookingStatus.BOOKED: frozenset(
        {
            BookingStatus.IN_PROGRESS,
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED,
            BookingStatus.DISPUTE,
        }
    ),
    BookingStatus.IN_PROGRESS: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.DISPUTE}
    ),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.DISPUTE: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REFUNDED}
    ),
    BookingStatus.REFUNDED: frozenset(),
}


def is_transition_allowed(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def append_history(
    booking: Booking,
    status: str,
    *,
    at: datetime,
    updated_by: Optional[UUID] = None,
    note: Optional[str] = None,
) -> BookingStatusHistory:
    entry = BookingStatusHistory(
        status=status,
        timestamp=at,
        updated_by=updated_by,
        note=note,
        sequence=len(booking.status_history),
    )
    booking.status_history.append(entry)
    return entry


def _reserve_project_window(ctx: BookingContext, booking: Booking) -> List[str]:
    """Write ledger blocks for a project booking, once; returns warnings."""
    if booking.booking_type != BookingType.PROJECT:
        return []
    if blocking.has_booking_blocks(ctx.db, booking.id):
        return []

    window = window_from_booking(booking)
    if window is None:
        return []

    resource_ids = [UUID(str(member)) for member in booking.assigned_team_members or []]
    if not resource_ids and booking.professional_id:
        resource_ids = [booking.professional_id]

    conflicts = []
    for resource_id in resource_ids:
        conflicts.extend(
            blocking.find_conflicts(
                ctx.db,
                resource_id,
                window.reservation_range,
                ignore_booking_id=booking.id,
                statuses=BookingStatus.RESERVING,
            )
        )
    if conflicts:
        first = conflicts[0]
        message = (
            f"Reserved window now conflicts with {first.reason or 'a blocked range'} "
            f"{first.start.isoformat()} - {first.end.isoformat()}; no blocks written"
        )
        logger.warning("Booking %s: %s", booking.id, message)
        return [message]

    return blocking.reserve(ctx.db, resource_ids, window, booking.id).warnings


def transition_booking(
    ctx: BookingContext,
    booking: Booking,
    target: str,
    *,
    actor_id: Optional[UUID] = None,
    note: Optional[str] = None,
) -> OperationResult[Booking]:
    """Move ``booking`` to ``target`` if the table allows it.

    A self-transition is a successful no-op. Anything outside the table is a
    conflict and leaves the booking untouched.
    """
    if target not in BookingStatus.ALL:
        return results.validation_error(f"Unknown status '{target}'", code="INVALID_STATUS")

    current = booking.status
    if current == target:
        return results.success(booking)
    if not is_transition_allowed(current, target):
        return results.conflict(
            f"Invalid transition from {current} to {target}",
            code="INVALID_TRANSITION",
        )

    now = ctx.now()
    booking.status = target
    append_history(booking, target, at=now, updated_by=actor_id, note=note)

    warnings: List[str] = []
    if target == BookingStatus.IN_PROGRESS and booking.actual_start_date is None:
        booking.actual_start_date = now
    if target == BookingStatus.COMPLETED:
        booking.actual_end_date = now

    if target in BookingStatus.RESERVING:
        warnings.extend(_reserve_project_window(ctx, booking))
        for message in warnings:
            append_history(booking, target, at=now, updated_by=actor_id, note=message)
    if target in BookingStatus.RELEASING:
        blocking.release(ctx.db, booking.id)

    ctx.db.flush()
    logger.info("Booking %s moved %s -> %s", booking.id, current, target)
    return results.success(booking, warnings=warnings)


def announce_status_change(
    ctx: BookingContext,
    booking: Booking,
    previous: str,
    *,
    actor_id: Optional[UUID] = None,
) -> None:
    """Publish the domain event and notify both parties; call after commit."""
    if booking.status == previous:
        return
    payload = {
        "booking_id": str(booking.id),
        "booking_number": booking.booking_number,
        "previous_status": previous,
        "status": booking.status,
    }
    ctx.publish("booking.status_changed", payload, actor_id=actor_id)
    ctx.notify(
        f"booking.{booking.status}",
        [booking.customer_id, booking.professional_id],
        payload,
    )
