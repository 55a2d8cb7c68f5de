"""User-facing booking operations.

Each operation checks who is calling, validates the request against the
booking's current state, runs the transition through ``lifecycle`` and owns
the transaction: it commits on success and rolls back on any critical
failure. Events and notifications go out after the commit and never undo it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.models.booking import Booking, BookingStatus, BookingType, PaymentStatus
from app.models.project import Project, ProjectStatus
from app.models.resource import Resource, ResourceKind
from app.schemas.booking_schema import (
    BookingCreate,
    PostBookingAnswers,
    QuoteCreate,
    QuoteResponse,
)
from app.services import lifecycle, payments, results
from app.services.actors import Actor, Party, Role, party_of
from app.services.context import BookingContext
from app.services.results import OperationResult
from app.services.scheduling import (
    ScheduleRequest,
    apply_selection,
    validate_and_dedupe_resource_ids,
    validate_project_schedule,
)
from shared import ensure_utc

logger = logging.getLogger(__name__)

BOOKING_NUMBER_ATTEMPTS = 3

# targets only the payment flow and webhooks may set
SYSTEM_ONLY_TARGETS = frozenset(
    {
        BookingStatus.PAYMENT_PENDING,
        BookingStatus.BOOKED,
        BookingStatus.DISPUTE,
        BookingStatus.REFUNDED,
    }
)
# targets with their own operation
DEDICATED_TARGETS = frozenset(
    {BookingStatus.QUOTED, BookingStatus.QUOTE_ACCEPTED, BookingStatus.QUOTE_REJECTED}
)


@dataclass
class QuoteDecision:
    booking: Booking
    authorization: Optional[dict] = None


def project_for(ctx: BookingContext, booking: Booking) -> Optional[Project]:
    if booking.project_id is None:
        return None
    return ctx.db.get(Project, booking.project_id)


def load_booking_for(ctx: BookingContext, booking_id: UUID, actor: Actor) -> OperationResult[Booking]:
    """Fetch a booking the caller takes part in."""
    booking = ctx.db.get(Booking, booking_id)
    if booking is None:
        return results.not_found("Booking not found", code="BOOKING_NOT_FOUND")
    if party_of(actor, booking, project_for(ctx, booking)) is None:
        return results.authorization_error()
    return results.success(booking)


def normalize_booking_for_persistence(booking: Booking) -> OperationResult[Booking]:
    """Check schedule ordering and clean the team member list before saving."""
    start = ensure_utc(booking.scheduled_start_date)
    execution_end = ensure_utc(booking.scheduled_execution_end_date)
    buffer_end = ensure_utc(booking.scheduled_buffer_end_date)
    if start is not None and execution_end is not None and execution_end < start:
        return results.validation_error("Execution end is before the start", code="INVALID_SCHEDULE")
    if execution_end is not None and buffer_end is not None and buffer_end < execution_end:
        return results.validation_error("Buffer end is before the execution end", code="INVALID_SCHEDULE")
    if booking.scheduled_buffer_start_date is None and buffer_end is not None and execution_end is not None:
        if buffer_end > execution_end:
            booking.scheduled_buffer_start_date = execution_end
    booking.assigned_team_members = [
        str(resource_id) for resource_id in validate_and_dedupe_resource_ids(booking.assigned_team_members)
    ]
    return results.success(booking)


def next_booking_number(ctx: BookingContext) -> str:
    prefix = f"BK-{ctx.now().year}-"
    issued = ctx.db.query(func.count(Booking.id)).filter(Booking.booking_number.like(f"{prefix}%")).scalar()
    return f"{prefix}{(issued or 0) + 1:06d}"


def _created_payload(booking: Booking) -> dict:
    return {
        "booking_id": str(booking.id),
        "booking_number": booking.booking_number,
        "booking_type": booking.booking_type,
        "status": booking.status,
        "customer_id": str(booking.customer_id),
        "professional_id": str(booking.professional_id) if booking.professional_id else None,
        "project_id": str(booking.project_id) if booking.project_id else None,
        "scheduled_start_date": booking.scheduled_start_date.isoformat() if booking.scheduled_start_date else None,
    }


def _build_booking(ctx: BookingContext, actor: Actor, payload: BookingCreate) -> OperationResult[Booking]:
    customer_blocks = payload.customer_blocks.model_dump(mode="json") if payload.customer_blocks else None
    booking = Booking(
        booking_type=payload.booking_type,
        customer_id=actor.id,
        professional_id=payload.professional_id,
        project_id=payload.project_id,
        selected_subproject_index=payload.selected_subproject_index,
        status=BookingStatus.RFQ,
        rfq_data=payload.rfq_data.model_dump(mode="json"),
        customer_blocks=customer_blocks,
        assigned_team_members=[],
    )

    if payload.booking_type == BookingType.PROFESSIONAL:
        professional = ctx.db.get(Resource, payload.professional_id)
        if professional is None or professional.kind != ResourceKind.PROFESSIONAL:
            return results.not_found("Professional not found", code="PROFESSIONAL_NOT_FOUND")

    if payload.booking_type == BookingType.PROJECT:
        project = ctx.db.get(Project, payload.project_id)
        if project is None:
            return results.not_found("Project not found", code="PROJECT_NOT_FOUND")
        if project.status not in ProjectStatus.BOOKABLE:
            return results.not_found("Project is not available for booking", code="PROJECT_NOT_BOOKABLE")
        if payload.rfq_data.preferred_start_date is None:
            return results.validation_error(
                "Preferred start date required for project bookings",
                code="START_DATE_REQUIRED",
            )
        booking.professional_id = project.professional_id
        selection = validate_project_schedule(
            ctx.db,
            project,
            ScheduleRequest(
                start_date=payload.rfq_data.preferred_start_date,
                start_time=payload.rfq_data.preferred_start_time,
                subproject_index=payload.selected_subproject_index,
                customer_blocks=customer_blocks,
            ),
            now=ctx.now(),
        )
        if not selection.ok:
            return selection
        apply_selection(booking, selection.value)

    normalized = normalize_booking_for_persistence(booking)
    if not normalized.ok:
        return normalized
    return results.success(booking)


def create_booking(ctx: BookingContext, actor: Actor, payload: BookingCreate) -> OperationResult[Booking]:
    """Create a booking in ``rfq`` on behalf of a customer."""
    if actor.role != Role.CUSTOMER:
        return results.authorization_error("Only customers can create bookings")

    for attempt in range(1, BOOKING_NUMBER_ATTEMPTS + 1):
        built = _build_booking(ctx, actor, payload)
        if not built.ok:
            return built
        booking = built.value
        booking.booking_number = next_booking_number(ctx)
        lifecycle.append_history(booking, BookingStatus.RFQ, at=ctx.now(), updated_by=actor.id, note="Booking created")
        ctx.db.add(booking)
        try:
            ctx.db.commit()
        except IntegrityError:
            ctx.db.rollback()
            if attempt == BOOKING_NUMBER_ATTEMPTS:
                raise
            logger.warning("Booking number %s taken, retrying", booking.booking_number)
            continue
        break

    ctx.db.refresh(booking)
    logger.info("Created booking %s (%s)", booking.booking_number, booking.id)
    payload_out = _created_payload(booking)
    ctx.publish("booking.created", payload_out, actor_id=actor.id)
    ctx.notify("booking.created", [booking.professional_id], payload_out)
    return results.success(booking)


def submit_quote(
    ctx: BookingContext,
    booking: Booking,
    actor: Actor,
    payload: QuoteCreate,
) -> OperationResult[Booking]:
    """Attach the professional's quote and move ``rfq -> quoted``."""
    party = party_of(actor, booking, project_for(ctx, booking))
    if party != Party.PROFESSIONAL:
        return results.authorization_error("Only the booking's professional can submit a quote")
    if booking.status != BookingStatus.RFQ:
        return results.conflict(
            f"Quotes can only be submitted for rfq bookings, not {booking.status}",
            code="INVALID_TRANSITION",
        )

    quote = payload.model_dump(mode="json")
    quote["submitted_at"] = ctx.now().isoformat()
    quote["submitted_by"] = str(actor.id)
    booking.quote = quote

    previous = booking.status
    moved = lifecycle.transition_booking(ctx, booking, BookingStatus.QUOTED, actor_id=actor.id, note="Quote submitted")
    if not moved.ok:
        ctx.db.rollback()
        return moved
    ctx.db.commit()
    ctx.db.refresh(booking)
    lifecycle.announce_status_change(ctx, booking, previous, actor_id=actor.id)
    return results.success(booking, warnings=moved.warnings)


def respond_to_quote(
    ctx: BookingContext,
    booking: Booking,
    actor: Actor,
    payload: QuoteResponse,
) -> OperationResult[QuoteDecision]:
    """Customer accepts (and authorizes payment) or rejects the quote.

    Acceptance and intent creation share one transaction: if the processor
    refuses the authorization, the booking is rolled back to ``quoted``.
    """
    if booking.customer_id != actor.id:
        return results.authorization_error("Only the booking customer can respond to the quote")
    if booking.status != BookingStatus.QUOTED:
        return results.conflict(
            f"No open quote to respond to while booking is {booking.status}",
            code="INVALID_TRANSITION",
        )

    previous = booking.status
    if payload.action == "reject":
        moved = lifecycle.transition_booking(
            ctx, booking, BookingStatus.QUOTE_REJECTED, actor_id=actor.id, note=payload.reason or "Quote rejected"
        )
        if not moved.ok:
            ctx.db.rollback()
            return moved
        ctx.db.commit()
        ctx.db.refresh(booking)
        lifecycle.announce_status_change(ctx, booking, previous, actor_id=actor.id)
        return results.success(QuoteDecision(booking=booking), warnings=moved.warnings)

    moved = lifecycle.transition_booking(
        ctx, booking, BookingStatus.QUOTE_ACCEPTED, actor_id=actor.id, note=payload.reason or "Quote accepted"
    )
    if not moved.ok:
        ctx.db.rollback()
        return moved
    authorization = payments.create_authorization(ctx, booking, actor)
    if not authorization.ok:
        ctx.db.rollback()
        logger.warning("Quote acceptance for booking %s rolled back: %s", booking.id, authorization.reason)
        return authorization

    ctx.db.commit()
    ctx.db.refresh(booking)
    lifecycle.announce_status_change(ctx, booking, previous, actor_id=actor.id)
    return results.success(
        QuoteDecision(booking=booking, authorization=authorization.value),
        warnings=moved.warnings + authorization.warnings,
    )


def request_authorization(ctx: BookingContext, booking: Booking, actor: Actor) -> OperationResult[dict]:
    """(Re)issue the payment intent for an accepted quote."""
    previous = booking.status
    authorization = payments.create_authorization(ctx, booking, actor)
    if not authorization.ok:
        ctx.db.rollback()
        return authorization
    ctx.db.commit()
    ctx.db.refresh(booking)
    lifecycle.announce_status_change(ctx, booking, previous, actor_id=actor.id)
    return authorization


def _complete(ctx: BookingContext, booking: Booking, actor: Actor, note: Optional[str]) -> OperationResult[Booking]:
    warnings: List[str] = []
    payment = booking.payment
    if payment is not None and payment.status == PaymentStatus.AUTHORIZED:
        captured = payments.capture_and_transfer(ctx, booking)
        if not captured.ok:
            ctx.db.rollback()
            return captured
        warnings.extend(captured.warnings)
    elif payment is None or payment.status not in PaymentStatus.SETTLED:
        return results.conflict("Payment not capturable", code="PAYMENT_NOT_CAPTURABLE")

    moved = lifecycle.transition_booking(ctx, booking, BookingStatus.COMPLETED, actor_id=actor.id, note=note)
    if not moved.ok:
        ctx.db.rollback()
        return moved
    return results.success(booking, warnings=warnings + moved.warnings)


def update_status(
    ctx: BookingContext,
    booking: Booking,
    actor: Actor,
    target: str,
    *,
    note: Optional[str] = None,
) -> OperationResult[Booking]:
    """Move a booking on behalf of one of its parties.

    Professionals start the work, customers (or admins) confirm completion.
    Payment and dispute states are set by the payment flow only.
    """
    party = party_of(actor, booking, project_for(ctx, booking))
    if party is None:
        return results.authorization_error()
    if target not in BookingStatus.ALL:
        return results.validation_error(f"Unknown status '{target}'", code="INVALID_STATUS")
    if target in SYSTEM_ONLY_TARGETS:
        return results.authorization_error(f"Status {target} is set by the payment flow", code="SYSTEM_ONLY_STATUS")
    if target == booking.status:
        return results.success(booking)
    if not lifecycle.is_transition_allowed(booking.status, target):
        return results.conflict(
            f"Invalid transition from {booking.status} to {target}",
            code="INVALID_TRANSITION",
        )

    if target == BookingStatus.CANCELLED:
        return cancel_booking(ctx, booking, actor, reason=note)
    if target in DEDICATED_TARGETS:
        return results.validation_error(
            f"Use the quote operations to move a booking to {target}",
            code="USE_QUOTE_OPERATION",
        )

    previous = booking.status
    if target == BookingStatus.IN_PROGRESS:
        if party not in (Party.PROFESSIONAL, Party.ADMIN):
            return results.authorization_error("Only the professional can start the work")
        outcome = lifecycle.transition_booking(ctx, booking, target, actor_id=actor.id, note=note)
        if not outcome.ok:
            ctx.db.rollback()
            return outcome
    else:
        if party not in (Party.CUSTOMER, Party.ADMIN):
            return results.authorization_error("Only the customer can confirm completion")
        outcome = _complete(ctx, booking, actor, note)
        if not outcome.ok:
            return outcome

    ctx.db.commit()
    ctx.db.refresh(booking)
    lifecycle.announce_status_change(ctx, booking, previous, actor_id=actor.id)
    return results.success(booking, warnings=outcome.warnings)


def cancel_booking(
    ctx: BookingContext,
    booking: Booking,
    actor: Actor,
    *,
    reason: Optional[str],
) -> OperationResult[Booking]:
    """Cancel a non-terminal booking and free its reserved time. No refund is issued."""
    if party_of(actor, booking, project_for(ctx, booking)) is None:
        return results.authorization_error()
    if not reason or not reason.strip():
        return results.validation_error("Cancellation reason is required", code="REASON_REQUIRED")
    if booking.status in BookingStatus.TERMINAL or booking.cancelled_at is not None:
        return results.conflict(
            f"Cannot cancel a booking that is {booking.status}",
            code="INVALID_TRANSITION",
        )

    previous = booking.status
    reason = reason.strip()
    moved = lifecycle.transition_booking(ctx, booking, BookingStatus.CANCELLED, actor_id=actor.id, note=reason)
    if not moved.ok:
        ctx.db.rollback()
        return moved
    booking.cancelled_by = actor.id
    booking.cancellation_reason = reason
    booking.cancelled_at = ctx.now()
    ctx.db.commit()
    ctx.db.refresh(booking)
    lifecycle.announce_status_change(ctx, booking, previous, actor_id=actor.id)
    return results.success(booking, warnings=moved.warnings)


def _question_id(question: dict) -> Optional[str]:
    raw = question.get("id") or question.get("question_id")
    return str(raw) if raw is not None else None


def submit_post_booking_answers(
    ctx: BookingContext,
    booking: Booking,
    actor: Actor,
    payload: PostBookingAnswers,
) -> OperationResult[Booking]:
    if booking.customer_id != actor.id:
        return results.authorization_error("Only the booking customer can answer post-booking questions")
    if booking.post_booking_data:
        return results.conflict("Post-booking answers already submitted", code="ALREADY_SUBMITTED")

    project = project_for(ctx, booking)
    questions = (project.post_booking_questions if project else None) or []
    if not questions:
        return results.validation_error(
            "No post-booking questions available for this booking",
            code="NO_POST_BOOKING_QUESTIONS",
        )

    answers = [
        {
            "question_id": item.question_id or "",
            "question": item.question or "",
            "answer": item.answer.strip(),
        }
        for item in payload.answers
    ]

    def answered(question: dict) -> bool:
        question_id = _question_id(question)
        for answer in answers:
            if question_id and answer["question_id"] == question_id:
                return bool(answer["answer"])
            if question.get("question") and answer["question"] == question.get("question"):
                return bool(answer["answer"])
        return False

    if any(question.get("is_required") and not answered(question) for question in questions):
        return results.validation_error("Please answer all required questions", code="MISSING_REQUIRED_ANSWERS")

    booking.post_booking_data = [answer for answer in answers if answer["answer"]]
    ctx.db.commit()
    ctx.db.refresh(booking)
    return results.success(booking)
