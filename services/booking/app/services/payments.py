"""Payment coordination: authorize at quote acceptance, capture at completion.

Payment status lives on ``BookingPayment`` and moves independently of the
booking status, but only through the functions here and the webhook
handlers. None of them commit.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from app.models.booking import Booking, BookingPayment, BookingStatus, PaymentStatus
from app.models.payout_account import PayoutAccount
from app.services import lifecycle, results
from app.services.actors import Actor
from app.services.context import BookingContext
from app.services.payment_processor import PaymentProcessorError
from app.services.payment_utils import (
    build_payment_metadata,
    build_transfer_metadata,
    calculate_platform_commission,
    calculate_professional_payout,
    generate_idempotency_key,
    is_authorization_expired,
    is_authorization_expiring_soon,
    quantize,
    validate_currency,
    validate_payment_amount,
)
from app.services.results import OperationResult

logger = logging.getLogger(__name__)

AUTHORIZATION_ELIGIBLE_STATUSES = frozenset(
    {BookingStatus.QUOTE_ACCEPTED, BookingStatus.PAYMENT_PENDING, BookingStatus.BOOKED}
)
REFUNDABLE_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.CAPTURED, PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED}
)


def _authorization_payload(payment: BookingPayment, *, reused: bool) -> dict:
    return {
        "client_secret": payment.client_secret,
        "payment_intent_id": payment.payment_intent_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status,
        "reused": reused,
    }


def create_authorization(
    ctx: BookingContext,
    booking: Booking,
    payer: Actor,
) -> OperationResult[dict]:
    """Create (or hand back) the manual-capture intent for the quoted amount."""
    if booking.customer_id != payer.id:
        return results.authorization_error("Only the booking customer can pay for it")
    if not booking.quote:
        return results.validation_error("Booking has no quote", code="QUOTE_REQUIRED")
    if booking.status not in AUTHORIZATION_ELIGIBLE_STATUSES:
        return results.conflict(
            f"Cannot authorize payment while booking is {booking.status}",
            code="INVALID_BOOKING_STATUS",
        )

    payment = booking.payment
    if payment and payment.status in PaymentStatus.ALREADY_AUTHORIZED:
        return results.conflict(
            f"Payment for booking {booking.booking_number} is already {payment.status}",
            code="PAYMENT_ALREADY_AUTHORIZED",
        )
    if payment and payment.client_secret and payment.status in PaymentStatus.REUSABLE:
        return results.success(_authorization_payload(payment, reused=True))

    amount = quantize(booking.quote["amount"])
    currency = (booking.quote.get("currency") or ctx.default_currency).upper()
    if not validate_currency(currency):
        return results.validation_error(f"Unsupported currency {currency}", code="INVALID_CURRENCY")
    amount_error = validate_payment_amount(amount, currency)
    if amount_error:
        return results.validation_error(amount_error, code="INVALID_AMOUNT")

    # a retry after a failed attempt must not collide with the first key
    retry_marker = int(ctx.now().timestamp()) if payment else None
    try:
        intent = ctx.processor.create_authorization(
            amount,
            currency,
            build_payment_metadata(booking, ctx.environment),
            idempotency_key=generate_idempotency_key(booking.id, "authorize", timestamp=retry_marker),
        )
    except PaymentProcessorError as exc:
        logger.warning("Authorization failed for booking %s: %s", booking.id, exc)
        return results.dependency_failure(
            f"Payment processor rejected the authorization: {exc}",
            code="PAYMENT_INTENT_FAILED",
        )

    if payment is None:
        payment = BookingPayment(booking=booking, amount=amount, currency=currency)
        ctx.db.add(payment)
    payment.amount = amount
    payment.currency = currency
    payment.status = PaymentStatus.PENDING
    payment.payment_intent_id = intent.intent_id
    payment.client_secret = intent.client_secret
    payment.platform_commission = calculate_platform_commission(amount, ctx.commission_percent)
    payment.professional_payout = calculate_professional_payout(amount, ctx.commission_percent)
    payment.failure_reason = None
    payment.authorized_at = None
    payment.canceled_at = None

    if booking.status == BookingStatus.QUOTE_ACCEPTED:
        moved = lifecycle.transition_booking(
            ctx, booking, BookingStatus.PAYMENT_PENDING, actor_id=payer.id, note="Payment authorization created"
        )
        if not moved.ok:
            return moved

    ctx.db.flush()
    logger.info("Created payment intent %s for booking %s", intent.intent_id, booking.id)
    return results.success(_authorization_payload(payment, reused=False))


def _payout_destination(ctx: BookingContext, booking: Booking) -> Optional[PayoutAccount]:
    if booking.professional_id is None:
        return None
    return ctx.db.get(PayoutAccount, booking.professional_id)


def capture_and_transfer(ctx: BookingContext, booking: Booking) -> OperationResult[BookingPayment]:
    """Capture the held funds and pay the professional out.

    Only valid from ``authorized``. A failed capture changes nothing. A failed
    transfer after a successful capture leaves the payment ``captured`` with
    the failure recorded, and is reported as a warning: the customer's money
    has moved, so the booking may still complete.
    """
    payment = booking.payment
    if payment is None or payment.status != PaymentStatus.AUTHORIZED:
        return results.conflict("Payment not capturable", code="PAYMENT_NOT_CAPTURABLE")

    warnings = []
    now = ctx.now()
    if payment.authorized_at is not None:
        if is_authorization_expired(payment.authorized_at, now):
            logger.warning("Authorization for booking %s is past its validity window", booking.id)
        elif is_authorization_expiring_soon(payment.authorized_at, now):
            warnings.append("Payment authorization is about to expire")

    if payment.captured_at is None:
        try:
            captured = ctx.processor.capture(
                payment.payment_intent_id,
                idempotency_key=generate_idempotency_key(booking.id, "capture"),
            )
        except PaymentProcessorError as exc:
            logger.warning("Capture failed for booking %s: %s", booking.id, exc)
            return results.dependency_failure(f"Capture failed: {exc}", code="CAPTURE_FAILED")
        payment.captured_at = now
        payment.charge_id = captured.charge_id or payment.charge_id
    payment.status = PaymentStatus.CAPTURED

    account = _payout_destination(ctx, booking)
    if account is None or not account.account_id:
        message = "Professional has no payout account; transfer pending"
        payment.failure_reason = message
        warnings.append(message)
        ctx.db.flush()
        return results.success(payment, warnings=warnings)

    payout = payment.professional_payout
    if payout is None:
        payout = calculate_professional_payout(payment.amount, ctx.commission_percent)
        payment.professional_payout = payout
    try:
        transfer_id = ctx.processor.transfer(
            account.account_id,
            Decimal(payout),
            payment.currency,
            build_transfer_metadata(booking, ctx.environment, now),
            idempotency_key=generate_idempotency_key(booking.id, "transfer"),
        )
    except PaymentProcessorError as exc:
        logger.error("Transfer failed for booking %s after capture: %s", booking.id, exc)
        message = f"Transfer to professional failed after capture: {exc}"
        payment.failure_reason = message
        warnings.append(message)
        ctx.db.flush()
        return results.success(payment, warnings=warnings)

    payment.transfer_id = transfer_id
    payment.transferred_at = now
    payment.status = PaymentStatus.COMPLETED
    payment.failure_reason = None
    ctx.db.flush()
    logger.info("Captured and transferred payment for booking %s", booking.id)
    return results.success(payment, warnings=warnings)


def apply_refund(
    ctx: BookingContext,
    booking: Booking,
    refunded_total: Decimal,
    *,
    reason: Optional[str],
    source: str,
    actor_id=None,
) -> OperationResult[BookingPayment]:
    """Record that ``refunded_total`` of the payment has been returned.

    A full refund moves the payment to ``refunded`` and the booking to
    ``refunded`` where the table allows it, otherwise to ``cancelled`` if the
    booking is still open. A partial refund leaves the booking alone.
    """
    payment = booking.payment
    refunded_total = quantize(refunded_total)
    payment.refunded_amount = refunded_total
    payment.refunded_at = ctx.now()
    payment.refund_reason = reason or payment.refund_reason
    payment.refund_source = source

    if refunded_total < quantize(payment.amount):
        payment.status = PaymentStatus.PARTIALLY_REFUNDED
        ctx.db.flush()
        return results.success(payment)

    payment.status = PaymentStatus.REFUNDED
    warnings = []
    if lifecycle.is_transition_allowed(booking.status, BookingStatus.REFUNDED):
        moved = lifecycle.transition_booking(ctx, booking, BookingStatus.REFUNDED, actor_id=actor_id, note=reason)
        warnings.extend(moved.warnings)
    elif booking.status not in BookingStatus.TERMINAL:
        moved = lifecycle.transition_booking(
            ctx, booking, BookingStatus.CANCELLED, actor_id=actor_id, note=reason or "Payment refunded"
        )
        warnings.extend(moved.warnings)
    ctx.db.flush()
    return results.success(payment, warnings=warnings)


def refund(
    ctx: BookingContext,
    booking: Booking,
    actor: Actor,
    *,
    amount: Optional[Decimal] = None,
    reason: Optional[str] = None,
) -> OperationResult[BookingPayment]:
    """Platform-initiated refund of all or part of a captured payment."""
    if not actor.is_admin:
        return results.authorization_error("Only the platform can issue refunds")
    payment = booking.payment
    if payment is None or payment.status not in REFUNDABLE_PAYMENT_STATUSES:
        return results.conflict("Payment is not refundable", code="PAYMENT_NOT_REFUNDABLE")

    already = quantize(payment.refunded_amount or 0)
    remaining = quantize(payment.amount) - already
    requested = quantize(amount) if amount is not None else remaining
    if requested <= 0:
        return results.validation_error("Refund amount must be positive", code="INVALID_AMOUNT")
    if requested > remaining:
        return results.validation_error(
            f"Refund exceeds the refundable remainder of {remaining}",
            code="REFUND_EXCEEDS_CAPTURED",
        )

    try:
        ctx.processor.refund(
            payment.payment_intent_id,
            requested,
            idempotency_key=generate_idempotency_key(booking.id, "refund", timestamp=int(ctx.now().timestamp())),
            reason=reason,
        )
    except PaymentProcessorError as exc:
        logger.warning("Refund failed for booking %s: %s", booking.id, exc)
        return results.dependency_failure(f"Refund failed: {exc}", code="REFUND_FAILED")

    return apply_refund(
        ctx,
        booking,
        already + requested,
        reason=reason,
        source="platform",
        actor_id=actor.id,
    )
