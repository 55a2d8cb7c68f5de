"""Reconciliation of payment processor events into booking and payment state.

Every handler re-reads the current state and only moves it forward, so a
re-delivered event that slips past the claim log is still harmless.
Handlers flush but never commit; ``process_event`` owns the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import UUID

from app.models.booking import Booking, BookingPayment, BookingStatus, PaymentStatus
from app.models.payout_account import PayoutAccount, PayoutAccountStatus
from app.services import lifecycle, payments, results, webhook_events
from app.services.context import BookingContext
from app.services.payment_utils import from_minor_units, quantize
from app.services.results import OperationResult

logger = logging.getLogger(__name__)

StatusChange = Optional[Tuple[Booking, str]]


def _booking_from_metadata(ctx: BookingContext, obj: Dict[str, Any]) -> Optional[Booking]:
    raw = (obj.get("metadata") or {}).get("booking_id")
    if not raw:
        return None
    try:
        return ctx.db.get(Booking, UUID(str(raw)))
    except ValueError:
        logger.warning("Event metadata carries malformed booking id %r", raw)
        return None


def _booking_by_payment(ctx: BookingContext, column, value: Optional[str]) -> Optional[Booking]:
    if not value:
        return None
    return ctx.db.query(Booking).join(BookingPayment).filter(column == value).first()


def _booking_for_intent(ctx: BookingContext, intent: Dict[str, Any]) -> Optional[Booking]:
    booking = _booking_from_metadata(ctx, intent)
    if booking is None:
        booking = _booking_by_payment(ctx, BookingPayment.payment_intent_id, intent.get("id"))
    return booking


def _booking_for_charge(ctx: BookingContext, charge_id: Optional[str], intent_id: Optional[str]) -> Optional[Booking]:
    booking = _booking_by_payment(ctx, BookingPayment.charge_id, charge_id)
    if booking is None:
        booking = _booking_by_payment(ctx, BookingPayment.payment_intent_id, intent_id)
    return booking


def _move(ctx: BookingContext, booking: Booking, target: str, note: str) -> StatusChange:
    previous = booking.status
    if previous == target or not lifecycle.is_transition_allowed(previous, target):
        return None
    moved = lifecycle.transition_booking(ctx, booking, target, note=note)
    if not moved.ok:
        return None
    return booking, previous


def handle_authorization_succeeded(ctx: BookingContext, intent: Dict[str, Any]) -> StatusChange:
    booking = _booking_for_intent(ctx, intent)
    if booking is None or booking.payment is None:
        return None
    payment = booking.payment
    if payment.status != PaymentStatus.PENDING:
        return None
    payment.status = PaymentStatus.AUTHORIZED
    payment.authorized_at = ctx.now()
    payment.failure_reason = None
    if intent.get("latest_charge"):
        payment.charge_id = intent["latest_charge"]
    logger.info("Payment authorized for booking %s", booking.id)
    return _move(ctx, booking, BookingStatus.BOOKED, "Payment authorized")


def handle_payment_failed(ctx: BookingContext, intent: Dict[str, Any]) -> StatusChange:
    booking = _booking_for_intent(ctx, intent)
    if booking is None or booking.payment is None:
        return None
    payment = booking.payment
    if payment.status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
        return None
    payment.status = PaymentStatus.FAILED
    error = intent.get("last_payment_error") or {}
    payment.failure_reason = error.get("message") or "Payment failed"
    logger.info("Payment failed for booking %s", booking.id)
    return _move(ctx, booking, BookingStatus.PAYMENT_PENDING, "Payment failed, retry allowed")


def handle_payment_canceled(ctx: BookingContext, intent: Dict[str, Any]) -> StatusChange:
    booking = _booking_for_intent(ctx, intent)
    if booking is None or booking.payment is None:
        return None
    payment = booking.payment
    now = ctx.now()
    if payment.status == PaymentStatus.AUTHORIZED:
        payment.status = PaymentStatus.REFUNDED
        payment.refunded_at = now
        payment.canceled_at = now
        payment.refund_reason = intent.get("cancellation_reason") or "Authorization canceled"
        payment.refund_source = "processor"
        if booking.status in BookingStatus.TERMINAL:
            return None
        previous = booking.status
        moved = lifecycle.transition_booking(
            ctx, booking, BookingStatus.CANCELLED, note="Payment authorization canceled"
        )
        if not moved.ok:
            return None
        booking.cancellation_reason = booking.cancellation_reason or "Payment authorization canceled"
        booking.cancelled_at = booking.cancelled_at or now
        return booking, previous
    if payment.status == PaymentStatus.FAILED:
        payment.canceled_at = now
        return _move(ctx, booking, BookingStatus.PAYMENT_PENDING, "Payment canceled, retry allowed")
    return None


def handle_charge_captured(ctx: BookingContext, charge: Dict[str, Any]) -> StatusChange:
    booking = _booking_for_charge(ctx, charge.get("id"), charge.get("payment_intent"))
    if booking is None or booking.payment is None:
        return None
    payment = booking.payment
    if payment.status == PaymentStatus.AUTHORIZED and payment.captured_at is None:
        payment.captured_at = ctx.now()
        payment.charge_id = charge.get("id") or payment.charge_id
        logger.info("Charge captured for booking %s", booking.id)
    return None


def handle_charge_refunded(ctx: BookingContext, charge: Dict[str, Any]) -> StatusChange:
    booking = _booking_for_charge(ctx, charge.get("id"), charge.get("payment_intent"))
    if booking is None or booking.payment is None:
        return None
    payment = booking.payment
    refunded_total = from_minor_units(charge.get("amount_refunded") or 0)
    if refunded_total <= quantize(payment.refunded_amount or 0):
        return None
    previous = booking.status
    applied = payments.apply_refund(ctx, booking, refunded_total, reason=payment.refund_reason, source="processor")
    if not applied.ok or booking.status == previous:
        return None
    return booking, previous


def handle_dispute_created(ctx: BookingContext, dispute: Dict[str, Any]) -> StatusChange:
    booking = _booking_for_charge(ctx, dispute.get("charge"), dispute.get("payment_intent"))
    if booking is None or booking.payment is None:
        logger.error("Dispute %s created for unknown charge %s", dispute.get("id"), dispute.get("charge"))
        return None
    payment = booking.payment
    if payment.dispute_id == dispute.get("id"):
        return None
    amount = from_minor_units(dispute.get("amount") or 0)
    currency = str(dispute.get("currency") or payment.currency).upper()
    payment.status = PaymentStatus.DISPUTED
    payment.dispute_id = dispute.get("id")
    payment.dispute_reason = dispute.get("reason") or "unknown"
    payment.dispute_amount_pending = amount
    payment.dispute_status = dispute.get("status")
    payment.dispute_opened_at = ctx.now()
    payment.refund_notes = (
        f"Dispute {dispute.get('id')} opened. Amount pending: {amount} {currency}. Status: {dispute.get('status')}"
    )
    logger.error("Dispute %s opened for booking %s (%s %s)", dispute.get("id"), booking.id, amount, currency)
    return _move(ctx, booking, BookingStatus.DISPUTE, f"Chargeback opened: {payment.dispute_reason}")


def handle_dispute_closed(ctx: BookingContext, dispute: Dict[str, Any]) -> StatusChange:
    booking = _booking_for_charge(ctx, dispute.get("charge"), dispute.get("payment_intent"))
    if booking is None or booking.payment is None:
        return None
    payment = booking.payment
    status = dispute.get("status")
    if payment.status != PaymentStatus.DISPUTED:
        return None
    payment.dispute_status = status

    if status == "won":
        payment.status = PaymentStatus.COMPLETED
        payment.refund_notes = f"Dispute {dispute.get('id')} won. Funds restored."
        logger.info("Dispute %s won for booking %s", dispute.get("id"), booking.id)
        return _move(ctx, booking, BookingStatus.COMPLETED, "Dispute resolved in the platform's favour")

    previous = booking.status
    reason = f"Dispute lost: {dispute.get('reason') or 'unknown'}"
    payments.apply_refund(ctx, booking, payment.amount, reason=reason, source="platform")
    payment.refund_notes = f"Dispute {dispute.get('id')} lost. Status: {status}"
    logger.error("Dispute %s lost for booking %s", dispute.get("id"), booking.id)
    if booking.status == previous:
        return None
    return booking, previous


def handle_transfer_created(ctx: BookingContext, transfer: Dict[str, Any]) -> StatusChange:
    booking = _booking_from_metadata(ctx, transfer)
    if booking is None or booking.payment is None:
        return None
    payment = booking.payment
    if payment.transfer_id != transfer.get("id"):
        payment.transfer_id = transfer.get("id")
        payment.transferred_at = payment.transferred_at or ctx.now()
    return None


def handle_transfer_reversed(ctx: BookingContext, transfer: Dict[str, Any]) -> StatusChange:
    booking = _booking_from_metadata(ctx, transfer)
    if booking is None or booking.payment is None:
        return None
    booking.payment.failure_reason = f"Transfer {transfer.get('id')} reversed"
    logger.warning("Transfer %s reversed for booking %s", transfer.get("id"), booking.id)
    return None


def account_status_for(charges_enabled: bool, details_submitted: bool) -> str:
    if charges_enabled:
        return PayoutAccountStatus.ACTIVE
    if details_submitted:
        return PayoutAccountStatus.PENDING
    return PayoutAccountStatus.RESTRICTED


def handle_account_updated(ctx: BookingContext, account: Dict[str, Any]) -> StatusChange:
    record = ctx.db.query(PayoutAccount).filter(PayoutAccount.account_id == account.get("id")).first()
    if record is None:
        professional_id = (account.get("metadata") or {}).get("professional_id")
        if not professional_id:
            logger.info("Ignoring update for unknown payout account %s", account.get("id"))
            return None
        record = PayoutAccount(professional_id=UUID(str(professional_id)), account_id=account.get("id"))
        ctx.db.add(record)
    record.charges_enabled = bool(account.get("charges_enabled"))
    record.payouts_enabled = bool(account.get("payouts_enabled"))
    record.details_submitted = bool(account.get("details_submitted"))
    record.account_status = account_status_for(record.charges_enabled, record.details_submitted)
    ctx.db.flush()
    return None


def handle_account_deauthorized(ctx: BookingContext, account_id: Optional[str]) -> StatusChange:
    if not account_id:
        return None
    record = ctx.db.query(PayoutAccount).filter(PayoutAccount.account_id == account_id).first()
    if record is None:
        return None
    record.charges_enabled = False
    record.payouts_enabled = False
    record.account_status = PayoutAccountStatus.RESTRICTED
    logger.error("Payout account %s deauthorized for professional %s", account_id, record.professional_id)
    return None


def handle_payout_paid(ctx: BookingContext, payout: Dict[str, Any]) -> StatusChange:
    logger.info(
        "Payout %s paid: %s %s",
        payout.get("id"),
        from_minor_units(payout.get("amount") or 0),
        str(payout.get("currency") or "").upper(),
    )
    return None


HANDLERS: Dict[str, Callable[[BookingContext, Dict[str, Any]], StatusChange]] = {
    "payment_intent.amount_capturable_updated": handle_authorization_succeeded,
    "payment_intent.succeeded": handle_authorization_succeeded,
    "payment_intent.payment_failed": handle_payment_failed,
    "payment_intent.canceled": handle_payment_canceled,
    "charge.captured": handle_charge_captured,
    "charge.refunded": handle_charge_refunded,
    "charge.dispute.created": handle_dispute_created,
    "charge.dispute.closed": handle_dispute_closed,
    "transfer.created": handle_transfer_created,
    "transfer.reversed": handle_transfer_reversed,
    "account.updated": handle_account_updated,
    "payout.paid": handle_payout_paid,
}


def dispatch(ctx: BookingContext, event: Dict[str, Any]) -> StatusChange:
    event_type = event.get("type")
    if event_type == "account.application.deauthorized":
        return handle_account_deauthorized(ctx, event.get("account"))
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled webhook event type %s", event_type)
        return None
    return handler(ctx, (event.get("data") or {}).get("object") or {})


def _provider_created_at(event: Dict[str, Any]) -> Optional[datetime]:
    created = event.get("created")
    if created is None:
        return None
    return datetime.fromtimestamp(int(created), tz=timezone.utc)


def process_event(
    ctx: BookingContext,
    event: Dict[str, Any],
    *,
    retention_days: int = webhook_events.DEFAULT_RETENTION_DAYS,
) -> OperationResult[dict]:
    """Claim, apply and record one verified processor event."""
    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        return results.validation_error("Event id and type are required", code="INVALID_EVENT")

    claim = webhook_events.reserve(
        ctx.db,
        event_id,
        event_type,
        provider_created_at=_provider_created_at(event),
        now=ctx.now(),
        retention_days=retention_days,
    )
    if claim.outcome == results.Outcome.DUPLICATE:
        return claim

    try:
        change = dispatch(ctx, event)
        ctx.db.commit()
    except Exception as exc:
        ctx.db.rollback()
        logger.exception("Webhook %s (%s) failed", event_id, event_type)
        webhook_events.mark_failed(ctx.db, event_id, exc, now=ctx.now())
        return results.dependency_failure(f"Webhook handler failed: {exc}", code="WEBHOOK_HANDLER_FAILED")

    webhook_events.mark_processed(ctx.db, event_id, now=ctx.now())
    if change is not None:
        booking, previous = change
        ctx.db.refresh(booking)
        lifecycle.announce_status_change(ctx, booking, previous)
    return results.success({"event_id": event_id, "event_type": event_type})
