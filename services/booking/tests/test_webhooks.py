from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from app.models.booking import BookingStatus, PaymentStatus
from app.models.payout_account import PayoutAccount, PayoutAccountStatus
from app.models.webhook_event import WebhookEvent, WebhookEventStatus
from app.services import webhook_events, webhook_handlers
from app.services.results import Outcome


def _event(event_type, obj, event_id=None, **extra):
    event = {
        "id": event_id or f"evt_{uuid4().hex[:12]}",
        "type": event_type,
        "created": 1704844800,
        "data": {"object": obj},
    }
    event.update(extra)
    return event


def _intent(booking, **fields):
    obj = {"id": booking.payment.payment_intent_id, "metadata": {"booking_id": str(booking.id)}}
    obj.update(fields)
    return obj


def _stored(db, event_id):
    db.expire_all()
    return db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).one()


# =====================================================================
# Claim log
# =====================================================================

def test_reserve_claims_once(db_session, clock):
    first = webhook_events.reserve(db_session, "evt_1", "charge.refunded", now=clock())
    second = webhook_events.reserve(db_session, "evt_1", "charge.refunded", now=clock())

    assert first.ok and first.outcome == Outcome.OK
    assert second.outcome == Outcome.DUPLICATE
    record = _stored(db_session, "evt_1")
    assert record.status == WebhookEventStatus.PROCESSING
    assert record.attempts == 1


def test_failed_event_can_be_reclaimed(db_session, clock):
    webhook_events.reserve(db_session, "evt_2", "payment_intent.succeeded", now=clock())
    webhook_events.mark_failed(db_session, "evt_2", RuntimeError("database went away"), now=clock())

    retry = webhook_events.reserve(db_session, "evt_2", "payment_intent.succeeded", now=clock())

    assert retry.outcome == Outcome.OK
    record = _stored(db_session, "evt_2")
    assert record.attempts == 2
    assert record.status == WebhookEventStatus.PROCESSING
    assert record.last_error is None


def test_processed_event_is_not_reclaimed(db_session, clock):
    webhook_events.reserve(db_session, "evt_3", "payout.paid", now=clock())
    webhook_events.mark_processed(db_session, "evt_3", now=clock())

    assert webhook_events.reserve(db_session, "evt_3", "payout.paid", now=clock()).outcome == Outcome.DUPLICATE
    assert _stored(db_session, "evt_3").processed_at is not None


def test_last_error_is_truncated(db_session, clock):
    webhook_events.reserve(db_session, "evt_4", "payout.paid", now=clock())
    webhook_events.mark_failed(db_session, "evt_4", ValueError("x" * 5000), now=clock())

    assert len(_stored(db_session, "evt_4").last_error) == 2000


def test_purge_removes_expired_records(db_session, clock):
    webhook_events.reserve(db_session, "evt_old", "payout.paid", now=clock(), retention_days=1)
    webhook_events.reserve(db_session, "evt_new", "payout.paid", now=clock())

    removed = webhook_events.purge_expired_webhook_events(db_session, now=clock() + timedelta(days=2))

    assert removed == 1
    assert [record.event_id for record in db_session.query(WebhookEvent).all()] == ["evt_new"]


# =====================================================================
# Processing
# =====================================================================

def test_authorization_event_books_the_booking(ctx, make_booking):
    booking = make_booking(status=BookingStatus.PAYMENT_PENDING, payment_status=PaymentStatus.PENDING)
    event = _event("payment_intent.amount_capturable_updated", _intent(booking, latest_charge="ch_live_1"))

    result = webhook_handlers.process_event(ctx, event)

    assert result.ok
    assert booking.status == BookingStatus.BOOKED
    assert booking.payment.status == PaymentStatus.AUTHORIZED
    assert booking.payment.charge_id == "ch_live_1"
    assert booking.payment.authorized_at is not None
    assert _stored(ctx.db, event["id"]).status == WebhookEventStatus.PROCESSED


def test_redelivered_event_is_skipped(ctx, make_booking, monkeypatch):
    booking = make_booking(status=BookingStatus.PAYMENT_PENDING, payment_status=PaymentStatus.PENDING)
    event = _event("payment_intent.succeeded", _intent(booking), event_id="evt_same")
    webhook_handlers.process_event(ctx, event)

    calls = []
    monkeypatch.setitem(webhook_handlers.HANDLERS, "payment_intent.succeeded", lambda c, o: calls.append(o))
    again = webhook_handlers.process_event(ctx, event)

    assert again.outcome == Outcome.DUPLICATE
    assert calls == []
    assert len(booking.status_history) == 2


def test_handler_failure_marks_event_for_retry(ctx, make_booking, monkeypatch):
    booking = make_booking(status=BookingStatus.PAYMENT_PENDING, payment_status=PaymentStatus.PENDING)
    event = _event("payment_intent.succeeded", _intent(booking), event_id="evt_flaky")

    def broken(ctx, obj):
        raise RuntimeError("lock timeout")

    with monkeypatch.context() as patched:
        patched.setitem(webhook_handlers.HANDLERS, "payment_intent.succeeded", broken)
        failed = webhook_handlers.process_event(ctx, event)

    assert failed.outcome == Outcome.DEPENDENCY_FAILURE
    record = _stored(ctx.db, "evt_flaky")
    assert record.status == WebhookEventStatus.FAILED
    assert "lock timeout" in record.last_error
    ctx.db.refresh(booking)
    assert booking.status == BookingStatus.PAYMENT_PENDING

    retried = webhook_handlers.process_event(ctx, event)

    assert retried.ok
    assert _stored(ctx.db, "evt_flaky").attempts == 2
    ctx.db.refresh(booking)
    assert booking.status == BookingStatus.BOOKED


def test_event_without_id_is_rejected(ctx):
    result = webhook_handlers.process_event(ctx, {"type": "payout.paid", "data": {"object": {}}})
    assert result.code == "INVALID_EVENT"


def test_unknown_event_type_is_acknowledged(ctx):
    event = _event("customer.created", {"id": "cus_1"})

    assert webhook_handlers.process_event(ctx, event).ok
    assert _stored(ctx.db, event["id"]).status == WebhookEventStatus.PROCESSED


def test_payment_failure_allows_retry(ctx, make_booking):
    booking = make_booking(status=BookingStatus.PAYMENT_PENDING, payment_status=PaymentStatus.PENDING)
    event = _event(
        "payment_intent.payment_failed",
        _intent(booking, last_payment_error={"message": "Your card was declined."}),
    )

    webhook_handlers.process_event(ctx, event)

    assert booking.payment.status == PaymentStatus.FAILED
    assert booking.payment.failure_reason == "Your card was declined."
    assert booking.status == BookingStatus.PAYMENT_PENDING


def test_canceled_authorization_cancels_booking(ctx, make_booking):
    booking = make_booking(status=BookingStatus.BOOKED, payment_status=PaymentStatus.AUTHORIZED)
    event = _event("payment_intent.canceled", _intent(booking, cancellation_reason="abandoned"))

    webhook_handlers.process_event(ctx, event)

    assert booking.payment.status == PaymentStatus.REFUNDED
    assert booking.payment.refund_source == "processor"
    assert booking.status == BookingStatus.CANCELLED
    assert booking.cancelled_at is not None


def test_partial_charge_refund_is_applied_once(ctx, make_booking):
    booking = make_booking(status=BookingStatus.COMPLETED, payment_status=PaymentStatus.COMPLETED)
    charge = {"id": booking.payment.charge_id, "payment_intent": booking.payment.payment_intent_id, "amount_refunded": 5000}

    webhook_handlers.process_event(ctx, _event("charge.refunded", charge))
    webhook_handlers.process_event(ctx, _event("charge.refunded", charge))

    assert booking.payment.status == PaymentStatus.PARTIALLY_REFUNDED
    assert booking.payment.refunded_amount == Decimal("50.00")
    assert booking.status == BookingStatus.COMPLETED


def test_dispute_lifecycle_won(ctx, make_booking):
    booking = make_booking(status=BookingStatus.BOOKED, payment_status=PaymentStatus.CAPTURED)
    dispute = {
        "id": "dp_1",
        "charge": booking.payment.charge_id,
        "amount": 20000,
        "currency": "eur",
        "reason": "fraudulent",
        "status": "needs_response",
    }

    webhook_handlers.process_event(ctx, _event("charge.dispute.created", dispute))

    assert booking.status == BookingStatus.DISPUTE
    assert booking.payment.status == PaymentStatus.DISPUTED
    assert booking.payment.dispute_amount_pending == Decimal("200.00")

    webhook_handlers.process_event(ctx, _event("charge.dispute.closed", dict(dispute, status="won")))

    assert booking.payment.status == PaymentStatus.COMPLETED
    assert booking.status == BookingStatus.COMPLETED


def test_dispute_lost_refunds_booking(ctx, make_booking):
    booking = make_booking(status=BookingStatus.DISPUTE, payment_status=PaymentStatus.DISPUTED)
    dispute = {"id": "dp_2", "charge": booking.payment.charge_id, "reason": "product_not_received", "status": "lost"}

    webhook_handlers.process_event(ctx, _event("charge.dispute.closed", dispute))

    assert booking.payment.status == PaymentStatus.REFUNDED
    assert booking.payment.refund_source == "platform"
    assert booking.status == BookingStatus.REFUNDED


def test_account_update_registers_payout_account(ctx):
    professional_id = uuid4()
    account = {
        "id": "acct_new",
        "charges_enabled": True,
        "payouts_enabled": True,
        "details_submitted": True,
        "metadata": {"professional_id": str(professional_id)},
    }

    webhook_handlers.process_event(ctx, _event("account.updated", account))

    record = ctx.db.get(PayoutAccount, professional_id)
    assert record.account_id == "acct_new"
    assert record.account_status == PayoutAccountStatus.ACTIVE


def test_account_status_mapping():
    assert webhook_handlers.account_status_for(True, False) == PayoutAccountStatus.ACTIVE
    assert webhook_handlers.account_status_for(False, True) == PayoutAccountStatus.PENDING
    assert webhook_handlers.account_status_for(False, False) == PayoutAccountStatus.RESTRICTED


def test_deauthorized_account_is_restricted(ctx, payout_account):
    professional_id = uuid4()
    payout_account(professional_id, "acct_gone")

    event = _event("account.application.deauthorized", {"id": "ca_1"}, account="acct_gone")
    webhook_handlers.process_event(ctx, event)

    record = ctx.db.get(PayoutAccount, professional_id)
    ctx.db.refresh(record)
    assert record.account_status == PayoutAccountStatus.RESTRICTED
    assert record.payouts_enabled is False


def test_provider_timestamp_is_recorded(ctx):
    event = _event("payout.paid", {"id": "po_1", "amount": 1000, "currency": "eur"})

    webhook_handlers.process_event(ctx, event)

    stored = _stored(ctx.db, event["id"])
    assert stored.provider_created_at.replace(tzinfo=timezone.utc) == datetime(2024, 1, 10, tzinfo=timezone.utc)
