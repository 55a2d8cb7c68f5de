"""Durable claim log for payment processor callbacks.

A delivery is processed only by the worker that inserted its record, or by
the worker that re-claims a ``failed`` record with a conditional update.
Everything else is reported as a duplicate.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.webhook_event import LAST_ERROR_MAX_LENGTH, WebhookEvent, WebhookEventStatus
from app.services import results
from app.services.results import OperationResult
from shared import utcnow

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 90


def reserve(
    db: Session,
    event_id: str,
    event_type: str,
    *,
    provider_created_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> OperationResult[WebhookEvent]:
    """Claim ``event_id`` for processing.

    Returns success with the claimed record when the caller should run the
    handler, and a duplicate outcome when the event is already processed or
    owned by another worker.
    """
    now = now or utcnow()
    record = WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        status=WebhookEventStatus.PROCESSING,
        attempts=1,
        provider_created_at=provider_created_at,
        first_seen_at=now,
        last_attempt_at=now,
        expires_at=now + timedelta(days=retention_days),
    )
    db.add(record)
    try:
        db.commit()
        return results.success(record)
    except IntegrityError:
        db.rollback()

    claimed = (
        db.query(WebhookEvent)
        .filter(WebhookEvent.event_id == event_id, WebhookEvent.status == WebhookEventStatus.FAILED)
        .update(
            {
                WebhookEvent.status: WebhookEventStatus.PROCESSING,
                WebhookEvent.attempts: WebhookEvent.attempts + 1,
                WebhookEvent.last_attempt_at: now,
                WebhookEvent.last_error: None,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if claimed == 1:
        record = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).one()
        logger.info("Re-claimed failed webhook event %s (attempt %s)", event_id, record.attempts)
        return results.success(record)

    logger.info("Skipping duplicate webhook event %s", event_id)
    return results.duplicate(f"Event {event_id} already handled or in progress")


def mark_processed(db: Session, event_id: str, *, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).update(
        {
            WebhookEvent.status: WebhookEventStatus.PROCESSED,
            WebhookEvent.processed_at: now,
            WebhookEvent.last_attempt_at: now,
            WebhookEvent.last_error: None,
        },
        synchronize_session=False,
    )
    db.commit()


def mark_failed(db: Session, event_id: str, error, *, now: Optional[datetime] = None) -> None:
    message = str(error) or error.__class__.__name__
    db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).update(
        {
            WebhookEvent.status: WebhookEventStatus.FAILED,
            WebhookEvent.last_error: message[:LAST_ERROR_MAX_LENGTH],
            WebhookEvent.last_attempt_at: now or utcnow(),
        },
        synchronize_session=False,
    )
    db.commit()


def purge_expired_webhook_events(db: Session, now: Optional[datetime] = None) -> int:
    """Delete records past their retention window; returns how many went."""
    removed = (
        db.query(WebhookEvent)
        .filter(WebhookEvent.expires_at < (now or utcnow()))
        .delete(synchronize_session=False)
    )
    db.commit()
    if removed:
        logger.info("Purged %s expired webhook events", removed)
    return removed
