from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from app.services.payment_processor import PaymentProcessor
from shared import EventPublisher, NotificationClient, utcnow


@dataclass
class BookingContext:
    """Collaborators a booking operation needs, assembled per request."""

    db: Session
    processor: PaymentProcessor
    publisher: Optional[EventPublisher] = None
    notifier: Optional[NotificationClient] = None
    commission_percent: Decimal = Decimal("10")
    default_currency: str = "EUR"
    environment: str = "development"
    clock: Callable[[], datetime] = field(default=utcnow)

    def now(self) -> datetime:
        return self.clock()

    def publish(self, event_type: str, payload: Dict[str, Any], *, actor_id: Any = None) -> None:
        if not self.publisher:
            return
        self.publisher.publish(event_type, payload, metadata={"actor_id": str(actor_id) if actor_id else None})

    def notify(self, event_type: str, recipients: Iterable[Any], data: Dict[str, Any]) -> None:
        if not self.notifier:
            return
        self.notifier.notify(event_type, recipients, data)
