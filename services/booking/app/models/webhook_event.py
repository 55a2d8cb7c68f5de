import uuid
from sqlalchemy import Column, DateTime, Integer, String, Text, Uuid
from app.core.database import Base


class WebhookEventStatus:
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"

    ALL = (PROCESSING, PROCESSED, FAILED)


LAST_ERROR_MAX_LENGTH = 2000


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(String(255), nullable=False, unique=True)
    event_type = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=WebhookEventStatus.PROCESSING)
    attempts = Column(Integer, nullable=False, default=1)
    provider_created_at = Column(DateTime(timezone=True), nullable=True)
    first_seen_at = Column(DateTime(timezone=True), nullable=False)
    last_attempt_at = Column(DateTime(timezone=True), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
