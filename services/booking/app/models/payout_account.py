from sqlalchemy import Boolean, Column, DateTime, String, Uuid
from sqlalchemy.sql import func
from app.core.database import Base


class PayoutAccountStatus:
    PENDING = "pending"
    ACTIVE = "active"
    RESTRICTED = "restricted"

    ALL = (PENDING, ACTIVE, RESTRICTED)


class PayoutAccount(Base):
    """Connected payout account of a professional at the payment processor."""

    __tablename__ = "payout_accounts"

    professional_id = Column(Uuid(as_uuid=True), primary_key=True)
    account_id = Column(String(255), nullable=False, unique=True)
    charges_enabled = Column(Boolean, nullable=False, default=False)
    payouts_enabled = Column(Boolean, nullable=False, default=False)
    details_submitted = Column(Boolean, nullable=False, default=False)
    account_status = Column(String(20), nullable=False, default=PayoutAccountStatus.PENDING)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
