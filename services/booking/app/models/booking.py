import uuid
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base
from app.models.types import JSONType


class BookingStatus:
    RFQ = "rfq"
    QUOTED = "quoted"
    QUOTE_ACCEPTED = "quote_accepted"
    QUOTE_REJECTED = "quote_rejected"
    PAYMENT_PENDING = "payment_pending"
    BOOKED = "booked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTE = "dispute"
    REFUNDED = "refunded"

    ALL = (
        RFQ,
        QUOTED,
        QUOTE_ACCEPTED,
        QUOTE_REJECTED,
        PAYMENT_PENDING,
        BOOKED,
        IN_PROGRESS,
        COMPLETED,
        CANCELLED,
        DISPUTE,
        REFUNDED,
    )
    TERMINAL = frozenset({QUOTE_REJECTED, COMPLETED, CANCELLED, REFUNDED})
    # entering any of these frees the booking's reserved time
    RELEASING = frozenset({QUOTE_REJECTED, CANCELLED, COMPLETED, REFUNDED})
    # entering any of these reserves the project window, once
    RESERVING = frozenset({BOOKED, IN_PROGRESS})


class BookingType:
    PROFESSIONAL = "professional"
    PROJECT = "project"

    ALL = (PROFESSIONAL, PROJECT)


class PaymentStatus:
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    COMPLETED = "completed"
    FAILED = "failed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"

    ALL = (
        PENDING,
        AUTHORIZED,
        CAPTURED,
        COMPLETED,
        FAILED,
        DISPUTED,
        REFUNDED,
        PARTIALLY_REFUNDED,
    )
    # an existing client secret can be handed out again
    REUSABLE = frozenset({PENDING})
    ALREADY_AUTHORIZED = frozenset({AUTHORIZED, CAPTURED, COMPLETED, DISPUTED})
    SETTLED = frozenset({CAPTURED, COMPLETED})


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint(
            "(booking_type = 'professional' AND professional_id IS NOT NULL AND project_id IS NULL)"
            " OR (booking_type = 'project' AND project_id IS NOT NULL)",
            name="ck_bookings_type_reference",
        ),
        Index("ix_bookings_schedule", "scheduled_start_date", "scheduled_buffer_end_date"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_number = Column(String(32), nullable=False, unique=True)
    booking_type = Column(String(20), nullable=False)
    customer_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    professional_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    project_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    selected_subproject_index = Column(Integer, nullable=True)
    status = Column(String(32), nullable=False, default=BookingStatus.RFQ, index=True)

    rfq_data = Column(JSONType, nullable=False, default=dict)
    customer_blocks = Column(JSONType, nullable=True)
    quote = Column(JSONType, nullable=True)
    post_booking_data = Column(JSONType, nullable=True)

    scheduled_start_date = Column(DateTime(timezone=True), nullable=True)
    scheduled_execution_end_date = Column(DateTime(timezone=True), nullable=True)
    scheduled_buffer_start_date = Column(DateTime(timezone=True), nullable=True)
    scheduled_buffer_end_date = Column(DateTime(timezone=True), nullable=True)
    scheduled_buffer_unit = Column(String(10), nullable=True)
    scheduled_start_time = Column(String(5), nullable=True)
    scheduled_end_time = Column(String(5), nullable=True)
    actual_start_date = Column(DateTime(timezone=True), nullable=True)
    actual_end_date = Column(DateTime(timezone=True), nullable=True)
    assigned_team_members = Column(JSONType, nullable=False, default=list)

    cancelled_by = Column(Uuid(as_uuid=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    payment = relationship(
        "BookingPayment",
        back_populates="booking",
        uselist=False,
        cascade="all, delete-orphan",
    )
    status_history = relationship(
        "BookingStatusHistory",
        back_populates="booking",
        order_by="BookingStatusHistory.sequence",
        cascade="all, delete-orphan",
    )


class BookingPayment(Base):
    __tablename__ = "booking_payments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String(32), nullable=False, default=PaymentStatus.PENDING)

    payment_intent_id = Column(String(255), nullable=True, unique=True)
    client_secret = Column(String(255), nullable=True)
    charge_id = Column(String(255), nullable=True)
    transfer_id = Column(String(255), nullable=True)
    platform_commission = Column(Numeric(12, 2), nullable=True)
    professional_payout = Column(Numeric(12, 2), nullable=True)
    refunded_amount = Column(Numeric(12, 2), nullable=False, default=0)
    failure_reason = Column(Text, nullable=True)

    authorized_at = Column(DateTime(timezone=True), nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=True)
    transferred_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    dispute_id = Column(String(255), nullable=True)
    dispute_reason = Column(String(255), nullable=True)
    dispute_amount_pending = Column(Numeric(12, 2), nullable=True)
    dispute_status = Column(String(64), nullable=True)
    dispute_opened_at = Column(DateTime(timezone=True), nullable=True)

    refund_reason = Column(Text, nullable=True)
    refund_source = Column(String(32), nullable=True)
    refund_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    booking = relationship("Booking", back_populates="payment")


class BookingStatusHistory(Base):
    """Append-only audit trail, one row per status write."""

    __tablename__ = "booking_status_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence = Column(Integer, nullable=False)
    status = Column(String(32), nullable=False)
    updated_by = Column(Uuid(as_uuid=True), nullable=True)
    note = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    booking = relationship("Booking", back_populates="status_history")
