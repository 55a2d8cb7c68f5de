from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from app.models.booking import BookingStatus, BookingType
from app.services.payment_utils import SUPPORTED_CURRENCIES


def _validate_currency(value: str) -> str:
    value = value.upper()
    if value not in SUPPORTED_CURRENCIES:
        raise ValueError(f"currency must be one of {', '.join(SUPPORTED_CURRENCIES)}")
    return value


class RFQAnswer(BaseModel):
    question_id: str = Field(description="Identifier of the project question", examples=["q-area"])
    question: str = Field(description="Question text as shown to the customer", examples=["Surface area (m2)?"])
    answer: Any = Field(description="Customer answer", examples=["45"])
    field_type: Optional[str] = Field(default=None, description="Input type of the question", examples=["number"])


class Budget(BaseModel):
    min: Optional[Decimal] = Field(default=None, ge=0, description="Lower budget bound")
    max: Optional[Decimal] = Field(default=None, ge=0, description="Upper budget bound")
    currency: str = Field(default="EUR", description="Budget currency")

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return _validate_currency(value)

    @model_validator(mode="after")
    def check_range(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("budget.min must not exceed budget.max")
        return self


class RFQData(BaseModel):
    """Request-for-quote details supplied by the customer."""
    service_type: str = Field(max_length=200, description="Requested service", examples=["Bathroom renovation"])
    description: str = Field(max_length=2000, description="Free-text description of the job")
    answers: List[RFQAnswer] = Field(default_factory=list, description="Answers to the project questions")
    preferred_start_date: Optional[date] = Field(default=None, description="Requested start date (UTC)", examples=["2025-03-10"])
    preferred_start_time: Optional[time] = Field(default=None, description="Requested start time, required for hour-based projects; read as UTC unless it carries an offset", examples=["09:00"])
    urgency: Literal["low", "medium", "high", "urgent"] = Field(default="medium")
    budget: Optional[Budget] = None
    attachments: List[str] = Field(default_factory=list, description="Object storage references (keys or URLs)")


class CustomerBlockDate(BaseModel):
    date: date
    reason: Optional[str] = Field(default=None, max_length=200)


class CustomerBlockWindow(BaseModel):
    date: date
    start_time: time
    end_time: time
    reason: Optional[str] = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def check_interval(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class CustomerBlocks(BaseModel):
    """The customer's own unavailability, respected when scheduling the execution window."""
    dates: List[CustomerBlockDate] = Field(default_factory=list)
    windows: List[CustomerBlockWindow] = Field(default_factory=list)


class BookingCreate(BaseModel):
    """New booking in ``rfq`` status. Exactly one of professional or project is targeted."""
    booking_type: Literal["professional", "project"] = Field(description="professional or project", examples=["project"])
    professional_id: Optional[UUID] = Field(default=None, description="Target professional (professional bookings)")
    project_id: Optional[UUID] = Field(default=None, description="Target project (project bookings)")
    selected_subproject_index: Optional[int] = Field(default=None, ge=0, description="Chosen subproject/variant")
    rfq_data: RFQData
    customer_blocks: Optional[CustomerBlocks] = None

    @model_validator(mode="after")
    def check_target(self):
        if self.booking_type == BookingType.PROFESSIONAL:
            if self.professional_id is None or self.project_id is not None:
                raise ValueError("professional bookings need professional_id and no project_id")
        else:
            if self.project_id is None:
                raise ValueError("project bookings need project_id")
        return self


class QuoteItem(BaseModel):
    item: str = Field(max_length=200)
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    total_price: Decimal = Field(ge=0)


class QuoteCreate(BaseModel):
    """Quote attached by the professional to an RFQ."""
    amount: Decimal = Field(gt=0, description="Total quoted amount", examples=["350.00"])
    currency: str = Field(default="EUR", description="ISO currency code", examples=["EUR"])
    description: Optional[str] = Field(default=None, max_length=2000)
    breakdown: List[QuoteItem] = Field(default_factory=list)
    valid_until: Optional[datetime] = Field(default=None, description="Advisory validity deadline")
    terms_and_conditions: Optional[str] = Field(default=None, max_length=5000)
    estimated_duration: Optional[str] = Field(default=None, max_length=100, examples=["3 days"])

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return _validate_currency(value)


class QuoteResponse(BaseModel):
    action: Literal["accept", "reject"]
    reason: Optional[str] = Field(default=None, max_length=500)


class StatusUpdate(BaseModel):
    status: str = Field(description="Target status", examples=["in_progress"])
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("status")
    @classmethod
    def check_status(cls, value):
        if value not in BookingStatus.ALL:
            raise ValueError("Unknown status")
        return value


class BookingCancelRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500, description="Why the booking is cancelled")


class RefundRequest(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0, description="Partial amount; omit for a full refund")
    reason: Optional[str] = Field(default=None, max_length=500)


class PostBookingAnswer(BaseModel):
    question_id: Optional[str] = Field(default=None, description="Id of the project's post-booking question")
    question: Optional[str] = Field(default=None, description="Question text, used when the id is unknown")
    answer: str = Field(default="", max_length=2000)


class PostBookingAnswers(BaseModel):
    answers: List[PostBookingAnswer] = Field(min_length=1)


class StatusHistoryOut(BaseModel):
    status: str
    timestamp: datetime
    updated_by: Optional[UUID]
    note: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class PaymentOut(BaseModel):
    amount: Decimal
    currency: str
    status: str
    payment_intent_id: Optional[str]
    charge_id: Optional[str]
    transfer_id: Optional[str]
    platform_commission: Optional[Decimal]
    professional_payout: Optional[Decimal]
    refunded_amount: Optional[Decimal]
    authorized_at: Optional[datetime]
    captured_at: Optional[datetime]
    transferred_at: Optional[datetime]
    refunded_at: Optional[datetime]
    canceled_at: Optional[datetime]
    dispute_id: Optional[str]
    dispute_reason: Optional[str]
    dispute_amount_pending: Optional[Decimal]
    dispute_status: Optional[str]
    refund_reason: Optional[str]
    refund_source: Optional[str]
    refund_notes: Optional[str]
    failure_reason: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class BookingOut(BaseModel):
    id: UUID
    booking_number: str
    booking_type: str
    customer_id: UUID
    professional_id: Optional[UUID]
    project_id: Optional[UUID]
    selected_subproject_index: Optional[int]
    status: str
    rfq_data: Dict[str, Any]
    customer_blocks: Optional[Dict[str, Any]]
    quote: Optional[Dict[str, Any]]
    post_booking_data: Optional[List[Dict[str, Any]]]
    scheduled_start_date: Optional[datetime]
    scheduled_execution_end_date: Optional[datetime]
    scheduled_buffer_start_date: Optional[datetime]
    scheduled_buffer_end_date: Optional[datetime]
    scheduled_buffer_unit: Optional[str]
    scheduled_start_time: Optional[str]
    scheduled_end_time: Optional[str]
    actual_start_date: Optional[datetime]
    actual_end_date: Optional[datetime]
    assigned_team_members: List[UUID]
    cancelled_by: Optional[UUID]
    cancellation_reason: Optional[str]
    cancelled_at: Optional[datetime]
    payment: Optional[PaymentOut]
    status_history: List[StatusHistoryOut]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class BookingOperationOut(BaseModel):
    """Booking plus any non-fatal warnings raised while changing it."""
    booking: BookingOut
    warnings: List[str] = Field(default_factory=list)


class AuthorizationOut(BaseModel):
    client_secret: str
    payment_intent_id: str
    amount: Decimal
    currency: str
    status: str
    reused: bool


class BookingConflict(BaseModel):
    start: datetime
    end: datetime
    reason: Optional[str] = None
    resource_id: Optional[UUID] = None
    booking_id: Optional[UUID] = None
    source: Optional[str] = None


class ErrorResponse(BaseModel):
    """Body of every 4xx/5xx produced by a booking operation."""
    success: bool = Field(default=False, description="Always false")
    error: str = Field(description="Outcome, e.g. 'conflict' or 'validation_error'")
    code: Optional[str] = Field(default=None, description="Machine-readable reason")
    message: str = Field(description="Human-readable reason")
    conflicts: List[BookingConflict] = Field(default_factory=list)
