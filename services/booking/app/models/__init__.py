from app.models.booking import Booking, BookingPayment, BookingStatusHistory
from app.models.payout_account import PayoutAccount
from app.models.project import Project
from app.models.resource import Resource, ResourceBlockedRange
from app.models.webhook_event import WebhookEvent

__all__ = [
    "Booking",
    "BookingPayment",
    "BookingStatusHistory",
    "PayoutAccount",
    "Project",
    "Resource",
    "ResourceBlockedRange",
    "WebhookEvent",
]
