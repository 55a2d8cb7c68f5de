"""Money helpers: minor units, currency and amount checks, commission, idempotency keys."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Union

from shared import ensure_utc, utcnow

SUPPORTED_CURRENCIES = ("EUR", "USD", "GBP", "CAD", "AUD")

MINIMUM_AMOUNTS = {
    "EUR": Decimal("0.50"),
    "USD": Decimal("0.50"),
    "GBP": Decimal("0.30"),
    "CAD": Decimal("0.50"),
    "AUD": Decimal("0.50"),
}
DEFAULT_MINIMUM_AMOUNT = Decimal("0.50")
MAXIMUM_AMOUNT = Decimal("999999.99")

IDEMPOTENCY_KEY_MAX_LENGTH = 255

# processors keep a manual-capture hold for 7 days
AUTHORIZATION_VALIDITY = timedelta(days=7)
AUTHORIZATION_WARNING = timedelta(days=6)

_CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_decimal(amount: Number) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    # floats go through str() to avoid binary noise (0.1 -> 0.1000000000000000055)
    return Decimal(str(amount))


def quantize(amount: Number) -> Decimal:
    return to_decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Number) -> int:
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return quantize(Decimal(amount) / 100)


def validate_currency(currency: Optional[str]) -> bool:
    return bool(currency) and currency.upper() in SUPPORTED_CURRENCIES


def validate_payment_amount(amount: Number, currency: str) -> Optional[str]:
    """Return an error message when ``amount`` is out of range, ``None`` otherwise."""
    value = to_decimal(amount)
    minimum = MINIMUM_AMOUNTS.get(currency.upper(), DEFAULT_MINIMUM_AMOUNT)
    if value < minimum:
        return f"Amount must be at least {minimum} {currency.upper()}"
    if value > MAXIMUM_AMOUNT:
        return f"Amount exceeds maximum of {MAXIMUM_AMOUNT} {currency.upper()}"
    return None


def calculate_platform_commission(amount: Number, commission_percent: Number) -> Decimal:
    return quantize(to_decimal(amount) * to_decimal(commission_percent) / 100)


def calculate_professional_payout(amount: Number, commission_percent: Number) -> Decimal:
    return quantize(to_decimal(amount) - calculate_platform_commission(amount, commission_percent))


def generate_idempotency_key(
    booking_id: Any,
    operation: str,
    version: str = "v1",
    timestamp: Optional[Union[int, str]] = None,
) -> str:
    """``<bookingId>:<operation>:<version>[:<timestamp>]``.

    The timestamp suffix is for operations that may legitimately repeat
    (refunds, re-authorization after a failed attempt).
    """
    key = f"{booking_id}:{operation}:{version}"
    if timestamp is not None:
        key = f"{key}:{timestamp}"
    if len(key) > IDEMPOTENCY_KEY_MAX_LENGTH:
        raise ValueError("Idempotency key exceeds 255 characters")
    return key


def build_payment_metadata(booking, environment: str) -> Dict[str, str]:
    return {
        "booking_id": str(booking.id),
        "booking_number": booking.booking_number,
        "customer_id": str(booking.customer_id),
        "professional_id": str(booking.professional_id or ""),
        "type": "booking_payment",
        "environment": environment,
        "version": "v1",
    }


def build_transfer_metadata(booking, environment: str, payout_date: Optional[datetime] = None) -> Dict[str, str]:
    return {
        "booking_id": str(booking.id),
        "booking_number": booking.booking_number,
        "type": "booking_completion_payout",
        "payout_date": (payout_date or utcnow()).isoformat(),
        "environment": environment,
    }


def is_authorization_expiring_soon(authorized_at: datetime, now: Optional[datetime] = None) -> bool:
    return (now or utcnow()) - ensure_utc(authorized_at) >= AUTHORIZATION_WARNING


def is_authorization_expired(authorized_at: datetime, now: Optional[datetime] = None) -> bool:
    return (now or utcnow()) - ensure_utc(authorized_at) >= AUTHORIZATION_VALIDITY
