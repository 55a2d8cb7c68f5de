"""Payment processor contract and its Stripe implementation.

The booking core only talks to ``PaymentProcessor``; tests substitute an
in-memory fake. Amounts cross this boundary as ``Decimal`` major units and
are converted to minor units here.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import stripe

from app.services.payment_utils import to_minor_units

logger = logging.getLogger(__name__)


class PaymentProcessorError(Exception):
    """The processor rejected a call or could not be reached."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class WebhookSignatureError(PaymentProcessorError):
    pass


@dataclass(frozen=True)
class AuthorizationIntent:
    intent_id: str
    client_secret: str
    status: Optional[str] = None


@dataclass(frozen=True)
class CaptureResult:
    intent_id: str
    charge_id: Optional[str] = None


class PaymentProcessor(Protocol):
    def create_authorization(
        self,
        amount: Decimal,
        currency: str,
        metadata: Dict[str, Any],
        *,
        idempotency_key: str,
    ) -> AuthorizationIntent: ...

    def capture(self, intent_id: str, *, idempotency_key: str) -> CaptureResult: ...

    def transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        metadata: Dict[str, Any],
        *,
        idempotency_key: str,
    ) -> str: ...

    def refund(
        self,
        intent_id: str,
        amount: Optional[Decimal],
        *,
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> str: ...

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]: ...


class StripePaymentProcessor:
    """``PaymentProcessor`` backed by the Stripe API.

    Authorizations are PaymentIntents with ``capture_method="manual"``;
    payouts are Connect transfers to the professional's account.
    """

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str] = None) -> None:
        self._api_key = secret_key
        self._webhook_secret = webhook_secret

    def _require_key(self) -> str:
        if not self._api_key:
            raise PaymentProcessorError("Stripe is not configured", code="PROCESSOR_NOT_CONFIGURED")
        return self._api_key

    def create_authorization(self, amount, currency, metadata, *, idempotency_key):
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self._require_key(),
                amount=to_minor_units(amount),
                currency=currency.lower(),
                capture_method="manual",
                automatic_payment_methods={"enabled": True},
                metadata={key: str(value) for key, value in metadata.items()},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe rejected payment intent creation: %s", exc)
            raise PaymentProcessorError(str(exc), code=getattr(exc, "code", None)) from exc
        return AuthorizationIntent(intent_id=intent.id, client_secret=intent.client_secret, status=intent.status)

    def capture(self, intent_id, *, idempotency_key):
        try:
            intent = stripe.PaymentIntent.capture(
                intent_id,
                api_key=self._require_key(),
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe capture failed for %s: %s", intent_id, exc)
            raise PaymentProcessorError(str(exc), code=getattr(exc, "code", None)) from exc
        return CaptureResult(intent_id=intent.id, charge_id=intent.get("latest_charge"))

    def transfer(self, destination, amount, currency, metadata, *, idempotency_key):
        try:
            transfer = stripe.Transfer.create(
                api_key=self._require_key(),
                amount=to_minor_units(amount),
                currency=currency.lower(),
                destination=destination,
                metadata={key: str(value) for key, value in metadata.items()},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe transfer to %s failed: %s", destination, exc)
            raise PaymentProcessorError(str(exc), code=getattr(exc, "code", None)) from exc
        return transfer.id

    def refund(self, intent_id, amount, *, idempotency_key, reason=None):
        params: Dict[str, Any] = {"payment_intent": intent_id}
        if amount is not None:
            params["amount"] = to_minor_units(amount)
        if reason:
            params["metadata"] = {"reason": reason}
        try:
            refund = stripe.Refund.create(
                api_key=self._require_key(),
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe refund failed for %s: %s", intent_id, exc)
            raise PaymentProcessorError(str(exc), code=getattr(exc, "code", None)) from exc
        return refund.id

    def construct_event(self, payload, signature):
        if not self._webhook_secret:
            raise WebhookSignatureError("Webhook secret not configured", code="WEBHOOK_NOT_CONFIGURED")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header", code="MISSING_SIGNATURE")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError("Invalid webhook signature", code="INVALID_SIGNATURE") from exc
        except ValueError as exc:
            raise WebhookSignatureError("Invalid webhook payload", code="INVALID_PAYLOAD") from exc
        # signature verified; hand back plain dicts rather than StripeObjects
        return json.loads(payload)
