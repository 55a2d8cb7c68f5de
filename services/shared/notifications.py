"""Best-effort delivery of booking notifications to the notification service.

The booking core never waits on email/SMS content; it posts a small JSON
envelope (event name, recipients, booking data) to an HTTP endpoint and moves
on. Delivery failures are logged and reported as ``False``, never raised.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Iterable, Optional

import httpx

logger = logging.getLogger(__name__)


def validate_notification_url(url: Optional[str]) -> bool:
    """Accept HTTPS anywhere and plain HTTP only for local development hosts."""
    if not url:
        return False

    url_lower = url.lower().strip()
    if url_lower.startswith("https://"):
        return True
    if url_lower.startswith("http://"):
        return url_lower.startswith("http://localhost") or url_lower.startswith("http://127.0.0.1")
    return False


def _generate_signature(payload: str, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


class NotificationClient:
    """Post booking notifications to an HTTP notification service.

    Parameters
    ----------
    url:
        Endpoint receiving ``{"event": ..., "recipients": [...], "data": {...}}``.
        When ``None`` the client is disabled and every call is a logged no-op.
    timeout:
        Per-request timeout in seconds.
    signing_secret:
        Optional HMAC-SHA256 secret; when set, requests carry an
        ``X-Notification-Signature`` header.
    http_client:
        Injected ``httpx.Client`` (tests pass a mock transport).
    """

    def __init__(
        self,
        url: Optional[str],
        *,
        timeout: float = 5.0,
        signing_secret: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._secret = signing_secret
        self._client = http_client or httpx.Client(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return validate_notification_url(self._url)

    def notify(
        self,
        event_type: str,
        recipients: Iterable[Any],
        data: Dict[str, Any],
    ) -> bool:
        if not self._url:
            logger.debug("Notification service not configured, dropping %s", event_type)
            return False
        if not validate_notification_url(self._url):
            logger.warning("Invalid notification service URL: %s", self._url)
            return False

        body = json.dumps(
            {
                "event": event_type,
                "recipients": [str(recipient) for recipient in recipients if recipient],
                "data": data,
            },
            default=str,
        )
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "Marketplace-Booking-Notifier/1.0",
        }
        if self._secret:
            headers["X-Notification-Signature"] = f"sha256={_generate_signature(body, self._secret)}"

        try:
            response = self._client.post(self._url, content=body, headers=headers, timeout=self._timeout)
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning("Timeout sending notification %s", event_type)
            return False
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Notification service rejected %s: HTTP %s",
                event_type,
                exc.response.status_code,
            )
            return False
        except httpx.HTTPError:
            logger.exception("Unexpected error sending notification %s", event_type)
            return False

        logger.info("Notification %s delivered", event_type)
        return True

    def close(self) -> None:
        self._client.close()
