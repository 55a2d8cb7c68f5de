"""Tests for the booking notification client."""

import hashlib
import hmac
import json
from uuid import uuid4

import httpx

from shared.notifications import NotificationClient, validate_notification_url

URL = "https://notify.example.com/booking"


def _client(handler, **kwargs):
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return NotificationClient(URL, http_client=http_client, **kwargs)


class TestValidateNotificationUrl:
    """Accepted notification endpoints."""

    def test_https_is_valid(self):
        assert validate_notification_url("https://example.com/hook") is True

    def test_local_http_is_valid(self):
        assert validate_notification_url("http://localhost:3000/hook") is True
        assert validate_notification_url("http://127.0.0.1:3000/hook") is True

    def test_remote_http_is_rejected(self):
        assert validate_notification_url("http://example.com/hook") is False

    def test_invalid_or_empty_urls_are_rejected(self):
        assert validate_notification_url("not-a-url") is False
        assert validate_notification_url("ftp://example.com/hook") is False
        assert validate_notification_url("") is False
        assert validate_notification_url(None) is False


class TestNotificationClient:
    """Delivery is best effort and never raises."""

    def test_posts_event_envelope(self):
        captured = []

        def handler(request):
            captured.append(request)
            return httpx.Response(202)

        customer, professional = uuid4(), uuid4()
        client = _client(handler)

        assert client.notify("booking.booked", [customer, None, professional], {"booking_number": "BK-2024-000001"})

        body = json.loads(captured[0].content)
        assert body["event"] == "booking.booked"
        assert body["recipients"] == [str(customer), str(professional)]
        assert body["data"]["booking_number"] == "BK-2024-000001"
        assert "X-Notification-Signature" not in captured[0].headers

    def test_signs_body_when_secret_configured(self):
        captured = []

        def handler(request):
            captured.append(request)
            return httpx.Response(200)

        client = _client(handler, signing_secret="notify-secret")
        client.notify("booking.created", [uuid4()], {})

        request = captured[0]
        expected = hmac.new(b"notify-secret", request.content, hashlib.sha256).hexdigest()
        assert request.headers["X-Notification-Signature"] == f"sha256={expected}"

    def test_server_error_returns_false(self):
        client = _client(lambda request: httpx.Response(500))
        assert client.notify("booking.cancelled", [uuid4()], {}) is False

    def test_timeout_returns_false(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        assert _client(handler).notify("booking.cancelled", [uuid4()], {}) is False

    def test_connection_error_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert _client(handler).notify("booking.cancelled", [uuid4()], {}) is False

    def test_disabled_without_url(self):
        client = NotificationClient(None)
        assert client.enabled is False
        assert client.notify("booking.created", [uuid4()], {}) is False
        client.close()

    def test_insecure_url_is_not_called(self):
        calls = []
        http_client = httpx.Client(transport=httpx.MockTransport(lambda request: calls.append(request)))
        client = NotificationClient("http://example.com/hook", http_client=http_client)

        assert client.notify("booking.created", [uuid4()], {}) is False
        assert calls == []
