"""
Tests for notifications/webpush.py -- the Web Push delivery primitive.

Outbound HTTP is served by httpx.MockTransport; encryption and VAPID
signing run for real against freshly generated keys.
"""

import base64
import json
import os

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from conftest import VAPID_CONTACT
from notifications.errors import TransportFailure
from notifications.vapid import b64url_encode, normalize_contact
from notifications.webpush import WebPushDeliverer

ENDPOINT = "https://fcm.example.com/wp/abc123"


@pytest.fixture
def browser_keys() -> tuple[str, str]:
    """A browser-side (p256dh, auth) pair as PushSubscription.toJSON() gives it."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    p256dh = b64url_encode(
        private_key.public_key().public_bytes(
            Encoding.X962, PublicFormat.UncompressedPoint
        )
    )
    auth = b64url_encode(os.urandom(16))
    return p256dh, auth


def _deliverer(handler) -> WebPushDeliverer:
    return WebPushDeliverer(timeout=5.0, transport=httpx.MockTransport(handler))


class TestWebPushDeliverer:
    async def test_posts_encrypted_payload_with_vapid_auth(
        self, browser_keys, vapid_keys
    ):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201)

        deliverer = _deliverer(handler)
        p256dh, auth = browser_keys
        try:
            result = await deliverer.deliver(
                ENDPOINT, p256dh, auth, b'{"title":"hi"}', vapid_keys, VAPID_CONTACT, 86400
            )
        finally:
            await deliverer.close()

        assert result.status_code == 201
        assert result.error == ""

        request = seen[0]
        assert str(request.url) == ENDPOINT
        assert request.method == "POST"
        assert request.headers["TTL"] == "86400"
        assert request.headers["Content-Encoding"] == "aes128gcm"
        authorization = request.headers["Authorization"]
        assert authorization.startswith("vapid t=")
        assert f"k={vapid_keys.public_key}" in authorization
        # Ciphertext, never the plaintext
        assert b"title" not in request.content
        assert len(request.content) > len(b'{"title":"hi"}')

    async def test_gone_status_is_returned(self, browser_keys, vapid_keys):
        deliverer = _deliverer(
            lambda request: httpx.Response(
                410, text="push subscription has unsubscribed or expired"
            )
        )
        p256dh, auth = browser_keys
        try:
            result = await deliverer.deliver(
                ENDPOINT, p256dh, auth, b"{}", vapid_keys, VAPID_CONTACT, 60
            )
        finally:
            await deliverer.close()

        assert result.status_code == 410
        assert "expired" in result.error

    async def test_error_without_body_uses_reason_phrase(self, browser_keys, vapid_keys):
        deliverer = _deliverer(lambda request: httpx.Response(429))
        p256dh, auth = browser_keys
        try:
            result = await deliverer.deliver(
                ENDPOINT, p256dh, auth, b"{}", vapid_keys, VAPID_CONTACT, 60
            )
        finally:
            await deliverer.close()

        assert result.status_code == 429
        assert result.error == "Too Many Requests"

    async def test_connection_error_raises_transport_failure(
        self, browser_keys, vapid_keys
    ):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        deliverer = _deliverer(handler)
        p256dh, auth = browser_keys
        try:
            with pytest.raises(TransportFailure, match="connection refused"):
                await deliverer.deliver(
                    ENDPOINT, p256dh, auth, b"{}", vapid_keys, VAPID_CONTACT, 60
                )
        finally:
            await deliverer.close()

    async def test_malformed_subscriber_keys_raise_transport_failure(self, vapid_keys):
        calls = []
        deliverer = _deliverer(lambda request: calls.append(request) or httpx.Response(201))
        try:
            with pytest.raises(TransportFailure):
                await deliverer.deliver(
                    ENDPOINT, "short", "auth", b"{}", vapid_keys, VAPID_CONTACT, 60
                )
        finally:
            await deliverer.close()
        assert calls == []


class TestVapidHeaders:
    def test_audience_is_endpoint_origin(self, vapid_keys):
        headers = WebPushDeliverer.vapid_headers(
            "https://updates.push.services.mozilla.com/wpush/v2/xyz",
            vapid_keys,
            VAPID_CONTACT,
        )
        token = headers["Authorization"].split("t=", 1)[1].split(",", 1)[0]
        claims_b64 = token.split(".")[1]
        claims = json.loads(
            base64.urlsafe_b64decode(claims_b64 + "=" * (-len(claims_b64) % 4))
        )
        assert claims["aud"] == "https://updates.push.services.mozilla.com"
        assert claims["sub"] == VAPID_CONTACT
        assert claims["exp"] > 0

    def test_bare_email_contact_signs_once_normalized(self, vapid_keys):
        headers = WebPushDeliverer.vapid_headers(
            ENDPOINT, vapid_keys, normalize_contact("admin@example.com")
        )
        token = headers["Authorization"].split("t=", 1)[1].split(",", 1)[0]
        claims_b64 = token.split(".")[1]
        claims = json.loads(
            base64.urlsafe_b64decode(claims_b64 + "=" * (-len(claims_b64) % 4))
        )
        assert claims["sub"] == "mailto:admin@example.com"
