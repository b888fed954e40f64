import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
from py_vapid import Vapid02
from pywebpush import WebPusher

from notifications.errors import TransportFailure
from notifications.vapid import VapidKeyPair

logger = logging.getLogger(__name__)

# Lifetime of the VAPID JWT attached to each request
VAPID_CLAIM_TTL_SECONDS = 12 * 60 * 60


@dataclass
class DeliveryResult:
    """Outcome of one push. ``status_code`` 0 means no HTTP response."""

    status_code: int
    error: str = ""


class PushDeliverer(ABC):
    """Encrypts, signs and posts one payload to one push endpoint.

    Returns the push service's status for any HTTP response. Raises
    :class:`TransportFailure` when no response could be obtained.
    """

    @abstractmethod
    async def deliver(
        self,
        endpoint: str,
        p256dh: str,
        auth: str,
        payload: bytes,
        vapid_keys: VapidKeyPair,
        vapid_contact: str,
        ttl: int,
    ) -> DeliveryResult:
        ...

    async def close(self):
        pass


class WebPushDeliverer(PushDeliverer):
    """Web Push (RFC 8030) delivery with aes128gcm payloads and VAPID auth."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            )
        return self._client

    @staticmethod
    def vapid_headers(
        endpoint: str, vapid_keys: VapidKeyPair, vapid_contact: str
    ) -> dict:
        """Build the ``Authorization: vapid t=...,k=...`` header for an endpoint."""
        url = urlparse(endpoint)
        claims = {
            "sub": vapid_contact,
            "aud": f"{url.scheme}://{url.netloc}",
            "exp": int(time.time()) + VAPID_CLAIM_TTL_SECONDS,
        }
        return Vapid02(private_key=vapid_keys.signing_key).sign(claims)

    async def deliver(
        self,
        endpoint: str,
        p256dh: str,
        auth: str,
        payload: bytes,
        vapid_keys: VapidKeyPair,
        vapid_contact: str,
        ttl: int,
    ) -> DeliveryResult:
        try:
            pusher = WebPusher(
                {"endpoint": endpoint, "keys": {"p256dh": p256dh, "auth": auth}}
            )
            encoded = pusher.encode(payload, content_encoding="aes128gcm")
            headers = self.vapid_headers(endpoint, vapid_keys, vapid_contact)
        except Exception as e:
            raise TransportFailure(f"encode push payload: {e}") from e

        headers.update(
            {
                "Content-Type": "application/octet-stream",
                "Content-Encoding": "aes128gcm",
                "TTL": str(ttl),
                "Urgency": "normal",
            }
        )

        client = await self._get_client()
        try:
            resp = await client.post(endpoint, content=encoded["body"], headers=headers)
        except httpx.HTTPError as e:
            raise TransportFailure(str(e) or type(e).__name__) from e

        if 200 <= resp.status_code < 300:
            return DeliveryResult(status_code=resp.status_code)
        return DeliveryResult(
            status_code=resp.status_code,
            error=(resp.text.strip() or resp.reason_phrase)[:500],
        )

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
