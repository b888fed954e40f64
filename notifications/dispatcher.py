import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum

from notifications.vapid import VapidKeyPair
from notifications.webpush import DeliveryResult, PushDeliverer
from storage.delivery_log import DeliveryLog
from storage.errors import StorageError
from storage.models import Subscription
from storage.subscriptions import SubscriptionStore

logger = logging.getLogger(__name__)

PUSH_CONCURRENCY = 10
PUSH_TTL_SECONDS = 86400
STALE_STATUS_CODES = frozenset({404, 410})


@dataclass
class PushMessage:
    """A notification as the client-side service worker expects it."""

    title: str
    body: str = ""
    icon: str = ""
    badge: str = ""
    tag: str = ""
    url: str = ""

    def to_payload(self) -> bytes:
        payload: dict = {"title": self.title}
        if self.body:
            payload["body"] = self.body
        if self.icon:
            payload["icon"] = self.icon
        if self.badge:
            payload["badge"] = self.badge
        if self.tag:
            payload["tag"] = self.tag
        if self.url:
            # The service worker reads the click target from data.url
            payload["data"] = {"url": self.url}
        return json.dumps(payload).encode()


@dataclass
class NotifyResult:
    sent: int = 0
    failed: int = 0
    stale_removed: int = 0

    def to_dict(self) -> dict:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "stale_removed": self.stale_removed,
        }


class DeliveryOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    STALE = "stale"


def classify(status_code: int) -> DeliveryOutcome:
    """Map a push service status (0 = no response) to an outcome."""
    if 200 <= status_code < 300:
        return DeliveryOutcome.SENT
    if status_code in STALE_STATUS_CODES:
        return DeliveryOutcome.STALE
    return DeliveryOutcome.FAILED


def aggregate(outcomes: list[DeliveryOutcome]) -> NotifyResult:
    """Sum outcomes. A stale delivery counts as failed and as stale_removed."""
    result = NotifyResult()
    for outcome in outcomes:
        if outcome is DeliveryOutcome.SENT:
            result.sent += 1
        else:
            result.failed += 1
        if outcome is DeliveryOutcome.STALE:
            result.stale_removed += 1
    return result


class NotificationDispatcher:
    """Fans a notification out to subscribers with bounded concurrency."""

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        delivery_log: DeliveryLog,
        deliverer: PushDeliverer,
        vapid_keys: VapidKeyPair,
        vapid_contact: str,
        concurrency: int = PUSH_CONCURRENCY,
        ttl: int = PUSH_TTL_SECONDS,
    ):
        self.subscriptions = subscriptions
        self.delivery_log = delivery_log
        self.deliverer = deliverer
        self.vapid_keys = vapid_keys
        self.vapid_contact = vapid_contact
        self.concurrency = concurrency
        self.ttl = ttl

    async def dispatch(self, topic: str, message: PushMessage) -> NotifyResult:
        """Deliver ``message`` to every subscriber of ``topic`` ("" = all).

        Raises:
            StorageError: if the subscriber set cannot be resolved.
        """
        subs = await self.subscriptions.list_by_topic(topic)
        result = await self.send_to(subs, message)
        logger.info(
            f"notify topic={topic!r}: sent={result.sent} failed={result.failed} "
            f"stale_removed={result.stale_removed}",
            extra={"topic": topic},
        )
        return result

    async def send_to(
        self, subs: list[Subscription], message: PushMessage
    ) -> NotifyResult:
        """Deliver to an already resolved subscriber list.

        Every subscriber is attempted exactly once; one failure never
        affects the others.
        """
        if not subs:
            return NotifyResult()

        payload = message.to_payload()
        # One semaphore per batch: the bound is per notify call
        semaphore = asyncio.Semaphore(self.concurrency)

        outcomes = await asyncio.gather(
            *(self._deliver_one(sub, payload, semaphore) for sub in subs)
        )
        return aggregate(outcomes)

    async def _deliver_one(
        self, sub: Subscription, payload: bytes, semaphore: asyncio.Semaphore
    ) -> DeliveryOutcome:
        async with semaphore:
            result = await self._push(sub, payload)

        outcome = classify(result.status_code)

        # Log first: every attempt has an entry even if the subscriber is evicted
        try:
            await self.delivery_log.record(sub.id, result.status_code, result.error)
        except StorageError as e:
            logger.error(
                f"Failed to log delivery for {sub.id}: {e}",
                extra={"subscription_id": sub.id},
            )

        if outcome is DeliveryOutcome.STALE:
            try:
                await self.subscriptions.delete_by_id(sub.id)
                logger.info(
                    f"Removed stale subscription {sub.id} (status {result.status_code})",
                    extra={"subscription_id": sub.id},
                )
            except StorageError as e:
                logger.error(
                    f"Failed to delete stale subscription {sub.id}: {e}",
                    extra={"subscription_id": sub.id},
                )

        return outcome

    async def _push(self, sub: Subscription, payload: bytes) -> DeliveryResult:
        try:
            return await self.deliverer.deliver(
                endpoint=sub.endpoint,
                p256dh=sub.key_p256dh,
                auth=sub.key_auth,
                payload=payload,
                vapid_keys=self.vapid_keys,
                vapid_contact=self.vapid_contact,
                ttl=self.ttl,
            )
        except Exception as e:
            # TransportFailure or anything else that left us without a response
            logger.warning(
                f"Push to {sub.id} failed: {e}",
                extra={"subscription_id": sub.id},
            )
            return DeliveryResult(status_code=0, error=str(e)[:500])
