import asyncio
import logging

from notifications.dispatcher import NotificationDispatcher, NotifyResult, PushMessage
from notifications.drain import DrainCoordinator
from notifications.vapid import VapidKeyPair
from storage.delivery_log import DeliveryLog
from storage.models import Subscription
from storage.subscriptions import SubscriptionStore, SubscriptionSummary, UpsertResult

logger = logging.getLogger(__name__)


class PushService:
    """Entry point used by the HTTP layer and the scheduler."""

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        delivery_log: DeliveryLog,
        dispatcher: NotificationDispatcher,
        vapid_keys: VapidKeyPair,
        drain: DrainCoordinator | None = None,
        welcome_message: str = "",
        welcome_delay_seconds: float = 1.0,
    ):
        self.subscriptions = subscriptions
        self.delivery_log = delivery_log
        self.dispatcher = dispatcher
        self.vapid_keys = vapid_keys
        self.drain = drain or DrainCoordinator()
        self.welcome_message = welcome_message
        self.welcome_delay_seconds = welcome_delay_seconds

    def public_signing_key(self) -> str:
        return self.vapid_keys.public_key

    async def register_subscriber(
        self, topic: str, endpoint: str, p256dh: str, auth: str
    ) -> UpsertResult:
        result = await self.subscriptions.upsert(topic, endpoint, p256dh, auth)
        if result.created:
            logger.info(
                f"Registered subscription {result.id} (topic={topic!r})",
                extra={"subscription_id": result.id, "topic": topic},
            )
            if self.welcome_message:
                self.schedule_welcome(
                    Subscription(
                        id=result.id,
                        topic=topic,
                        endpoint=endpoint,
                        key_p256dh=p256dh,
                        key_auth=auth,
                    )
                )
        return result

    async def unregister_by_endpoint(self, endpoint: str) -> None:
        await self.subscriptions.delete_by_endpoint(endpoint)

    async def unregister_by_id(self, sub_id: str) -> None:
        await self.subscriptions.delete_by_id(sub_id)

    async def list_subscribers(self, topic: str = "") -> list[Subscription]:
        return await self.subscriptions.list_by_topic(topic)

    async def list_subscribers_admin(self, topic: str = "") -> list[SubscriptionSummary]:
        return await self.subscriptions.list_admin(topic)

    async def notify(self, topic: str, message: PushMessage) -> NotifyResult:
        """Fan ``message`` out to ``topic`` and return the aggregate.

        The fan-out runs as a drain-tracked task and is shielded, so
        cancelling the caller does not cancel delivery.
        """
        if not message.title:
            raise ValueError("title is required")
        task = self.drain.spawn(self.dispatcher.dispatch(topic, message))
        return await asyncio.shield(task)

    def schedule_welcome(self, sub: Subscription) -> asyncio.Task:
        """Send the welcome message to one new subscriber after a short delay."""
        return self.drain.spawn(self._send_welcome(sub))

    async def _send_welcome(self, sub: Subscription) -> NotifyResult:
        await asyncio.sleep(self.welcome_delay_seconds)
        return await self.dispatcher.send_to(
            [sub], PushMessage(title=self.welcome_message)
        )

    async def purge_delivery_log(self, older_than: str) -> int:
        return await self.delivery_log.purge(older_than)

    async def drain_wait(self):
        await self.drain.wait()
