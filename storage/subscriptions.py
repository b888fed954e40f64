import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from storage.database import Database
from storage.errors import StorageError
from storage.models import Subscription, new_subscription_id, utcnow

logger = logging.getLogger(__name__)

# Dialects with an atomic INSERT ... ON CONFLICT DO UPDATE ... RETURNING
_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass
class UpsertResult:
    id: str
    created: bool


@dataclass
class SubscriptionSummary:
    """Admin view of a subscriber; never carries key material."""

    id: str
    topic: str
    endpoint: str
    created_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "topic": self.topic,
            "endpoint": self.endpoint,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SubscriptionStore:
    """Durable mapping from push endpoint to subscriber record."""

    def __init__(self, database: Database):
        self._db = database

    async def upsert(
        self, topic: str, endpoint: str, p256dh: str, auth: str
    ) -> UpsertResult:
        """Insert a subscriber, or rotate topic/keys of the existing one.

        The insert-or-update and the id read-back are a single statement, so
        concurrent registrations of one endpoint see exactly one ``created``.
        The stored id never changes for an endpoint.
        """
        insert = _UPSERT_INSERTS.get(self._db.dialect)
        if insert is None:
            raise StorageError(f"Unsupported database dialect: {self._db.dialect}")

        new_id = new_subscription_id()
        stmt = insert(Subscription).values(
            id=new_id,
            topic=topic,
            endpoint=endpoint,
            key_p256dh=p256dh,
            key_auth=auth,
            created_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["endpoint"],
            set_={
                "topic": stmt.excluded.topic,
                "key_p256dh": stmt.excluded.key_p256dh,
                "key_auth": stmt.excluded.key_auth,
            },
        ).returning(Subscription.id)

        try:
            async with self._db.session() as session:
                result = await session.execute(stmt)
                actual_id = result.scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to upsert subscription: {e}") from e

        return UpsertResult(id=actual_id, created=actual_id == new_id)

    async def list_by_topic(self, topic: str = "") -> list[Subscription]:
        """Full records (with keys). Empty topic means every subscriber."""
        query = select(Subscription)
        if topic:
            query = query.where(Subscription.topic == topic)

        try:
            async with self._db.session() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to query subscriptions: {e}") from e

    async def list_admin(self, topic: str = "") -> list[SubscriptionSummary]:
        query = select(
            Subscription.id,
            Subscription.topic,
            Subscription.endpoint,
            Subscription.created_at,
        )
        if topic:
            query = query.where(Subscription.topic == topic)

        try:
            async with self._db.session() as session:
                result = await session.execute(query)
                rows = result.all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to query subscriptions: {e}") from e

        return [
            SubscriptionSummary(
                id=row.id,
                topic=row.topic,
                endpoint=row.endpoint,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def delete_by_endpoint(self, endpoint: str) -> None:
        await self._delete(Subscription.endpoint == endpoint)

    async def delete_by_id(self, sub_id: str) -> None:
        await self._delete(Subscription.id == sub_id)

    async def _delete(self, condition) -> None:
        # Deleting a missing record is not an error
        try:
            async with self._db.session() as session:
                await session.execute(delete(Subscription).where(condition))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete subscription: {e}") from e
