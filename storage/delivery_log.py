import logging
import re
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from storage.database import Database
from storage.errors import InvalidDuration, StorageError
from storage.models import DeliveryLogEntry

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"([0-9]+)([dhm])")

_UNITS = {
    "d": timedelta(days=1),
    "h": timedelta(hours=1),
    "m": timedelta(minutes=1),
}


def parse_duration(token: str) -> timedelta:
    """Parse a compact age token such as ``30d``, ``24h`` or ``60m``."""
    match = _DURATION_RE.fullmatch(token or "")
    if not match:
        raise InvalidDuration(
            f"invalid duration {token!r} (use e.g. 30d, 24h, 60m)"
        )
    try:
        return int(match.group(1)) * _UNITS[match.group(2)]
    except OverflowError as e:
        raise InvalidDuration(f"duration {token!r} is out of range") from e


class DeliveryLog:
    """Append-only record of push delivery attempts."""

    def __init__(self, database: Database):
        self._db = database

    async def record(
        self, subscription_id: str, status_code: int, error: str = ""
    ) -> None:
        """Append one attempt. ``status_code`` 0 means no response was received."""
        try:
            async with self._db.session() as session:
                session.add(
                    DeliveryLogEntry(
                        subscription_id=subscription_id,
                        status_code=status_code,
                        error=error or "",
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to log delivery: {e}") from e

    async def purge(self, older_than: str, now: datetime | None = None) -> int:
        """Delete entries sent strictly before ``now - older_than``.

        The token is validated before anything is deleted.
        """
        age = parse_duration(older_than)
        try:
            cutoff = (now or datetime.now(timezone.utc)) - age
        except OverflowError:
            # Reaches back past the earliest datetime: nothing can be that old
            cutoff = datetime.min.replace(tzinfo=timezone.utc)

        try:
            async with self._db.session() as session:
                result = await session.execute(
                    delete(DeliveryLogEntry).where(DeliveryLogEntry.sent_at < cutoff)
                )
                deleted = result.rowcount or 0
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to purge delivery log: {e}") from e

        logger.info(f"Purged {deleted} delivery log entries older than {older_than}")
        return deleted
