import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config.settings import Settings
from notifications.service import PushService
from storage.delivery_log import parse_duration
from storage.errors import StorageError

logger = logging.getLogger(__name__)


async def purge_delivery_log_job(service: PushService, older_than: str):
    """Scheduled retention sweep. Called by scheduler."""
    try:
        deleted = await service.purge_delivery_log(older_than)
    except StorageError as e:
        logger.error(f"Scheduled delivery log purge failed: {e}")
        return
    logger.info(f"Scheduled purge removed {deleted} delivery log entries")


def create_scheduler(service: PushService, settings: Settings) -> AsyncIOScheduler:
    """Create the scheduler; the retention job is only added when configured."""
    scheduler = AsyncIOScheduler()

    retention = settings.delivery_log_retention
    if retention:
        parse_duration(retention)  # reject bad tokens at startup
        scheduler.add_job(
            purge_delivery_log_job,
            "interval",
            hours=settings.delivery_log_purge_interval_hours,
            args=[service, retention],
            id="purge_delivery_log",
            name="Purge delivery log",
            replace_existing=True,
        )
        logger.info(
            f"Delivery log retention: purging entries older than {retention} "
            f"every {settings.delivery_log_purge_interval_hours}h"
        )

    return scheduler
