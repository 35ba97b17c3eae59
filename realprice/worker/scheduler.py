"""APScheduler job definitions for the archival worker."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from realprice.config import settings
from realprice.reconcile.archival import run_archival_sweep
from realprice.store.base import DocumentStore, StoreError

logger = logging.getLogger(__name__)


async def archival_sweep_job(store: DocumentStore) -> int:
    """
    Archive every expired advertisement in the store.

    Returns:
        Number of advertisements archived (0 when the run failed)
    """
    try:
        report = await run_archival_sweep(store)
    except StoreError as e:
        # Nothing was written; the next run retries
        logger.error(f"Archival sweep failed: {e}")
        return 0
    if report.archived_count:
        logger.info(
            f"Archival sweep archived {report.archived_count} advertisement(s), "
            f"{len(report.active)} still active"
        )
    return report.archived_count


def setup_scheduler(store: DocumentStore) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    The sweep runs every settings.archive_sweep_interval_minutes. Client
    sessions archive on read as well; the sweep covers listings nobody
    has looked at.

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()
    interval = max(1, int(settings.archive_sweep_interval_minutes))

    if settings.archive_sweep_enabled:
        scheduler.add_job(
            archival_sweep_job,
            IntervalTrigger(minutes=interval),
            args=[store],
            id="archival_sweep",
            name="Archive expired advertisements",
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
            misfire_grace_time=300,
            replace_existing=True,
        )
        logger.info(f"Scheduler configured: archival sweep every {interval} minutes")
    else:
        logger.info("Scheduler configured: archival sweep disabled")

    return scheduler
