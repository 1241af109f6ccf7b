"""
APScheduler jobs for background sync.

A daily full sync keeps the mirror current even when nobody triggers one
through the API. The scheduler runs inside the `python -m invoice_mirror`
process (wired in __main__.py).
"""
import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from invoice_mirror.config import get_settings
from invoice_mirror.sync.service import SyncAlreadyRunningError

logger = logging.getLogger(__name__)


def build_scheduler(service) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        service: InvoiceSyncService the daily job runs.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _nightly_sync,
        trigger="cron",
        hour=settings.sync_hour,
        minute=0,
        id="nightly_sync",
        replace_existing=True,
        kwargs={"service": service},
    )

    return scheduler


async def _nightly_sync(service) -> None:
    """Nightly job: full invoice sync. Safe to overlap with a manual trigger."""
    logger.info("Nightly sync starting at %s", datetime.utcnow().isoformat())

    try:
        result = await service.run_full_sync()
        logger.info(
            "Nightly sync finished: %d invoices, %d deleted",
            result.processed_invoices,
            result.deleted_invoices,
        )
    except SyncAlreadyRunningError:
        logger.info("Nightly sync skipped: a sync is already running")
    except Exception as exc:
        logger.error("Nightly sync failed: %s", exc)
