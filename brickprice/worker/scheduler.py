"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from brickprice.config import settings
from brickprice.worker.tasks import task_runner

logger = logging.getLogger(__name__)


async def run_daily_refresh():
    """Daily LEGO + Amazon price refresh."""
    results = await task_runner.refresh_all_retailers()
    failed = sum(summary.failed for summary in results.values())
    if failed:
        logger.warning(f"Daily refresh finished with {failed} failed items")
    else:
        logger.info("Daily refresh finished")


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Returns:
        Configured scheduler (not started)
    """
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        run_daily_refresh,
        trigger=CronTrigger(hour=settings.daily_refresh_hour, minute=0),
        id="daily_price_refresh",
        name="Daily LEGO and Amazon price refresh",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Scheduled daily price refresh at {settings.daily_refresh_hour:02d}:00 UTC")

    return scheduler
