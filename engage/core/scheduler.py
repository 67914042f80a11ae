"""Scheduler for automated jobs (dispatch tick)."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from engage.core.config import Constants, settings
from engage.services import dispatch_service


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


def start_scheduler() -> None:
    """Start the scheduler and register all jobs.

    This should be called during FastAPI app startup.
    """
    logger.info("Starting scheduler")

    # The tick takes its own storage lease; max_instances only avoids
    # piling up coroutines in this process
    scheduler.add_job(
        dispatch_service.tick,
        trigger=IntervalTrigger(seconds=settings.dispatch_interval_seconds),
        id=Constants.DISPATCH_JOB_NAME,
        name="Send Due Dispatch Tasks",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Scheduled dispatch tick: every {settings.dispatch_interval_seconds}s")

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")
