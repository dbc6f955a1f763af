"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from notifier.config import settings
from notifier.worker.tasks import run_scheduled_notifications

logger = logging.getLogger(__name__)

JOB_ID = "scheduled_notifications"


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    One job, at the top of every hour by default, runs all scan routines.
    ``max_instances=1`` and ``coalesce`` keep a slow run from stacking up
    missed firings inside this process; the Redis run lock covers other
    processes.

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        run_scheduled_notifications,
        CronTrigger(minute=settings.notification_cron_minute, timezone="UTC"),
        id=JOB_ID,
        name="Send scheduled promotion and subscription notifications",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=settings.scheduler_misfire_grace_seconds,
        replace_existing=True,
    )

    logger.info(
        f"Scheduler configured: scheduled notifications hourly at minute "
        f"{settings.notification_cron_minute}"
    )
    return scheduler
