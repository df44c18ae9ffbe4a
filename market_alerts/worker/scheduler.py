"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from market_alerts.config import settings
from market_alerts.worker.tasks import run_scheduled_evaluation

logger = logging.getLogger(__name__)


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Alert evaluation runs every settings.evaluation_interval_minutes when
    settings.evaluation_enabled is set.

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()
    interval = max(1, int(settings.evaluation_interval_minutes))

    if settings.evaluation_enabled:
        scheduler.add_job(
            run_scheduled_evaluation,
            IntervalTrigger(minutes=interval),
            id="scheduled_alert_evaluation",
            name="Evaluate alert rules over the trailing window",
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
            misfire_grace_time=600,
            replace_existing=True,
        )
        logger.info(
            "Scheduler configured: alert evaluation every %d minutes over %d days",
            interval,
            settings.evaluation_window_days,
        )
    else:
        logger.info("Scheduler configured: alert evaluation disabled")

    return scheduler
