"""ADSYNC — Scheduler Jobs.

APScheduler daily job that runs the parallel sync at the configured hour.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.config import settings
from app.database import new_session
from app.scheduler.parallel import ParallelSyncScheduler, load_projects, resolve_periods
from app.core.logging import get_logger

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def daily_sync_job():
    """Sync every active project for the configured period group."""
    logger.info(f"Scheduled parallel sync starting (group={settings.sync_group})...")
    try:
        with new_session() as session:
            projects = load_projects(session)
        summary = await ParallelSyncScheduler(new_session).run(
            projects, resolve_periods(None, settings.sync_group)
        )
        logger.info(
            f"Scheduled sync complete. {summary.total_synced} synced, "
            f"{summary.total_failed} failed"
        )
    except Exception as e:
        logger.error(f"Scheduled sync failed: {e}")


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        daily_sync_job,
        "cron",
        hour=settings.sync_hour,
        minute=0,
        id="daily_parallel_sync",
        replace_existing=True,
        misfire_grace_time=3600,
        max_instances=1,
    )
    scheduler.start()
    logger.info(f"Scheduler started. Daily sync at {settings.sync_hour}:00 UTC")


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
