"""
Scheduled Job Configuration

Configures periodic jobs using APScheduler:
- Pool bucket check every 5 minutes (queued to Celery)
- Pool maintenance daily at 3 AM (queued to Celery)
- Job and cache garbage collection every hour (in-process)

Intervals come from the ``scheduler`` section of config/default.yaml.

Execution Context:
    The scheduler runs in-process on the host application's asyncio loop.
    Pool work is not executed here: the triggers queue Celery tasks
    (check_pool_buckets.delay()) for a worker to pick up. Garbage collection
    touches in-process state, so it runs directly against the services
    registered with register_gc_jobs().

Limitations:
    - Single instance only: every replica running its own scheduler
      triggers duplicate pool checks.

Usage:
    start_scheduler()
    register_gc_jobs(services)
    ...
    stop_scheduler()
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from practice_core.config import yaml_config
from practice_core.services.container import PracticeServices

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()

schedule_config: dict = yaml_config.get("scheduler", {})
POOL_CHECK_MINUTES: int = schedule_config.get("pool_check_minutes", 5)
MAINTENANCE_HOUR: int = schedule_config.get("maintenance_hour", 3)
GC_MINUTES: int = schedule_config.get("gc_minutes", 60)


async def trigger_pool_check() -> None:
    """Queue a check of every pool bucket."""
    # Deferred import: keeps Celery and the DB engine out of scheduler import time
    from practice_core.services.tasks import check_pool_buckets

    check_pool_buckets.delay()
    logger.info("Triggered pool bucket check")


async def trigger_pool_maintenance() -> None:
    """Queue nightly pool maintenance."""
    from practice_core.services.tasks import run_pool_maintenance

    run_pool_maintenance.delay()
    logger.info("Triggered pool maintenance")


def make_gc_job(services: PracticeServices):
    async def collect_garbage() -> None:
        removed = services.cleanup()
        logger.info(f"Garbage collection: {removed}")

    return collect_garbage


def setup_scheduled_jobs() -> None:
    """Configure the pool jobs."""

    scheduler.add_job(
        trigger_pool_check,
        IntervalTrigger(minutes=POOL_CHECK_MINUTES),
        id="pool_check",
        name="Problem Pool Check",
        replace_existing=True,
        misfire_grace_time=POOL_CHECK_MINUTES * 60,
    )

    scheduler.add_job(
        trigger_pool_maintenance,
        CronTrigger(hour=MAINTENANCE_HOUR, minute=0),
        id="pool_maintenance",
        name="Problem Pool Maintenance",
        replace_existing=True,
        misfire_grace_time=3600,  # Allow 1 hour grace period
    )

    logger.info("Scheduled jobs configured:")
    logger.info(f"  - Pool check: every {POOL_CHECK_MINUTES} minutes")
    logger.info(f"  - Pool maintenance: daily at {MAINTENANCE_HOUR:02d}:00 UTC")


def register_gc_jobs(services: PracticeServices, minutes: Optional[int] = None) -> None:
    """Collect finished jobs and expired cache entries of ``services`` periodically."""
    interval = minutes or GC_MINUTES
    scheduler.add_job(
        make_gc_job(services),
        IntervalTrigger(minutes=interval),
        id="practice_gc",
        name="Job and Cache GC",
        replace_existing=True,
    )
    logger.info(f"  - Job/cache GC: every {interval} minutes")


def start_scheduler() -> None:
    """Start the scheduler and configure jobs."""
    if scheduler.running:
        logger.warning("Scheduler already running")
        return

    setup_scheduled_jobs()
    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    if not scheduler.running:
        logger.warning("Scheduler not running")
        return

    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")


def get_scheduled_jobs() -> list[dict]:
    """Get list of scheduled jobs with their next run times."""
    jobs = []
    for job in scheduler.get_jobs():
        # Jobs added before start() have no next run time yet
        next_run = getattr(job, "next_run_time", None)
        jobs.append(
            {
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            }
        )
    return jobs


def trigger_job_now(job_id: str) -> bool:
    """
    Manually trigger a scheduled job immediately.

    Returns:
        True if triggered successfully
    """
    job = scheduler.get_job(job_id)
    if job:
        job.modify(next_run_time=datetime.now())
        logger.info(f"Manually triggered job: {job_id}")
        return True

    logger.warning(f"Job not found: {job_id}")
    return False
