"""
Celery Task Definitions

Pool housekeeping tasks:
- check_pool_buckets: top up every (language, difficulty) bucket below the minimum
- replenish_bucket: top up a single bucket
- run_pool_maintenance: delete stale, archive failing, refresh statistics

Each task runs its coroutine under ``asyncio.run`` with a repository bound
to a fresh engine (asyncpg connections cannot cross event loops) and waits
for every replenishment chain it started before returning.
Replenishing tasks hold a Redis lock per bucket for the whole chain, so
overlapping runs (the periodic check, a manual replenish_bucket, or a worker
with concurrency above one) never generate for the same bucket twice.

Queue Routing:
    Task-to-queue assignment is configured centrally in queue.py via `task_routes`.

Usage:
    from practice_core.services.tasks import replenish_bucket

    replenish_bucket.delay("python", "EASY")
"""

import asyncio
import logging
from typing import Any, Optional

from practice_core.db.base import task_session_maker
from practice_core.db.redis import RedisBucketLock, create_redis_client
from practice_core.enums.practice import Difficulty
from practice_core.models.base import utc_now
from practice_core.repositories.sql import SQLPracticeRepository
from practice_core.services.container import PracticeServices, build_practice_services
from practice_core.services.jobs.pool_replenisher import BucketLock
from practice_core.services.queue import celery_app

logger = logging.getLogger(__name__)


def _task_services(bucket_lock: Optional[BucketLock] = None) -> PracticeServices:
    return build_practice_services(
        SQLPracticeRepository(task_session_maker()), bucket_lock=bucket_lock
    )


async def _check_pool_buckets() -> dict[str, Any]:
    client = create_redis_client()
    try:
        services = _task_services(RedisBucketLock(client))
        started = await services.replenisher.check_all_buckets()
        await services.replenisher.wait_idle()
    finally:
        await client.aclose()
    return {"started": {bucket: job for bucket, job in started.items() if job}}


async def _replenish_bucket(language: str, difficulty: str) -> dict[str, Any]:
    client = create_redis_client()
    try:
        services = _task_services(RedisBucketLock(client))
        job_id = await services.replenisher.check_and_replenish_pool(
            language, Difficulty(difficulty)
        )
        await services.replenisher.wait_idle()
    finally:
        await client.aclose()
    return {"bucket": f"{language}/{difficulty}", "job_id": job_id}


async def _run_pool_maintenance() -> dict[str, Any]:
    services = _task_services()
    report = await services.replenisher.run_maintenance()
    return report.model_dump()


@celery_app.task(name="practice_core.services.tasks.check_pool_buckets")
def check_pool_buckets() -> dict[str, Any]:
    """
    Periodic pool check across all buckets.

    Scheduling:
        Triggered by APScheduler in practice_core/services/scheduler.py
        every few minutes via check_pool_buckets.delay().
    """
    logger.info("Checking problem pool buckets")
    result = asyncio.run(_check_pool_buckets())
    logger.info(f"Pool check finished: {len(result['started'])} buckets replenished")
    return result


@celery_app.task(name="practice_core.services.tasks.replenish_bucket")
def replenish_bucket(language: str, difficulty: str) -> dict[str, Any]:
    """
    Top up one bucket.

    Args:
        language: Bucket language (e.g. "python")
        difficulty: Difficulty value ("EASY", "MEDIUM" or "HARD")
    """
    return asyncio.run(_replenish_bucket(language, difficulty))


@celery_app.task(name="practice_core.services.tasks.run_pool_maintenance")
def run_pool_maintenance() -> dict[str, Any]:
    """Nightly pool maintenance; triggered by APScheduler at 03:00 UTC."""
    logger.info("Running pool maintenance")
    report = asyncio.run(_run_pool_maintenance())
    return {**report, "finished_at": utc_now().isoformat()}
