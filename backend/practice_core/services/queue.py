"""
Celery Queue Configuration

Runs the pool housekeeping work out of process. The in-request job queues
(generation waits, answer analysis) stay in-process; Celery carries the
periodic, fire-and-forget work:

- pool: bucket checks and replenishment chains
- maintenance: nightly pool cleanup

Usage:
    from practice_core.services.tasks import check_pool_buckets

    check_pool_buckets.delay()

    # Run worker: celery -A practice_core.services.queue worker -Q pool,maintenance -l info
"""

from celery import Celery

from practice_core.config import settings

celery_app = Celery(
    "practice_core",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["practice_core.services.tasks"],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task routing
    task_routes={
        "practice_core.services.tasks.check_pool_buckets": {"queue": "pool"},
        "practice_core.services.tasks.replenish_bucket": {"queue": "pool"},
        "practice_core.services.tasks.run_pool_maintenance": {"queue": "maintenance"},
    },
    # Result expiration (24 hours)
    result_expires=86400,
    # A full replenishment chain makes many sequential provider calls
    task_soft_time_limit=1800,
    task_time_limit=3600,
    # Concurrency
    worker_prefetch_multiplier=1,
    # Task acknowledgment
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)


def get_queue_stats() -> dict:
    """
    Get statistics about the task queues.

    Returns:
        Dictionary with queue statistics
    """
    inspect = celery_app.control.inspect()

    active = inspect.active() or {}
    reserved = inspect.reserved() or {}
    scheduled = inspect.scheduled() or {}

    return {
        "active_tasks": sum(len(v) for v in active.values()),
        "queued_tasks": sum(len(v) for v in reserved.values()),
        "scheduled_tasks": sum(len(v) for v in scheduled.values()),
        "workers": list(active.keys()),
    }
