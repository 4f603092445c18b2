"""
In-Process Job Table

Shared bookkeeping for the generation and analysis queues:

- a table of job states (tagged union: Pending | InProgress | Completed | Failed)
- one asyncio.Future per job, resolved when the job reaches a terminal
  state, so callers wait on a notification instead of polling
- a set of background tasks, kept referenced until they finish
- garbage collection of terminal and expired jobs

Each queue instance owns its own table; there is no module-level state.
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Coroutine, Optional

from practice_core.config.settings import settings
from practice_core.models.base import utc_now
from practice_core.models.jobs import JobState, is_terminal
from practice_core.services.errors import JobNotFoundError

logger = logging.getLogger(__name__)


class JobTable:
    """Job state storage with completion notification and GC."""

    def __init__(self, name: str, max_job_age_hours: Optional[int] = None):
        self.name = name
        self.max_job_age = timedelta(hours=max_job_age_hours or settings.JOB_MAX_AGE_HOURS)
        self._jobs: dict[str, JobState] = {}
        self._futures: dict[str, asyncio.Future] = {}
        self._tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _store(self, job: JobState) -> None:
        """Record a new state for a job and notify waiters on terminal states."""
        self._jobs[job.id] = job
        if job.id not in self._futures:
            self._futures[job.id] = asyncio.get_running_loop().create_future()
        if is_terminal(job):
            future = self._futures[job.id]
            if not future.done():
                future.set_result(job)

    def _is_tracked(self, job_id: str) -> bool:
        return job_id in self._jobs

    def get_status(self, job_id: str) -> Optional[JobState]:
        return self._jobs.get(job_id)

    def require(self, job_id: str) -> JobState:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(
                f"{self.name} job {job_id} not found", details={"job_id": job_id}
            )
        return job

    async def wait_for(self, job_id: str, timeout: float) -> JobState:
        """
        Wait until a job is terminal or the timeout elapses.

        Returns the terminal state, or the latest state if the timeout hit.

        Raises:
            JobNotFoundError: Unknown job id
        """
        job = self.require(job_id)
        if is_terminal(job):
            return job
        future = self._futures[job_id]
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            return self._jobs.get(job_id, job)

    def stats(self) -> dict[str, Any]:
        counts = Counter(job.status.value for job in self._jobs.values())
        return {
            "queue": self.name,
            "total": len(self._jobs),
            "running_tasks": len(self._tasks),
            **counts,
        }

    # -------------------------------------------------------------------------
    # Background tasks
    # -------------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every background task, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Garbage collection
    # -------------------------------------------------------------------------

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """
        Remove terminal jobs and any job older than the maximum age.

        Idempotent; safe to run while jobs are being processed (a running
        job that is collected simply stops being reported).

        Returns:
            Number of jobs removed
        """
        now = now or utc_now()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if is_terminal(job) or now - job.created_at > self.max_job_age
        ]
        for job_id in expired:
            del self._jobs[job_id]
            self._futures.pop(job_id, None)

        if expired:
            logger.info(f"Cleaned up {len(expired)} {self.name} jobs")
        return len(expired)
