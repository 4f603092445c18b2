"""
Problem Pool Replenisher

Keeps every (language, difficulty) bucket of generated problems at or above
a minimum size, and periodically tidies the pool.

Replenishment:
    1. Count ACTIVE pool problems (``owner_id is None``) in the bucket.
    2. If below the minimum and the bucket has no chain in flight, start a
       generation job for min(shortfall, batch_size) problems.
    3. When the job finishes, re-count; any remaining shortfall starts the
       next job in the chain. A job that produced nothing ends the chain.

Each bucket carries its own in-flight marker, so one slow bucket never
blocks the others, and a semaphore caps how many chains generate at once
so the provider is not flooded.

Maintenance (run daily):
    - delete pool problems older than POOL_STALE_DAYS that no session uses
    - archive problems with a success rate under POOL_ARCHIVE_THRESHOLD
      once they have POOL_ARCHIVE_MIN_SAMPLES recorded outcomes
    - recalculate total_uses and success_rate from session outcomes

Usage:
    replenisher = PoolReplenisher(repository, generation_queue)
    job_id = await replenisher.check_and_replenish_pool("python", Difficulty.EASY)
    await replenisher.wait_idle()
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Protocol

from practice_core.config.settings import practice_languages, settings
from practice_core.enums.jobs import JobStatus
from practice_core.enums.practice import Difficulty, ProblemStatus, SessionProblemStatus
from practice_core.models.base import utc_now
from practice_core.models.jobs import JobState
from practice_core.models.practice import MaintenanceReport
from practice_core.repositories.base import PracticeRepository
from practice_core.services.jobs.generation_queue import GenerationQueue

logger = logging.getLogger(__name__)

Bucket = tuple[str, Difficulty]


class BucketLock(Protocol):
    """Bucket marker shared with other processes running replenishment."""

    async def acquire(self, language: str, difficulty: Difficulty) -> bool: ...

    async def refresh(self, language: str, difficulty: Difficulty) -> None: ...

    async def release(self, language: str, difficulty: Difficulty) -> None: ...


class PoolReplenisher:
    """Per-bucket pool top-up and maintenance."""

    def __init__(
        self,
        repository: PracticeRepository,
        generation_queue: GenerationQueue,
        min_pool_size: Optional[int] = None,
        batch_size: Optional[int] = None,
        max_concurrent_buckets: Optional[int] = None,
        languages: Optional[list[str]] = None,
        bucket_lock: Optional[BucketLock] = None,
    ):
        self.repository = repository
        self.generation_queue = generation_queue
        self.min_pool_size = min_pool_size or settings.POOL_MIN_SIZE
        self.batch_size = batch_size or settings.POOL_BATCH_SIZE
        self.languages = languages or practice_languages()
        self.bucket_lock = bucket_lock
        self._semaphore = asyncio.Semaphore(
            max_concurrent_buckets or settings.POOL_MAX_CONCURRENT_BUCKETS
        )
        self._active_buckets: set[Bucket] = set()
        self._chains: set[asyncio.Task] = set()

    def is_replenishing(self, language: str, difficulty: Difficulty) -> bool:
        return (language, difficulty) in self._active_buckets

    @property
    def active_buckets(self) -> set[Bucket]:
        return set(self._active_buckets)

    # -------------------------------------------------------------------------
    # Replenishment
    # -------------------------------------------------------------------------

    async def _shortfall(self, language: str, difficulty: Difficulty) -> int:
        count = await self.repository.count_problems(
            language=language,
            difficulty=difficulty,
            status=ProblemStatus.ACTIVE,
            pool_only=True,
        )
        return max(0, self.min_pool_size - count)

    async def check_and_replenish_pool(
        self, language: str, difficulty: Difficulty
    ) -> Optional[str]:
        """
        Top up one bucket if it is below the minimum size.

        Returns:
            The first generation job id of the chain, or None if the bucket
            is full or already being replenished
        """
        bucket = (language, difficulty)
        if bucket in self._active_buckets:
            logger.debug(f"Replenishment already running for {language}/{difficulty.value}")
            return None

        # Mark before awaiting so concurrent checks of the same bucket see it
        self._active_buckets.add(bucket)
        try:
            if self.bucket_lock is not None and not await self.bucket_lock.acquire(
                language, difficulty
            ):
                logger.debug(f"Bucket {language}/{difficulty.value} is locked by another worker")
                self._active_buckets.discard(bucket)
                return None

            shortfall = await self._shortfall(language, difficulty)
            if shortfall == 0:
                await self._release(bucket)
                return None

            logger.info(
                f"Pool {language}/{difficulty.value} is {shortfall} problems short; "
                f"replenishing"
            )
            job_id = await self._start_batch(bucket, shortfall)
        except Exception:
            await self._release(bucket)
            raise
        return job_id

    async def _start_batch(self, bucket: Bucket, shortfall: int) -> str:
        language, difficulty = bucket
        count = min(shortfall, self.batch_size)
        if self.bucket_lock is not None:
            await self.bucket_lock.refresh(language, difficulty)
        await self._semaphore.acquire()

        async def on_complete(job: JobState) -> None:
            self._semaphore.release()
            self._track(self._continue_chain(bucket, job))

        try:
            return await self.generation_queue.enqueue(
                language, difficulty, count, on_complete=on_complete
            )
        except Exception:
            self._semaphore.release()
            raise

    async def _continue_chain(self, bucket: Bucket, job: JobState) -> None:
        language, difficulty = bucket
        try:
            produced = len(job.result or []) if job.status == JobStatus.COMPLETED else 0
            if produced == 0:
                logger.error(
                    f"Replenishment job {job.id} for {language}/{difficulty.value} produced "
                    f"no problems; stopping"
                )
                await self._release(bucket)
                return

            shortfall = await self._shortfall(language, difficulty)
            if shortfall == 0:
                logger.info(f"Pool {language}/{difficulty.value} replenished")
                await self._release(bucket)
                return

            await self._start_batch(bucket, shortfall)
        except Exception:
            logger.exception(
                f"Replenishment chain for {language}/{difficulty.value} failed after job {job.id}"
            )
            await self._release(bucket)

    async def _release(self, bucket: Bucket) -> None:
        self._active_buckets.discard(bucket)
        if self.bucket_lock is not None:
            try:
                await self.bucket_lock.release(*bucket)
            except Exception:
                logger.exception(f"Failed to release lock for {bucket[0]}/{bucket[1].value}")

    def _track(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._chains.add(task)
        task.add_done_callback(self._chains.discard)

    async def check_all_buckets(self) -> dict[str, Optional[str]]:
        """
        Check every configured language at every difficulty.

        Returns:
            Map of "language/DIFFICULTY" to the started job id (or None)
        """
        started: dict[str, Optional[str]] = {}
        for language in self.languages:
            for difficulty in Difficulty:
                try:
                    job_id = await self.check_and_replenish_pool(language, difficulty)
                except Exception:
                    logger.exception(f"Pool check failed for {language}/{difficulty.value}")
                    job_id = None
                started[f"{language}/{difficulty.value}"] = job_id
        return started

    async def wait_idle(self) -> None:
        """Wait until every bucket chain has finished."""
        while self._active_buckets or self._chains:
            await self.generation_queue.wait_idle()
            if self._chains:
                await asyncio.gather(*list(self._chains), return_exceptions=True)
            elif self._active_buckets:
                await asyncio.sleep(0)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def run_maintenance(self, now: Optional[datetime] = None) -> MaintenanceReport:
        """
        Delete stale pool problems, archive failing ones, refresh statistics.

        Idempotent: running it twice in a row changes nothing the second time.
        """
        now = now or utc_now()
        stale_before = now - timedelta(days=settings.POOL_STALE_DAYS)
        deleted = archived = updated = 0

        async with self.repository.transaction():
            problems = await self.repository.find_problems(status=None)
            for problem in problems:
                outcomes = await self.repository.session_outcomes(problem.id)

                if problem.owner_id is None and problem.created_at < stale_before and not outcomes:
                    await self.repository.delete_problem(problem.id)
                    deleted += 1
                    continue

                attempted = [o for o in outcomes if o != SessionProblemStatus.PENDING]
                changed = False
                if attempted:
                    solved = sum(1 for o in attempted if o == SessionProblemStatus.COMPLETED)
                    success_rate = solved / len(attempted)
                    if (
                        problem.total_uses != len(outcomes)
                        or abs(problem.success_rate - success_rate) > 1e-9
                    ):
                        problem.total_uses = len(outcomes)
                        problem.success_rate = success_rate
                        changed = True
                        updated += 1

                    if (
                        problem.status == ProblemStatus.ACTIVE
                        and len(attempted) >= settings.POOL_ARCHIVE_MIN_SAMPLES
                        and success_rate < settings.POOL_ARCHIVE_THRESHOLD
                    ):
                        problem.status = ProblemStatus.ARCHIVED
                        changed = True
                        archived += 1

                if changed:
                    await self.repository.update_problem(problem)

        report = MaintenanceReport(deleted=deleted, archived=archived, updated=updated)
        logger.info(
            f"Pool maintenance: deleted={report.deleted}, archived={report.archived}, "
            f"updated={report.updated}"
        )
        return report
