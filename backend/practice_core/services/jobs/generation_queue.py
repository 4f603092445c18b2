"""
Problem Generation Queue

Runs problem generation jobs as detached asyncio tasks. A job asks the LLM
for ``count`` problems for one (language, difficulty) bucket and resolves to
the list of persisted problem ids.

Per unit:
    generate (retried with backoff on provider failures)
      → validate (malformed content is dropped, never persisted)
      → embed (best effort; a problem without an embedding is still usable)

A unit that fails all retries is logged and skipped; the rest of the batch
continues. The surviving problems are written in a single transaction.

Jobs ignore priority; they start immediately and run concurrently.

Usage:
    queue = GenerationQueue(repository, llm_client)
    job_id = await queue.enqueue("python", Difficulty.EASY, count=5)
    problem_ids = await queue.wait_for_problems(job_id, timeout=60)
"""

import logging
from typing import Awaitable, Callable, Optional

from practice_core.enums.jobs import JobKind
from practice_core.enums.practice import Difficulty
from practice_core.models.jobs import FailedJob, InProgressJob, JobState, PendingJob
from practice_core.models.practice import Problem
from practice_core.repositories.base import PracticeRepository
from practice_core.services.errors import (
    GenerationTimeoutError,
    TransientProviderError,
    ValidationFailure,
)
from practice_core.services.jobs.base import JobTable
from practice_core.services.llm.client import PracticeLLMClient
from practice_core.services.llm.prompts import topic_for
from practice_core.services.retry import provider_retry

logger = logging.getLogger(__name__)

# Problem rating = base_complexity * 400
BASE_COMPLEXITY = {
    Difficulty.EASY: 1.0,
    Difficulty.MEDIUM: 2.0,
    Difficulty.HARD: 3.0,
}

CompletionCallback = Callable[[JobState], Awaitable[None]]


class GenerationQueue(JobTable):
    """Background problem generation with per-unit retry."""

    def __init__(
        self,
        repository: PracticeRepository,
        llm_client: PracticeLLMClient,
        retry_factory: Callable = provider_retry,
        max_job_age_hours: Optional[int] = None,
    ):
        super().__init__("generation", max_job_age_hours)
        self.repository = repository
        self.llm_client = llm_client
        self._retry = retry_factory
        self._topic_cursor = 0

    async def enqueue(
        self,
        language: str,
        difficulty: Difficulty,
        count: int,
        topic: Optional[str] = None,
        on_complete: Optional[CompletionCallback] = None,
    ) -> str:
        """
        Start a generation job.

        Args:
            language: Bucket language
            difficulty: Bucket difficulty
            count: Number of problems to generate
            topic: Fixed topic; rotates through default topics when None
            on_complete: Awaited with the terminal job state

        Returns:
            Job id
        """
        job = PendingJob(
            kind=JobKind.GENERATION,
            payload={
                "language": language,
                "difficulty": difficulty.value,
                "count": count,
                "topic": topic,
            },
        )
        self._store(job)
        self._spawn(self._run(job, on_complete))
        logger.info(f"Queued generation job {job.id}: {count} x {language}/{difficulty.value}")
        return job.id

    async def wait_for_problems(self, job_id: str, timeout: float) -> list[str]:
        """
        Wait for a job's generated problem ids.

        Raises:
            GenerationTimeoutError: Job did not finish in time (retryable)
            TransientProviderError: Job failed
        """
        job = await self.wait_for(job_id, timeout)
        if isinstance(job, FailedJob):
            raise TransientProviderError(
                f"Generation job {job_id} failed: {job.error}", details={"job_id": job_id}
            )
        if not job.status.is_terminal:
            raise GenerationTimeoutError(
                f"Generation job {job_id} did not finish within {timeout}s",
                details={"job_id": job_id},
            )
        return list(job.result or [])

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    async def _run(self, job: PendingJob, on_complete: Optional[CompletionCallback]) -> None:
        running: InProgressJob = job.start()
        self._store(running)

        payload = running.payload
        try:
            problem_ids = await self.generate_batch(
                payload["language"],
                Difficulty(payload["difficulty"]),
                payload["count"],
                payload["topic"],
                job_id=job.id,
            )
            final: JobState = running.complete(problem_ids)
        except Exception as e:
            logger.exception(
                f"Generation job {job.id} failed for "
                f"{payload['language']}/{payload['difficulty']}: {e}"
            )
            final = running.fail(str(e))

        if self._is_tracked(job.id):
            self._store(final)

        if on_complete is not None:
            try:
                await on_complete(final)
            except Exception:
                logger.exception(f"Completion callback for generation job {job.id} failed")

    def _next_topic(self) -> str:
        topic = topic_for(self._topic_cursor)
        self._topic_cursor += 1
        return topic

    async def _generate_unit(
        self, language: str, difficulty: Difficulty, topic: str
    ) -> Problem:
        async for attempt in self._retry():
            with attempt:
                generated = await self.llm_client.generate_problem(language, difficulty, topic)

        problem = generated.to_problem(base_complexity=BASE_COMPLEXITY[difficulty])
        problem.language = language
        problem.difficulty = difficulty

        try:
            problem.embedding = await self.llm_client.embed(
                f"{problem.title}\n{problem.description}"
            )
        except TransientProviderError as e:
            logger.warning(f"Embedding failed for generated problem '{problem.title}': {e}")
        return problem

    async def generate_batch(
        self,
        language: str,
        difficulty: Difficulty,
        count: int,
        topic: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> list[str]:
        """
        Generate and persist up to ``count`` problems.

        Returns:
            Ids of the problems that were generated and saved
        """
        problems: list[Problem] = []
        for index in range(count):
            unit_topic = topic or self._next_topic()
            try:
                problems.append(await self._generate_unit(language, difficulty, unit_topic))
            except ValidationFailure as e:
                logger.warning(
                    f"Discarded invalid problem {index + 1}/{count} "
                    f"(job={job_id}, bucket={language}/{difficulty.value}): {e}"
                )
            except TransientProviderError as e:
                logger.error(
                    f"Giving up on problem {index + 1}/{count} after retries "
                    f"(job={job_id}, bucket={language}/{difficulty.value}): {e}"
                )

        if problems:
            async with self.repository.transaction():
                await self.repository.create_problems(problems)

        logger.info(
            f"Generated {len(problems)}/{count} problems for {language}/{difficulty.value}"
            f" (job={job_id})"
        )
        return [p.id for p in problems]
