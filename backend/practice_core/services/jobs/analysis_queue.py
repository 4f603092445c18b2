"""
Answer Analysis Queue

Evaluates submitted solutions in the background and records the outcome.

Flow for ``enqueue``:
    1. Look up the (problem_id, answer) key in the analysis cache. A hit
       skips the evaluation call: the cached verdict is applied to the
       learner's progression right away and an already-COMPLETED job is
       returned.
    2. Otherwise store a PENDING job and make sure the worker is running.

A single worker drains the queue: it repeatedly takes the highest-priority
PENDING job (FIFO among equal priorities), marks it IN_PROGRESS, evaluates
the solution (provider calls retried with backoff), applies the outcome to
the learner's progression through ProgressService, caches the result and
marks the job COMPLETED. A failing job is marked FAILED and logged; the
worker moves on to the next one.

The ``_is_processing`` flag is checked and set without an intervening
await, so at most one worker runs per queue instance and no two jobs of the
same queue are ever IN_PROGRESS at once.

Usage:
    queue = AnalysisQueue(repository, llm_client, progress_service)
    job = await queue.enqueue(learner_id, problem_id, code, time_spent=90, priority=2)
    final = await queue.wait_for(job.id, timeout=30)
"""

import itertools
import logging
from typing import Any, Callable, Optional

from practice_core.config.settings import settings
from practice_core.enums.jobs import JobKind, JobStatus
from practice_core.models.jobs import InProgressJob, JobState, PendingJob
from practice_core.models.practice import EvaluationResult
from practice_core.repositories.base import PracticeRepository
from practice_core.services.cache import ResponseCache, make_key
from practice_core.services.errors import ProblemNotFoundError
from practice_core.services.jobs.base import JobTable
from practice_core.services.learning.progress import ProgressService
from practice_core.services.llm.client import PracticeLLMClient
from practice_core.services.retry import provider_retry

logger = logging.getLogger(__name__)


def analysis_key(problem_id: str, answer: str) -> str:
    return make_key("analysis", problem_id, answer)


class AnalysisQueue(JobTable):
    """Priority queue of solution evaluations with a single serial worker."""

    def __init__(
        self,
        repository: PracticeRepository,
        llm_client: PracticeLLMClient,
        progress_service: ProgressService,
        cache: Optional[ResponseCache[dict]] = None,
        retry_factory: Callable = provider_retry,
        max_job_age_hours: Optional[int] = None,
    ):
        super().__init__("analysis", max_job_age_hours)
        self.repository = repository
        self.llm_client = llm_client
        self.progress_service = progress_service
        self.cache = cache if cache is not None else ResponseCache(
            max_entries=settings.CACHE_MAX_ENTRIES,
            ttl_seconds=settings.CACHE_TTL_HOURS * 3600,
        )
        self._retry = retry_factory
        self._is_processing = False
        self._sequence = itertools.count()
        self._order: dict[str, int] = {}

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    async def enqueue(
        self,
        learner_id: str,
        problem_id: str,
        solution: str,
        time_spent: int = 0,
        session_id: Optional[str] = None,
        priority: int = 0,
    ) -> JobState:
        """
        Queue a submission for analysis.

        Returns:
            The job state: COMPLETED on a cache hit (FAILED if the cached
            verdict could not be recorded), otherwise PENDING
        """
        job = PendingJob(
            kind=JobKind.ANALYSIS,
            priority=priority,
            payload={
                "learner_id": learner_id,
                "problem_id": problem_id,
                "solution": solution,
                "time_spent": time_spent,
                "session_id": session_id,
            },
        )

        cached = self.cache.get(analysis_key(problem_id, solution))
        if cached is not None:
            logger.info(f"Analysis cache hit for problem {problem_id} (job={job.id})")
            final = await self._apply_cached(job, cached)
            self._store(final)
            return final

        self._order[job.id] = next(self._sequence)
        self._store(job)
        self._ensure_worker()
        return job

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        if self._is_processing:
            return
        self._is_processing = True
        self._spawn(self._drain())

    def _next_pending(self) -> Optional[PendingJob]:
        pending = [job for job in self._jobs.values() if job.status == JobStatus.PENDING]
        if not pending:
            return None
        return min(pending, key=lambda job: (-job.priority, self._order.get(job.id, 0)))

    async def _drain(self) -> None:
        try:
            while (job := self._next_pending()) is not None:
                await self._process(job)
        finally:
            self._is_processing = False

    async def _process(self, job: PendingJob) -> None:
        running: InProgressJob = job.start()
        self._store(running)
        payload = running.payload

        try:
            evaluation = await self._evaluate(payload["problem_id"], payload["solution"])
            result = await self._record(payload, evaluation)
            self.cache.set(analysis_key(payload["problem_id"], payload["solution"]), result)
            final: JobState = running.complete(result)
        except Exception as e:
            logger.exception(
                f"Analysis job {job.id} failed (learner={payload['learner_id']}, "
                f"problem={payload['problem_id']}): {e}"
            )
            final = running.fail(str(e))

        self._order.pop(job.id, None)
        if self._is_tracked(job.id):
            self._store(final)

    async def _record(
        self, payload: dict[str, Any], evaluation: EvaluationResult
    ) -> dict[str, Any]:
        outcome = await self.progress_service.apply_evaluation(
            learner_id=payload["learner_id"],
            problem_id=payload["problem_id"],
            evaluation=evaluation,
            solution=payload["solution"],
            time_spent=payload["time_spent"],
            session_id=payload["session_id"],
        )
        return {**outcome.as_dict(), "metrics": evaluation.metrics}

    async def _apply_cached(self, job: PendingJob, cached: dict[str, Any]) -> JobState:
        """Record a cached verdict as a fresh attempt without re-evaluating."""
        payload = job.payload
        evaluation = EvaluationResult(
            success=cached["is_correct"],
            feedback=cached["feedback"],
            metrics=cached.get("metrics") or {},
        )
        try:
            result = await self._record(payload, evaluation)
        except Exception as e:
            logger.exception(
                f"Cached analysis job {job.id} failed (learner={payload['learner_id']}, "
                f"problem={payload['problem_id']}): {e}"
            )
            return job.start().fail(str(e))
        return job.complete({**result, "cached": True})

    async def _evaluate(self, problem_id: str, solution: str) -> EvaluationResult:
        problem = await self.repository.find_problem(problem_id)
        if problem is None:
            raise ProblemNotFoundError(
                f"Problem {problem_id} not found", details={"problem_id": problem_id}
            )

        async for attempt in self._retry():
            with attempt:
                evaluation = await self.llm_client.evaluate(
                    solution, problem.test_cases, problem
                )
        return evaluation

    def cleanup(self, now=None) -> int:
        removed = super().cleanup(now)
        self._order = {job_id: n for job_id, n in self._order.items() if job_id in self._jobs}
        return removed
