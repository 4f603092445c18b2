"""
Service Wiring

Builds the practice services around one repository. Every service is an
explicit object with its own state (queues, caches, bucket markers); there
are no module-level queues.

Usage:
    from practice_core.repositories import InMemoryPracticeRepository
    from practice_core.services.container import build_practice_services

    services = build_practice_services(InMemoryPracticeRepository())
    view = await services.scheduler.start_session("learner-1")
"""

import random
from dataclasses import dataclass
from typing import Callable, Optional

from practice_core.config.settings import settings
from practice_core.repositories.base import PracticeRepository
from practice_core.services.cache import ResponseCache
from practice_core.services.jobs.analysis_queue import AnalysisQueue
from practice_core.services.jobs.generation_queue import GenerationQueue
from practice_core.services.jobs.pool_replenisher import BucketLock, PoolReplenisher
from practice_core.services.learning.mastery_tracker import MasteryTracker
from practice_core.services.learning.problem_selector import ProblemSelector
from practice_core.services.learning.progress import ProgressService
from practice_core.services.learning.rating import LearningOptimizer, RatingEngine
from practice_core.services.learning.session_scheduler import SessionScheduler
from practice_core.services.llm.client import PracticeLLMClient, get_llm_client
from practice_core.services.retry import provider_retry


@dataclass
class PracticeServices:
    repository: PracticeRepository
    llm_client: PracticeLLMClient
    analysis_cache: ResponseCache
    rating_engine: RatingEngine
    mastery_tracker: MasteryTracker
    selector: ProblemSelector
    progress: ProgressService
    generation_queue: GenerationQueue
    analysis_queue: AnalysisQueue
    replenisher: PoolReplenisher
    scheduler: SessionScheduler

    def cleanup(self) -> dict[str, int]:
        """Collect finished jobs and expired cache entries."""
        return {
            "analysis_jobs": self.analysis_queue.cleanup(),
            "generation_jobs": self.generation_queue.cleanup(),
            "analysis_cache": self.analysis_cache.purge_expired(),
            "llm_cache": self.llm_client.cache.purge_expired(),
        }

    async def wait_idle(self) -> None:
        await self.replenisher.wait_idle()
        await self.analysis_queue.wait_idle()
        await self.generation_queue.wait_idle()


def build_practice_services(
    repository: PracticeRepository,
    llm_client: Optional[PracticeLLMClient] = None,
    rng: Optional[random.Random] = None,
    retry_factory: Callable = provider_retry,
    bucket_lock: Optional[BucketLock] = None,
) -> PracticeServices:
    """
    Wire every practice service around ``repository``.

    Pass ``bucket_lock`` when several processes may replenish the same pool.
    """
    llm_client = llm_client or get_llm_client()
    analysis_cache = ResponseCache(
        max_entries=settings.CACHE_MAX_ENTRIES,
        ttl_seconds=settings.CACHE_TTL_HOURS * 3600,
    )

    rating_engine = RatingEngine(repository)
    mastery_tracker = MasteryTracker()
    selector = ProblemSelector(repository, rng=rng)
    progress = ProgressService(repository, rating_engine, mastery_tracker, LearningOptimizer())

    generation_queue = GenerationQueue(repository, llm_client, retry_factory=retry_factory)
    analysis_queue = AnalysisQueue(
        repository, llm_client, progress, cache=analysis_cache, retry_factory=retry_factory
    )
    replenisher = PoolReplenisher(repository, generation_queue, bucket_lock=bucket_lock)
    scheduler = SessionScheduler(
        repository, selector, progress, analysis_queue, generation_queue
    )

    return PracticeServices(
        repository=repository,
        llm_client=llm_client,
        analysis_cache=analysis_cache,
        rating_engine=rating_engine,
        mastery_tracker=mastery_tracker,
        selector=selector,
        progress=progress,
        generation_queue=generation_queue,
        analysis_queue=analysis_queue,
        replenisher=replenisher,
        scheduler=scheduler,
    )
