"""
Background Job Queues

In-process asyncio queues for problem generation and answer analysis, plus
the pool replenisher that drives generation per (language, difficulty).

Usage:
    from practice_core.services.jobs import GenerationQueue, PoolReplenisher
"""

from practice_core.services.jobs.analysis_queue import AnalysisQueue, analysis_key
from practice_core.services.jobs.base import JobTable
from practice_core.services.jobs.generation_queue import BASE_COMPLEXITY, GenerationQueue
from practice_core.services.jobs.pool_replenisher import PoolReplenisher

__all__ = [
    "AnalysisQueue",
    "BASE_COMPLEXITY",
    "GenerationQueue",
    "JobTable",
    "PoolReplenisher",
    "analysis_key",
]
