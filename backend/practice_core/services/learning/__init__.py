"""
Learning Services

Modules:
- rating: Elo-style rating updates, rank titles and the learning optimizer
- mastery_tracker: SM-2 spaced repetition and concept mastery
- problem_selector: Similarity and epsilon-greedy problem selection
- progress: Transactional bookkeeping for evaluated attempts
- session_scheduler: Practice session orchestration (the caller API)

SessionScheduler depends on the job queues, which in turn depend on
ProgressService, so it is imported from its own module:

    from practice_core.services.learning.session_scheduler import SessionScheduler
"""

from practice_core.services.learning.mastery_tracker import MasteryTracker
from practice_core.services.learning.problem_selector import (
    LearnerState,
    NeedGenerationSignal,
    ProblemSelector,
)
from practice_core.services.learning.progress import AttemptOutcome, ProgressService
from practice_core.services.learning.rating import (
    LearningOptimizer,
    RatingConfig,
    RatingEngine,
    rank_title,
)

__all__ = [
    "AttemptOutcome",
    "LearnerState",
    "LearningOptimizer",
    "MasteryTracker",
    "NeedGenerationSignal",
    "ProblemSelector",
    "ProgressService",
    "RatingConfig",
    "RatingEngine",
    "rank_title",
]
