"""
Pydantic models for the practice core.

- base.py: DomainModel / ResultModel base classes
- practice.py: Learners, problems, progression, sessions, service results
- jobs.py: Tagged-union background job states
"""

from practice_core.models.jobs import (
    CompletedJob,
    FailedJob,
    InProgressJob,
    JobState,
    PendingJob,
)
from practice_core.models.practice import (
    EvaluationResult,
    GeneratedProblem,
    Learner,
    MaintenanceReport,
    PracticeSession,
    Problem,
    ProgressionRecord,
    ProgressResult,
    RatingHistory,
    RatingUpdate,
    SessionProblem,
    SessionStats,
    SessionView,
    SpacedRepetitionMetrics,
    SubmissionReceipt,
)

__all__ = [
    "CompletedJob",
    "EvaluationResult",
    "FailedJob",
    "GeneratedProblem",
    "InProgressJob",
    "JobState",
    "Learner",
    "MaintenanceReport",
    "PendingJob",
    "PracticeSession",
    "Problem",
    "ProgressionRecord",
    "ProgressResult",
    "RatingHistory",
    "RatingUpdate",
    "SessionProblem",
    "SessionStats",
    "SessionView",
    "SpacedRepetitionMetrics",
    "SubmissionReceipt",
]
