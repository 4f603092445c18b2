"""
Centralized enum definitions for the practice core.

All enums are organized by domain:
- practice.py: Difficulty, problem/session lifecycle, rank titles
- jobs.py: Background job statuses and kinds

Usage:
    from practice_core.enums import Difficulty, SessionStatus

    # Or import from specific module
    from practice_core.enums.jobs import JobStatus
"""

from practice_core.enums.jobs import JobKind, JobStatus
from practice_core.enums.practice import (
    Difficulty,
    ProblemStatus,
    RankTitle,
    SessionProblemStatus,
    SessionStatus,
)

__all__ = [
    "Difficulty",
    "JobKind",
    "JobStatus",
    "ProblemStatus",
    "RankTitle",
    "SessionProblemStatus",
    "SessionStatus",
]
