"""
Practice System Enums

Defines enums for problem difficulty, problem lifecycle, practice sessions
and the per-session problem queue.
"""

from enum import Enum


class Difficulty(str, Enum):
    """
    Problem difficulty buckets.

    Together with the language, difficulty forms a pool bucket that the
    PoolReplenisher keeps above its minimum size.
    """

    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"

    @property
    def numeric(self) -> int:
        """Position on the 1..3 scale used for skill matching."""
        return _DIFFICULTY_SCALE[self]

    def easier(self) -> "Difficulty | None":
        """One step easier, or None for EASY."""
        order = list(Difficulty)
        index = order.index(self)
        return order[index - 1] if index > 0 else None


_DIFFICULTY_SCALE = {
    Difficulty.EASY: 1,
    Difficulty.MEDIUM: 2,
    Difficulty.HARD: 3,
}


class ProblemStatus(str, Enum):
    """Problem lifecycle. Archived problems are never served."""

    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class SessionStatus(str, Enum):
    """
    Practice session states.

    State transitions:
    - (no session) → ACTIVE (start_session)
    - ACTIVE → COMPLETED (queue exhausted, skip limit, daily reset)
    """

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class SessionProblemStatus(str, Enum):
    """Status of a single entry in a session's ordered problem queue."""

    PENDING = "PENDING"  # Not yet answered
    COMPLETED = "COMPLETED"  # Submitted (and correct, once evaluated)
    SKIPPED = "SKIPPED"  # Skipped by the learner
    FAILED = "FAILED"  # Submitted but evaluated as incorrect

    @property
    def is_attempted(self) -> bool:
        return self is not SessionProblemStatus.PENDING


class RankTitle(str, Enum):
    """Display titles derived from the learner's rating."""

    GRANDMASTER = "Grandmaster"
    MASTER = "Master"
    EXPERT = "Expert"
    ADVANCED = "Advanced"
    INTERMEDIATE = "Intermediate"
    APPRENTICE = "Apprentice"
    NOVICE = "Novice"
