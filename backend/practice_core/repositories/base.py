"""
Practice Repository Interface

The narrow persistence contract the practice services depend on. Services
never touch a schema directly; they find, create, update, upsert and count
domain models through this interface, group multi-row writes in
``transaction()``, and run nearest-neighbour lookups over problem embeddings.

Two implementations ship with the package:
- InMemoryPracticeRepository: dict-backed, snapshot/restore transactions.
  Used by tests and local runs.
- SQLPracticeRepository: SQLAlchemy async sessions against PostgreSQL.

Contract:
    - Reads return copies. Mutating a returned model has no effect until it
      is written back with an update/upsert call.
    - Writes inside ``async with repo.transaction():`` apply all-or-nothing.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Iterable, Optional

from practice_core.enums.practice import (
    Difficulty,
    ProblemStatus,
    SessionProblemStatus,
    SessionStatus,
)
from practice_core.models.practice import (
    Learner,
    PracticeSession,
    Problem,
    ProgressionRecord,
    RatingHistory,
)


class PracticeRepository(ABC):
    """Abstract persistence for learners, problems, progression and sessions."""

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Group writes into one atomic unit."""

    # -------------------------------------------------------------------------
    # Learners
    # -------------------------------------------------------------------------

    @abstractmethod
    async def find_learner(self, learner_id: str) -> Optional[Learner]: ...

    @abstractmethod
    async def create_learner(self, learner: Learner) -> Learner: ...

    @abstractmethod
    async def update_learner(self, learner: Learner) -> Learner: ...

    # -------------------------------------------------------------------------
    # Problems
    # -------------------------------------------------------------------------

    @abstractmethod
    async def find_problem(self, problem_id: str) -> Optional[Problem]: ...

    @abstractmethod
    async def find_problems(
        self,
        language: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
        status: Optional[ProblemStatus] = ProblemStatus.ACTIVE,
        exclude_ids: Optional[Iterable[str]] = None,
        include_ids: Optional[Iterable[str]] = None,
        pool_only: bool = False,
        limit: Optional[int] = None,
    ) -> list[Problem]:
        """Problems matching the filters, oldest first."""

    @abstractmethod
    async def create_problems(self, problems: list[Problem]) -> list[Problem]: ...

    @abstractmethod
    async def update_problem(self, problem: Problem) -> Problem: ...

    @abstractmethod
    async def delete_problem(self, problem_id: str) -> bool: ...

    @abstractmethod
    async def count_problems(
        self,
        language: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
        status: Optional[ProblemStatus] = ProblemStatus.ACTIVE,
        pool_only: bool = False,
    ) -> int: ...

    @abstractmethod
    async def nearest_problems(
        self,
        embedding: list[float],
        language: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        limit: int = 5,
    ) -> list[tuple[Problem, float]]:
        """ACTIVE problems with embeddings, nearest first, with their distance."""

    # -------------------------------------------------------------------------
    # Progression
    # -------------------------------------------------------------------------

    @abstractmethod
    async def find_progression(
        self, learner_id: str, problem_id: str
    ) -> Optional[ProgressionRecord]: ...

    @abstractmethod
    async def find_progressions(
        self, learner_id: str, limit: Optional[int] = None
    ) -> list[ProgressionRecord]:
        """A learner's progression records, most recent attempt first."""

    @abstractmethod
    async def upsert_progression(self, record: ProgressionRecord) -> ProgressionRecord: ...

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def find_session(self, session_id: str) -> Optional[PracticeSession]: ...

    @abstractmethod
    async def find_sessions(
        self,
        learner_id: str,
        status: Optional[SessionStatus] = None,
        language: Optional[str] = None,
    ) -> list[PracticeSession]:
        """A learner's sessions, newest first."""

    @abstractmethod
    async def create_session(self, session: PracticeSession) -> PracticeSession: ...

    @abstractmethod
    async def update_session(self, session: PracticeSession) -> PracticeSession: ...

    @abstractmethod
    async def count_session_problems(
        self,
        learner_id: str,
        status: SessionProblemStatus,
        since: Optional[datetime] = None,
    ) -> int:
        """Count a learner's session entries in ``status`` completed after ``since``."""

    @abstractmethod
    async def session_outcomes(self, problem_id: str) -> list[SessionProblemStatus]:
        """Statuses of every session entry referencing the problem."""

    # -------------------------------------------------------------------------
    # Rating history
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_rating_history(self, record: RatingHistory) -> RatingHistory: ...

    @abstractmethod
    async def find_rating_history(self, learner_id: str) -> list[RatingHistory]: ...
