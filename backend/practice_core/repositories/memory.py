"""
In-Memory Practice Repository

Dict-backed implementation of PracticeRepository for development and tests.

Models are copied on the way in and on the way out, so callers get the same
isolation they would get from a real database. Transactions take a deep
snapshot of every table and restore it if the block raises; a single
asyncio.Lock serializes writers so a rollback can never clobber another
task's committed writes.
"""

import asyncio
import copy
import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, Optional

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
from practice_core.repositories.base import PracticeRepository

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryPracticeRepository(PracticeRepository):
    """
    In-memory implementation of the PracticeRepository.

    Intended for development and testing; state lives for the lifetime of
    the instance.
    """

    def __init__(
        self,
        learners: Optional[list[Learner]] = None,
        problems: Optional[list[Problem]] = None,
    ):
        self._learners: dict[str, Learner] = {}
        self._problems: dict[str, Problem] = {}
        self._progressions: dict[tuple[str, str], ProgressionRecord] = {}
        self._sessions: dict[str, PracticeSession] = {}
        self._rating_history: list[RatingHistory] = []

        self._lock = asyncio.Lock()
        self._tx_owner: Optional[asyncio.Task] = None

        for learner in learners or []:
            self._learners[learner.id] = learner.model_copy(deep=True)
        for problem in problems or []:
            self._problems[problem.id] = problem.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _owns_transaction(self) -> bool:
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    @asynccontextmanager
    async def _write(self) -> AsyncIterator[None]:
        if self._owns_transaction():
            yield
            return
        async with self._lock:
            yield

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._owns_transaction():
            # Nested: the outer transaction owns the snapshot
            yield
            return

        async with self._lock:
            self._tx_owner = asyncio.current_task()
            snapshot = self._snapshot()
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                logger.debug("Rolled back in-memory transaction")
                raise
            finally:
                self._tx_owner = None

    def _snapshot(self) -> tuple:
        return copy.deepcopy(
            (
                self._learners,
                self._problems,
                self._progressions,
                self._sessions,
                self._rating_history,
            )
        )

    def _restore(self, snapshot: tuple) -> None:
        (
            self._learners,
            self._problems,
            self._progressions,
            self._sessions,
            self._rating_history,
        ) = snapshot

    # -------------------------------------------------------------------------
    # Learners
    # -------------------------------------------------------------------------

    async def find_learner(self, learner_id: str) -> Optional[Learner]:
        learner = self._learners.get(learner_id)
        return learner.model_copy(deep=True) if learner else None

    async def create_learner(self, learner: Learner) -> Learner:
        async with self._write():
            self._learners[learner.id] = learner.model_copy(deep=True)
        return learner

    async def update_learner(self, learner: Learner) -> Learner:
        async with self._write():
            self._learners[learner.id] = learner.model_copy(deep=True)
        return learner

    # -------------------------------------------------------------------------
    # Problems
    # -------------------------------------------------------------------------

    async def find_problem(self, problem_id: str) -> Optional[Problem]:
        problem = self._problems.get(problem_id)
        return problem.model_copy(deep=True) if problem else None

    def _matching(
        self,
        language: Optional[str],
        difficulty: Optional[Difficulty],
        status: Optional[ProblemStatus],
        pool_only: bool,
    ) -> list[Problem]:
        matches = []
        for problem in self._problems.values():
            if language is not None and problem.language != language:
                continue
            if difficulty is not None and problem.difficulty != difficulty:
                continue
            if status is not None and problem.status != status:
                continue
            if pool_only and problem.owner_id is not None:
                continue
            matches.append(problem)
        return sorted(matches, key=lambda p: p.created_at)

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
        excluded = set(exclude_ids or ())
        included = set(include_ids) if include_ids is not None else None

        results = []
        for problem in self._matching(language, difficulty, status, pool_only):
            if problem.id in excluded:
                continue
            if included is not None and problem.id not in included:
                continue
            results.append(problem.model_copy(deep=True))
            if limit is not None and len(results) >= limit:
                break
        return results

    async def create_problems(self, problems: list[Problem]) -> list[Problem]:
        async with self._write():
            for problem in problems:
                self._problems[problem.id] = problem.model_copy(deep=True)
        return problems

    async def update_problem(self, problem: Problem) -> Problem:
        async with self._write():
            self._problems[problem.id] = problem.model_copy(deep=True)
        return problem

    async def delete_problem(self, problem_id: str) -> bool:
        async with self._write():
            return self._problems.pop(problem_id, None) is not None

    async def count_problems(
        self,
        language: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
        status: Optional[ProblemStatus] = ProblemStatus.ACTIVE,
        pool_only: bool = False,
    ) -> int:
        return len(self._matching(language, difficulty, status, pool_only))

    async def nearest_problems(
        self,
        embedding: list[float],
        language: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        limit: int = 5,
    ) -> list[tuple[Problem, float]]:
        excluded = set(exclude_ids or ())
        scored = []
        for problem in self._matching(language, difficulty, ProblemStatus.ACTIVE, False):
            if problem.id in excluded or not problem.embedding:
                continue
            if len(problem.embedding) != len(embedding):
                continue
            scored.append((problem, math.dist(problem.embedding, embedding)))

        scored.sort(key=lambda item: item[1])
        return [(p.model_copy(deep=True), d) for p, d in scored[:limit]]

    # -------------------------------------------------------------------------
    # Progression
    # -------------------------------------------------------------------------

    async def find_progression(
        self, learner_id: str, problem_id: str
    ) -> Optional[ProgressionRecord]:
        record = self._progressions.get((learner_id, problem_id))
        return record.model_copy(deep=True) if record else None

    async def find_progressions(
        self, learner_id: str, limit: Optional[int] = None
    ) -> list[ProgressionRecord]:
        records = [r for (lid, _), r in self._progressions.items() if lid == learner_id]
        records.sort(
            key=lambda r: r.last_attempt or _EPOCH,
            reverse=True,
        )
        if limit is not None:
            records = records[:limit]
        return [r.model_copy(deep=True) for r in records]

    async def upsert_progression(self, record: ProgressionRecord) -> ProgressionRecord:
        async with self._write():
            self._progressions[(record.learner_id, record.problem_id)] = record.model_copy(
                deep=True
            )
        return record

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def find_session(self, session_id: str) -> Optional[PracticeSession]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def find_sessions(
        self,
        learner_id: str,
        status: Optional[SessionStatus] = None,
        language: Optional[str] = None,
    ) -> list[PracticeSession]:
        sessions = [
            s
            for s in self._sessions.values()
            if s.learner_id == learner_id
            and (status is None or s.status == status)
            and (language is None or s.language == language)
        ]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return [s.model_copy(deep=True) for s in sessions]

    async def create_session(self, session: PracticeSession) -> PracticeSession:
        orders = [entry.order for entry in session.problems]
        if len(orders) != len(set(orders)):
            raise ValueError(f"Session {session.id} has duplicate problem order values")
        async with self._write():
            self._sessions[session.id] = session.model_copy(deep=True)
        return session

    async def update_session(self, session: PracticeSession) -> PracticeSession:
        async with self._write():
            self._sessions[session.id] = session.model_copy(deep=True)
        return session

    async def count_session_problems(
        self,
        learner_id: str,
        status: SessionProblemStatus,
        since: Optional[datetime] = None,
    ) -> int:
        count = 0
        for session in self._sessions.values():
            if session.learner_id != learner_id:
                continue
            for entry in session.problems:
                if entry.status != status:
                    continue
                if since is not None and (entry.completed_at is None or entry.completed_at < since):
                    continue
                count += 1
        return count

    async def session_outcomes(self, problem_id: str) -> list[SessionProblemStatus]:
        return [
            entry.status
            for session in self._sessions.values()
            for entry in session.problems
            if entry.problem_id == problem_id
        ]

    # -------------------------------------------------------------------------
    # Rating history
    # -------------------------------------------------------------------------

    async def add_rating_history(self, record: RatingHistory) -> RatingHistory:
        async with self._write():
            self._rating_history.append(record.model_copy(deep=True))
        return record

    async def find_rating_history(self, learner_id: str) -> list[RatingHistory]:
        return [
            r.model_copy(deep=True) for r in self._rating_history if r.learner_id == learner_id
        ]
