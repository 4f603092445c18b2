"""
SQLAlchemy Practice Repository

PostgreSQL implementation of PracticeRepository using async SQLAlchemy
sessions. Rows are converted to the Pydantic domain models on read and
back on write, so services never see ORM objects.

Transactions:
    ``async with repo.transaction():`` opens a session with ``session.begin()``
    and publishes it through a context variable; every repository call made
    inside the block (by the same task) reuses that session, so the whole
    block commits or rolls back together. Calls outside a transaction use a
    short-lived session that commits on exit.

Usage:
    from practice_core.db.base import async_session_maker
    from practice_core.repositories.sql import SQLPracticeRepository

    repo = SQLPracticeRepository(async_session_maker)
    async with repo.transaction():
        await repo.upsert_progression(record)
        await repo.update_learner(learner)
"""

import logging
import math
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from practice_core.db.models_practice import (
    LearnerRow,
    ProblemRow,
    ProgressionRow,
    RatingHistoryRow,
    SessionProblemRow,
    SessionRow,
)
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
    SessionProblem,
    SpacedRepetitionMetrics,
)
from practice_core.repositories.base import PracticeRepository

logger = logging.getLogger(__name__)

_current_session: ContextVar[Optional[AsyncSession]] = ContextVar(
    "practice_repository_session", default=None
)


# =============================================================================
# Row <-> model conversion
# =============================================================================


def _progression_from_row(row: ProgressionRow) -> ProgressionRecord:
    return ProgressionRecord(
        learner_id=row.learner_id,
        problem_id=row.problem_id,
        attempts=row.attempts,
        time_spent=row.time_spent,
        solved=row.solved,
        consecutive_correct=row.consecutive_correct,
        last_solution=row.last_solution,
        last_feedback=row.last_feedback,
        last_attempt=row.last_attempt,
        metrics=SpacedRepetitionMetrics(
            ease_factor=row.ease_factor,
            interval=row.interval,
            next_review=row.next_review,
        ),
        action_value=row.action_value,
        reward_signal=row.reward_signal,
    )


def _apply_progression(row: ProgressionRow, record: ProgressionRecord) -> None:
    row.attempts = record.attempts
    row.time_spent = record.time_spent
    row.solved = record.solved
    row.consecutive_correct = record.consecutive_correct
    row.last_solution = record.last_solution
    row.last_feedback = record.last_feedback
    row.last_attempt = record.last_attempt
    row.ease_factor = record.metrics.ease_factor
    row.interval = record.metrics.interval
    row.next_review = record.metrics.next_review
    row.action_value = record.action_value
    row.reward_signal = record.reward_signal


def _session_from_row(row: SessionRow) -> PracticeSession:
    return PracticeSession(
        id=row.id,
        learner_id=row.learner_id,
        language=row.language,
        difficulty=Difficulty(row.difficulty),
        status=SessionStatus(row.status),
        remaining_count=row.remaining_count,
        created_at=row.created_at,
        completed_at=row.completed_at,
        problems=[
            SessionProblem(
                problem_id=entry.problem_id,
                order=entry.order,
                status=SessionProblemStatus(entry.status),
                time_spent=entry.time_spent,
                completed_at=entry.completed_at,
            )
            for entry in row.problems
        ],
    )


def _problem_values(problem: Problem) -> dict:
    data = problem.model_dump()
    data["difficulty"] = problem.difficulty.value
    data["status"] = problem.status.value
    return data


class SQLPracticeRepository(PracticeRepository):
    """PracticeRepository backed by SQLAlchemy async sessions."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    # -------------------------------------------------------------------------
    # Session handling
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        current = _current_session.get()
        if current is not None:
            yield current
            return

        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if _current_session.get() is not None:
            yield
            return

        async with self._session_maker() as session:
            async with session.begin():
                token = _current_session.set(session)
                try:
                    yield
                finally:
                    _current_session.reset(token)

    # -------------------------------------------------------------------------
    # Learners
    # -------------------------------------------------------------------------

    async def find_learner(self, learner_id: str) -> Optional[Learner]:
        # Inside a transaction the learner row is locked, serializing session
        # starts and attempt bookkeeping per learner
        lock = True if _current_session.get() is not None else None
        async with self._session() as session:
            row = await session.get(LearnerRow, learner_id, with_for_update=lock)
            return Learner.model_validate(row) if row else None

    async def create_learner(self, learner: Learner) -> Learner:
        async with self._session() as session:
            session.add(LearnerRow(**learner.model_dump()))
            await session.flush()
        return learner

    async def update_learner(self, learner: Learner) -> Learner:
        async with self._session() as session:
            await session.merge(LearnerRow(**learner.model_dump()))
            await session.flush()
        return learner

    # -------------------------------------------------------------------------
    # Problems
    # -------------------------------------------------------------------------

    async def find_problem(self, problem_id: str) -> Optional[Problem]:
        async with self._session() as session:
            row = await session.get(ProblemRow, problem_id)
            return Problem.model_validate(row) if row else None

    @staticmethod
    def _problem_filters(
        stmt,
        language: Optional[str],
        difficulty: Optional[Difficulty],
        status: Optional[ProblemStatus],
        pool_only: bool,
    ):
        if language is not None:
            stmt = stmt.where(ProblemRow.language == language)
        if difficulty is not None:
            stmt = stmt.where(ProblemRow.difficulty == difficulty.value)
        if status is not None:
            stmt = stmt.where(ProblemRow.status == status.value)
        if pool_only:
            stmt = stmt.where(ProblemRow.owner_id.is_(None))
        return stmt

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
        stmt = self._problem_filters(
            select(ProblemRow), language, difficulty, status, pool_only
        )
        excluded = list(exclude_ids or ())
        if excluded:
            stmt = stmt.where(ProblemRow.id.not_in(excluded))
        if include_ids is not None:
            stmt = stmt.where(ProblemRow.id.in_(list(include_ids)))
        stmt = stmt.order_by(ProblemRow.created_at)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session() as session:
            result = await session.execute(stmt)
            return [Problem.model_validate(row) for row in result.scalars().all()]

    async def create_problems(self, problems: list[Problem]) -> list[Problem]:
        async with self._session() as session:
            session.add_all(ProblemRow(**_problem_values(p)) for p in problems)
            await session.flush()
        return problems

    async def update_problem(self, problem: Problem) -> Problem:
        async with self._session() as session:
            await session.merge(ProblemRow(**_problem_values(problem)))
            await session.flush()
        return problem

    async def delete_problem(self, problem_id: str) -> bool:
        async with self._session() as session:
            row = await session.get(ProblemRow, problem_id)
            if row is None:
                return False
            await session.delete(row)
            await session.flush()
            return True

    async def count_problems(
        self,
        language: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
        status: Optional[ProblemStatus] = ProblemStatus.ACTIVE,
        pool_only: bool = False,
    ) -> int:
        stmt = self._problem_filters(
            select(func.count()).select_from(ProblemRow),
            language,
            difficulty,
            status,
            pool_only,
        )
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def nearest_problems(
        self,
        embedding: list[float],
        language: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        limit: int = 5,
    ) -> list[tuple[Problem, float]]:
        candidates = await self.find_problems(
            language=language,
            difficulty=difficulty,
            exclude_ids=exclude_ids,
        )
        scored = [
            (problem, math.dist(problem.embedding, embedding))
            for problem in candidates
            if problem.embedding and len(problem.embedding) == len(embedding)
        ]
        scored.sort(key=lambda item: item[1])
        return scored[:limit]

    # -------------------------------------------------------------------------
    # Progression
    # -------------------------------------------------------------------------

    async def _progression_row(
        self, session: AsyncSession, learner_id: str, problem_id: str
    ) -> Optional[ProgressionRow]:
        result = await session.execute(
            select(ProgressionRow).where(
                ProgressionRow.learner_id == learner_id,
                ProgressionRow.problem_id == problem_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_progression(
        self, learner_id: str, problem_id: str
    ) -> Optional[ProgressionRecord]:
        async with self._session() as session:
            row = await self._progression_row(session, learner_id, problem_id)
            return _progression_from_row(row) if row else None

    async def find_progressions(
        self, learner_id: str, limit: Optional[int] = None
    ) -> list[ProgressionRecord]:
        stmt = (
            select(ProgressionRow)
            .where(ProgressionRow.learner_id == learner_id)
            .order_by(ProgressionRow.last_attempt.desc().nulls_last())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [_progression_from_row(row) for row in result.scalars().all()]

    async def upsert_progression(self, record: ProgressionRecord) -> ProgressionRecord:
        async with self._session() as session:
            row = await self._progression_row(session, record.learner_id, record.problem_id)
            if row is None:
                row = ProgressionRow(learner_id=record.learner_id, problem_id=record.problem_id)
                session.add(row)
            _apply_progression(row, record)
            await session.flush()
        return record

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def find_session(self, session_id: str) -> Optional[PracticeSession]:
        async with self._session() as session:
            row = await session.get(SessionRow, session_id)
            return _session_from_row(row) if row else None

    async def find_sessions(
        self,
        learner_id: str,
        status: Optional[SessionStatus] = None,
        language: Optional[str] = None,
    ) -> list[PracticeSession]:
        stmt = select(SessionRow).where(SessionRow.learner_id == learner_id)
        if status is not None:
            stmt = stmt.where(SessionRow.status == status.value)
        if language is not None:
            stmt = stmt.where(SessionRow.language == language)
        stmt = stmt.order_by(SessionRow.created_at.desc())

        async with self._session() as session:
            result = await session.execute(stmt)
            return [_session_from_row(row) for row in result.scalars().all()]

    async def create_session(self, practice_session: PracticeSession) -> PracticeSession:
        row = SessionRow(
            id=practice_session.id,
            learner_id=practice_session.learner_id,
            language=practice_session.language,
            difficulty=practice_session.difficulty.value,
            status=practice_session.status.value,
            remaining_count=practice_session.remaining_count,
            created_at=practice_session.created_at,
            completed_at=practice_session.completed_at,
            problems=[
                SessionProblemRow(
                    problem_id=entry.problem_id,
                    order=entry.order,
                    status=entry.status.value,
                    time_spent=entry.time_spent,
                    completed_at=entry.completed_at,
                )
                for entry in practice_session.problems
            ],
        )
        async with self._session() as session:
            session.add(row)
            await session.flush()
        return practice_session

    async def update_session(self, practice_session: PracticeSession) -> PracticeSession:
        async with self._session() as session:
            row = await session.get(SessionRow, practice_session.id)
            if row is None:
                raise ValueError(f"Session {practice_session.id} does not exist")

            row.status = practice_session.status.value
            row.remaining_count = practice_session.remaining_count
            row.completed_at = practice_session.completed_at

            # Update entries in place keyed by order so the (session_id, order)
            # constraint never sees a transient duplicate.
            existing = {entry.order: entry for entry in row.problems}
            for entry in practice_session.problems:
                target = existing.get(entry.order)
                if target is None:
                    row.problems.append(
                        SessionProblemRow(problem_id=entry.problem_id, order=entry.order)
                    )
                    target = row.problems[-1]
                target.problem_id = entry.problem_id
                target.status = entry.status.value
                target.time_spent = entry.time_spent
                target.completed_at = entry.completed_at
            await session.flush()
        return practice_session

    async def count_session_problems(
        self,
        learner_id: str,
        status: SessionProblemStatus,
        since: Optional[datetime] = None,
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(SessionProblemRow)
            .join(SessionRow, SessionRow.id == SessionProblemRow.session_id)
            .where(
                SessionRow.learner_id == learner_id,
                SessionProblemRow.status == status.value,
            )
        )
        if since is not None:
            stmt = stmt.where(SessionProblemRow.completed_at >= since)
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def session_outcomes(self, problem_id: str) -> list[SessionProblemStatus]:
        stmt = select(SessionProblemRow.status).where(
            SessionProblemRow.problem_id == problem_id
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [SessionProblemStatus(status) for status in result.scalars().all()]

    # -------------------------------------------------------------------------
    # Rating history
    # -------------------------------------------------------------------------

    async def add_rating_history(self, record: RatingHistory) -> RatingHistory:
        async with self._session() as session:
            session.add(RatingHistoryRow(**record.model_dump()))
            await session.flush()
        return record

    async def find_rating_history(self, learner_id: str) -> list[RatingHistory]:
        stmt = (
            select(RatingHistoryRow)
            .where(RatingHistoryRow.learner_id == learner_id)
            .order_by(RatingHistoryRow.created_at)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [RatingHistory.model_validate(row) for row in result.scalars().all()]
