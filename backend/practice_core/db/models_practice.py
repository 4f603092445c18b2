"""
SQLAlchemy Database Models for the Practice System

Tables:
- learners: Rating, XP/level, streak and learning-optimizer state
- problems: Generated and user-owned practice problems
- problem_progressions: Learner x problem history with SM-2 metrics
- practice_sessions / session_problems: Sessions and their ordered queues
- rating_history: Append-only rating changes

ARCHITECTURE NOTE:
    This file contains SQLALCHEMY models for database persistence.
    There is a corresponding Pydantic file: practice_core/models/practice.py

    Data flows: Service Layer → Pydantic → SQLAlchemy → Database
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from practice_core.db.base import Base


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# ===========================================
# Learners
# ===========================================


class LearnerRow(Base):
    """
    Practice learners.

    Attributes:
        rating / max_rating / volatility: Elo-style rating state.
        skill_levels: JSON map of language -> skill on the 1..3 scale.
        concept_mastery: JSON map of language -> {concept: mastery}.
    """

    __tablename__ = "learners"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rating: Mapped[float] = mapped_column(Float, default=1000.0)
    max_rating: Mapped[float] = mapped_column(Float, default=1000.0)
    volatility: Mapped[float] = mapped_column(Float, default=100.0)
    xp: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)
    streak: Mapped[int] = mapped_column(Integer, default=0)
    last_practice_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    skill_levels: Mapped[dict] = mapped_column(JSON, default=dict)
    concept_mastery: Mapped[dict] = mapped_column(JSON, default=dict)

    total_problems: Mapped[int] = mapped_column(Integer, default=0)
    correct_solutions: Mapped[int] = mapped_column(Integer, default=0)
    average_time: Mapped[float] = mapped_column(Float, default=0.0)
    retention_rate: Mapped[float] = mapped_column(Float, default=1.0)
    learning_rate: Mapped[float] = mapped_column(Float, default=0.1)
    difficulty_level: Mapped[float] = mapped_column(Float, default=1.0)


# ===========================================
# Problems
# ===========================================


class ProblemRow(Base):
    """
    Practice problems.

    ``owner_id`` is NULL for pool problems; only those count toward bucket
    replenishment. ``embedding`` is stored as a JSON float array and ranked
    by the repository for similarity lookups.
    """

    __tablename__ = "problems"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str] = mapped_column(Text, default="")
    language: Mapped[str] = mapped_column(String(50), index=True)
    difficulty: Mapped[str] = mapped_column(String(20), index=True)
    base_complexity: Mapped[float] = mapped_column(Float, default=1.0)
    adaptive_difficulty: Mapped[float] = mapped_column(Float, default=1.0)
    concepts: Mapped[list] = mapped_column(JSON, default=list)
    hints: Mapped[list] = mapped_column(JSON, default=list)
    starting_code: Mapped[str] = mapped_column(Text, default="")
    solution: Mapped[str] = mapped_column(Text, default="")
    test_cases: Mapped[list] = mapped_column(JSON, default=list)
    embedding: Mapped[Optional[list]] = mapped_column(JSON)
    owner_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", index=True)
    total_uses: Mapped[int] = mapped_column(Integer, default=0)
    last_used: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    success_rate: Mapped[float] = mapped_column(Float, default=0.0)
    average_time: Mapped[float] = mapped_column(Float, default=300.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class ProgressionRow(Base):
    """Learner x problem progression, including SM-2 scheduling state."""

    __tablename__ = "problem_progressions"
    __table_args__ = (UniqueConstraint("learner_id", "problem_id", name="uq_progression"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(ForeignKey("learners.id"), index=True)
    problem_id: Mapped[str] = mapped_column(
        ForeignKey("problems.id", ondelete="CASCADE"), index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    time_spent: Mapped[int] = mapped_column(Integer, default=0)
    solved: Mapped[Optional[bool]] = mapped_column(Boolean)
    consecutive_correct: Mapped[int] = mapped_column(Integer, default=0)
    last_solution: Mapped[Optional[str]] = mapped_column(Text)
    last_feedback: Mapped[Optional[str]] = mapped_column(Text)
    last_attempt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ease_factor: Mapped[float] = mapped_column(Float, default=2.5)
    interval: Mapped[int] = mapped_column(Integer, default=0)
    next_review: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    action_value: Mapped[float] = mapped_column(Float, default=0.0)
    reward_signal: Mapped[float] = mapped_column(Float, default=0.0)


# ===========================================
# Sessions
# ===========================================


class SessionRow(Base):
    """Practice sessions; entries live in session_problems."""

    __tablename__ = "practice_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    learner_id: Mapped[str] = mapped_column(ForeignKey("learners.id"), index=True)
    language: Mapped[str] = mapped_column(String(50), default="python")
    difficulty: Mapped[str] = mapped_column(String(20), default="EASY")
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", index=True)
    remaining_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    problems: Mapped[List["SessionProblemRow"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionProblemRow.order",
        lazy="selectin",
    )


class SessionProblemRow(Base):
    """
    One slot of a session queue.

    The (session_id, order) constraint enforces that a session never holds
    two entries with the same position.
    """

    __tablename__ = "session_problems"
    __table_args__ = (UniqueConstraint("session_id", "order", name="uq_session_order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("practice_sessions.id", ondelete="CASCADE"), index=True
    )
    problem_id: Mapped[str] = mapped_column(ForeignKey("problems.id"), index=True)
    order: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default="PENDING")
    time_spent: Mapped[Optional[int]] = mapped_column(Integer)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    session: Mapped["SessionRow"] = relationship(back_populates="problems")


class RatingHistoryRow(Base):
    """Append-only rating change log."""

    __tablename__ = "rating_history"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    learner_id: Mapped[str] = mapped_column(ForeignKey("learners.id"), index=True)
    problem_id: Mapped[str] = mapped_column(String(64))
    old_rating: Mapped[float] = mapped_column(Float)
    new_rating: Mapped[float] = mapped_column(Float)
    rating_change: Mapped[int] = mapped_column(Integer)
    volatility_change: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
