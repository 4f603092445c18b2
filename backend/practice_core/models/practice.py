"""
Pydantic Models for the Practice System

Domain entities (learners, problems, progression records, sessions, rating
history) and the result types returned by the scheduling services.

ARCHITECTURE NOTE:
    This file contains PYDANTIC models used by the service layer.
    The SQLAlchemy tables live in practice_core/db/models_practice.py and
    convert to these via ``model_validate(row)`` (from_attributes=True).
"""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from practice_core.enums.practice import (
    Difficulty,
    ProblemStatus,
    RankTitle,
    SessionProblemStatus,
    SessionStatus,
)
from practice_core.models.base import DomainModel, ResultModel, utc_now


def new_id() -> str:
    """Generate a new entity identifier."""
    return str(uuid4())


# ===========================================
# Learners
# ===========================================


class Learner(DomainModel):
    """
    A learner's rating, progression and learning-optimizer state.

    Attributes:
        rating: Elo-style skill rating, never below the configured floor.
        max_rating: Highest rating ever reached (monotonic).
        volatility: Rating volatility, bounded to [50, 200].
        xp / level: Experience points; next level needs 2^(level-1)*1000 XP.
        streak: Consecutive practice days.
        skill_levels: Per-language skill on the 1..3 difficulty scale.
        concept_mastery: Per-language map of concept -> mastery in [0, 1].
        total_problems .. difficulty_level: Running statistics kept by
            the learning optimizer.
    """

    id: str = Field(default_factory=new_id)
    rating: float = 1000.0
    max_rating: float = 1000.0
    volatility: float = 100.0
    xp: int = 0
    level: int = 1
    streak: int = 0
    last_practice_date: Optional[datetime] = None
    skill_levels: dict[str, float] = Field(default_factory=dict)
    concept_mastery: dict[str, dict[str, float]] = Field(default_factory=dict)

    total_problems: int = 0
    correct_solutions: int = 0
    average_time: float = 0.0
    retention_rate: float = 1.0
    learning_rate: float = 0.1
    difficulty_level: float = 1.0

    def skill_for(self, domain: str) -> float:
        return self.skill_levels.get(domain, 1.0)

    def mastery_for(self, domain: str) -> dict[str, float]:
        return self.concept_mastery.setdefault(domain, {})


# ===========================================
# Problems
# ===========================================


class Problem(DomainModel):
    """
    A practice problem, generated by the pool or owned by a user.

    Pool problems (``owner_id is None``) count toward bucket replenishment;
    user-owned problems never do.
    """

    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    language: str
    difficulty: Difficulty
    base_complexity: float = 1.0
    adaptive_difficulty: float = 1.0
    concepts: list[str] = Field(default_factory=list)
    hints: list[str] = Field(default_factory=list)
    starting_code: str = ""
    solution: str = ""
    test_cases: list[Any] = Field(default_factory=list)
    embedding: Optional[list[float]] = None
    owner_id: Optional[str] = None
    status: ProblemStatus = ProblemStatus.ACTIVE
    total_uses: int = 0
    last_used: Optional[datetime] = None
    success_rate: float = 0.0
    average_time: float = 300.0
    created_at: datetime = Field(default_factory=utc_now)


class SpacedRepetitionMetrics(DomainModel):
    """SM-2 scheduling state for one learner/problem pair."""

    ease_factor: float = Field(default=2.5, ge=1.3)
    interval: int = Field(default=0, ge=0, le=365)
    next_review: Optional[datetime] = None


class ProgressionRecord(DomainModel):
    """
    A learner's history with one problem.

    Created on first attempt (upsert) and updated on every attempt after.
    ``consecutive_correct`` resets to zero on a failed attempt.
    """

    learner_id: str
    problem_id: str
    attempts: int = 0
    time_spent: int = 0
    solved: Optional[bool] = None
    consecutive_correct: int = Field(default=0, ge=0)
    last_solution: Optional[str] = None
    last_feedback: Optional[str] = None
    last_attempt: Optional[datetime] = None
    metrics: SpacedRepetitionMetrics = Field(default_factory=SpacedRepetitionMetrics)
    action_value: float = 0.0
    reward_signal: float = 0.0


# ===========================================
# Sessions
# ===========================================


class SessionProblem(DomainModel):
    """One slot in a session's ordered problem queue."""

    problem_id: str
    order: int
    status: SessionProblemStatus = SessionProblemStatus.PENDING
    time_spent: Optional[int] = None
    completed_at: Optional[datetime] = None


class PracticeSession(DomainModel):
    """A bounded practice session holding an ordered problem queue."""

    id: str = Field(default_factory=new_id)
    learner_id: str
    language: str = "python"
    difficulty: Difficulty = Difficulty.EASY
    status: SessionStatus = SessionStatus.ACTIVE
    problems: list[SessionProblem] = Field(default_factory=list)
    remaining_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def pending(self) -> list[SessionProblem]:
        return sorted(
            (p for p in self.problems if p.status == SessionProblemStatus.PENDING),
            key=lambda p: p.order,
        )

    @property
    def attempted_count(self) -> int:
        return sum(1 for p in self.problems if p.status.is_attempted)

    @property
    def skipped_count(self) -> int:
        return sum(1 for p in self.problems if p.status == SessionProblemStatus.SKIPPED)

    def entry_for(self, problem_id: str) -> Optional[SessionProblem]:
        for entry in self.problems:
            if entry.problem_id == problem_id:
                return entry
        return None


class RatingHistory(DomainModel):
    """Append-only record of one rating change."""

    id: str = Field(default_factory=new_id)
    learner_id: str
    problem_id: str
    old_rating: float
    new_rating: float
    rating_change: int
    volatility_change: float
    created_at: datetime = Field(default_factory=utc_now)


# ===========================================
# LLM Contracts
# ===========================================


class EvaluationResult(ResultModel):
    """Outcome of evaluating a submitted solution."""

    success: bool
    feedback: str
    metrics: dict[str, Any] = Field(default_factory=dict)

    @field_validator("feedback")
    @classmethod
    def _feedback_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("feedback must not be empty")
        return value


class GeneratedProblem(BaseModel):
    """
    Problem content as returned by the generation model.

    Field aliases match the JSON contract in the generation prompt.
    Malformed content fails validation before anything is persisted.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str
    difficulty: Difficulty
    language: str
    description: str = Field(alias="problem")
    starting_code: str = Field(alias="startingCode")
    solution: str
    hints: list[str] = Field(default_factory=list)
    test_cases: list[Any] = Field(default_factory=list, alias="testCases")
    concepts: list[str] = Field(default_factory=list)

    @field_validator("title", "language", "description", "starting_code", "solution")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("field must not be empty")
        return value

    @field_validator("difficulty", mode="before")
    @classmethod
    def _normalize_difficulty(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    def to_problem(self, base_complexity: float = 1.0) -> Problem:
        return Problem(
            title=self.title,
            description=self.description,
            language=self.language.lower(),
            difficulty=self.difficulty,
            base_complexity=base_complexity,
            concepts=self.concepts,
            hints=self.hints,
            starting_code=self.starting_code,
            solution=self.solution,
            test_cases=self.test_cases,
        )


# ===========================================
# Service Results
# ===========================================


class RatingUpdate(ResultModel):
    old_rating: float
    new_rating: float
    rating_change: int
    volatility_change: float


class SessionView(ResultModel):
    """Snapshot of a session returned by start_session."""

    session_id: str
    status: SessionStatus
    language: str
    difficulty: Difficulty
    total_problems: int
    remaining_count: int
    current_problem: Optional[Problem] = None
    resumed: bool = False


class SubmissionReceipt(ResultModel):
    """Returned by submit_solution and skip_problem."""

    session_id: str
    problem_id: str
    session_status: SessionStatus
    remaining_count: int
    next_problem_id: Optional[str] = None
    job_id: Optional[str] = None


class SessionStats(ResultModel):
    learner_id: str
    xp: int
    level: int
    next_level_xp: int
    streak: int
    rating: float
    max_rating: float
    rank: RankTitle
    attempts_today: int
    daily_limit: int
    remaining_today: int
    active_session_id: Optional[str] = None
    session_completed: int = 0
    session_total: int = 0
    suggested_difficulty: float = 0.5


class ProgressResult(BaseModel):
    """One row of a batch progress save."""

    problem_id: str
    solved: bool
    time_spent: int = 0
    solution: Optional[str] = None
    feedback: Optional[str] = None


class MaintenanceReport(ResultModel):
    deleted: int = 0
    archived: int = 0
    updated: int = 0
