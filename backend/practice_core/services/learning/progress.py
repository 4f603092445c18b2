"""
Progress Service

Applies the outcome of an evaluated attempt to everything that depends on
it, inside one repository transaction:

- progression record (attempts, time, solved, consecutive correct, SM-2)
- learner concept mastery, rating, learning-optimizer state and skill
- XP, level and daily streak
- problem statistics (success rate, average time, adaptive difficulty)
- the session entry (FAILED when the answer was wrong)

If any step raises, none of the writes are applied.

Also provides the transactional batch save used when a client submits a
whole session's results at once.

Usage:
    service = ProgressService(repository, rating_engine, mastery_tracker, optimizer)
    outcome = await service.apply_evaluation(
        learner_id, problem_id, evaluation, solution=code, time_spent=95,
        session_id=session.id,
    )
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from practice_core.enums.practice import Difficulty, SessionProblemStatus
from practice_core.models.base import utc_now
from practice_core.models.practice import (
    EvaluationResult,
    Learner,
    Problem,
    ProgressionRecord,
    ProgressResult,
)
from practice_core.repositories.base import PracticeRepository
from practice_core.services.errors import LearnerNotFoundError, ProblemNotFoundError
from practice_core.services.learning.mastery_tracker import MasteryTracker
from practice_core.services.learning.rating import LearningOptimizer, RatingEngine

logger = logging.getLogger(__name__)

BASE_XP = {
    Difficulty.EASY: 10,
    Difficulty.MEDIUM: 20,
    Difficulty.HARD: 30,
}
FAST_SOLVE_SECONDS = 300
MIN_SKILL = 1.0
MAX_SKILL = 3.0
SKILL_STEP = 0.1


# =============================================================================
# Pure helpers
# =============================================================================


def calculate_xp(difficulty: Difficulty, is_correct: bool, time_spent: float) -> int:
    """
    XP for one attempt.

    Correct answers earn the difficulty's base XP plus 2 XP for every full
    minute under five minutes; wrong answers earn 10% of the base.
    """
    base = BASE_XP[difficulty]
    if not is_correct:
        return math.floor(base * 0.1)

    bonus = 0
    if time_spent < FAST_SOLVE_SECONDS:
        bonus = math.floor((FAST_SOLVE_SECONDS - time_spent) / 60) * 2
    return base + bonus


def next_level_xp(level: int) -> int:
    return 2 ** (level - 1) * 1000


def apply_xp(learner: Learner, xp_gained: int) -> bool:
    """Add XP and level up as many times as earned. Returns True on level-up."""
    learner.xp += xp_gained
    leveled = False
    while learner.xp >= next_level_xp(learner.level):
        learner.level += 1
        leveled = True
    return leveled


def next_streak(streak: int, last_practice: Optional[datetime], today: date) -> int:
    """Consecutive-day streak after practicing on ``today``."""
    if last_practice is None:
        return 1
    last_day = last_practice.date()
    if last_day == today:
        return max(streak, 1)
    if last_day == today - timedelta(days=1):
        return streak + 1
    return 1


def attempt_performance(is_correct: bool, time_spent: float) -> float:
    """Score in [0, 1] used to tune a problem's adaptive difficulty."""
    if not is_correct:
        return 0.0
    return (1.0 + max(0.0, 1.0 - time_spent / FAST_SOLVE_SECONDS)) / 2


def adjust_adaptive_difficulty(current: float, performance: float) -> float:
    return max(0.5, min(2.0, current + (performance - 0.6) * 0.1))


# =============================================================================
# Service
# =============================================================================


@dataclass(frozen=True)
class AttemptOutcome:
    """Summary of what one evaluated attempt changed."""

    is_correct: bool
    feedback: str
    rating_change: int
    new_rating: float
    xp_gained: int
    leveled_up: bool
    performance_score: int
    next_review: Optional[datetime]

    def as_dict(self) -> dict:
        return {
            "is_correct": self.is_correct,
            "feedback": self.feedback,
            "rating_change": self.rating_change,
            "new_rating": self.new_rating,
            "xp_gained": self.xp_gained,
            "leveled_up": self.leveled_up,
            "performance_score": self.performance_score,
            "next_review": self.next_review.isoformat() if self.next_review else None,
        }


class ProgressService:
    """Transactional attempt bookkeeping for learners and problems."""

    def __init__(
        self,
        repository: PracticeRepository,
        rating_engine: RatingEngine,
        mastery_tracker: MasteryTracker,
        optimizer: Optional[LearningOptimizer] = None,
    ):
        self.repository = repository
        self.rating_engine = rating_engine
        self.mastery_tracker = mastery_tracker
        self.optimizer = optimizer or LearningOptimizer()

    async def _load(self, learner_id: str, problem_id: str) -> tuple[Learner, Problem]:
        learner = await self.repository.find_learner(learner_id)
        if learner is None:
            raise LearnerNotFoundError(
                f"Learner {learner_id} not found", details={"learner_id": learner_id}
            )
        problem = await self.repository.find_problem(problem_id)
        if problem is None:
            raise ProblemNotFoundError(
                f"Problem {problem_id} not found", details={"problem_id": problem_id}
            )
        return learner, problem

    @staticmethod
    def _record_attempt(
        progression: ProgressionRecord,
        is_correct: bool,
        time_spent: int,
        solution: Optional[str],
        feedback: Optional[str],
        now: datetime,
    ) -> None:
        progression.attempts += 1
        progression.time_spent += max(0, int(time_spent))
        progression.solved = is_correct
        progression.consecutive_correct = progression.consecutive_correct + 1 if is_correct else 0
        progression.last_solution = solution
        progression.last_feedback = feedback
        progression.last_attempt = now

    async def apply_evaluation(
        self,
        learner_id: str,
        problem_id: str,
        evaluation: EvaluationResult,
        solution: Optional[str] = None,
        time_spent: int = 0,
        session_id: Optional[str] = None,
    ) -> AttemptOutcome:
        """
        Record an evaluated attempt.

        Raises:
            LearnerNotFoundError / ProblemNotFoundError: Missing references
        """
        now = utc_now()
        is_correct = evaluation.success

        async with self.repository.transaction():
            learner, problem = await self._load(learner_id, problem_id)
            progression = await self.repository.find_progression(learner_id, problem_id)
            if progression is None:
                progression = ProgressionRecord(learner_id=learner_id, problem_id=problem_id)

            retention = self.mastery_tracker.retention_score(progression, now=now)
            self._record_attempt(
                progression, is_correct, time_spent, solution, evaluation.feedback, now
            )
            score = self.mastery_tracker.apply_attempt(
                progression, learner, problem, is_correct, time_spent, now=now
            )
            rating = await self.rating_engine.update_rating(
                learner, problem, is_correct, time_spent
            )
            self.optimizer.update_learning_state(
                learner, progression, is_correct, time_spent, retention
            )

            self._update_skill(learner, problem.language, is_correct)

            xp_gained = calculate_xp(problem.difficulty, is_correct, time_spent)
            leveled_up = apply_xp(learner, xp_gained)
            learner.streak = next_streak(learner.streak, learner.last_practice_date, now.date())
            learner.last_practice_date = now

            self._update_problem_stats(problem, is_correct, time_spent)

            await self.repository.upsert_progression(progression)
            await self.repository.update_learner(learner)
            await self.repository.update_problem(problem)

            if session_id is not None and not is_correct:
                await self._mark_session_entry_failed(session_id, problem_id)

        if leveled_up:
            logger.info(f"Learner {learner_id} reached level {learner.level}")

        return AttemptOutcome(
            is_correct=is_correct,
            feedback=evaluation.feedback,
            rating_change=rating.rating_change,
            new_rating=rating.new_rating,
            xp_gained=xp_gained,
            leveled_up=leveled_up,
            performance_score=score,
            next_review=progression.metrics.next_review,
        )

    @staticmethod
    def _update_skill(learner: Learner, language: str, is_correct: bool) -> None:
        # Direction follows the outcome, not the optimizer reward
        step = SKILL_STEP if is_correct else -SKILL_STEP
        skill = learner.skill_for(language) * (1 + step)
        learner.skill_levels[language] = max(MIN_SKILL, min(MAX_SKILL, skill))

    @staticmethod
    def _update_problem_stats(problem: Problem, is_correct: bool, time_spent: float) -> None:
        samples = max(1, problem.total_uses)
        problem.success_rate += ((1.0 if is_correct else 0.0) - problem.success_rate) / samples
        problem.average_time += (time_spent - problem.average_time) / samples
        problem.adaptive_difficulty = adjust_adaptive_difficulty(
            problem.adaptive_difficulty, attempt_performance(is_correct, time_spent)
        )

    async def _mark_session_entry_failed(self, session_id: str, problem_id: str) -> None:
        session = await self.repository.find_session(session_id)
        if session is None:
            logger.warning(f"Session {session_id} vanished before marking {problem_id} failed")
            return
        entry = session.entry_for(problem_id)
        if entry is not None and entry.status == SessionProblemStatus.COMPLETED:
            entry.status = SessionProblemStatus.FAILED
            await self.repository.update_session(session)

    async def save_batch(self, learner_id: str, results: list[ProgressResult]) -> int:
        """
        Upsert progression for many problems as one unit.

        Either every row is written or, if any row fails (for example a
        missing problem), none are.

        Returns:
            Number of progression records written
        """
        now = utc_now()
        async with self.repository.transaction():
            for result in results:
                if await self.repository.find_problem(result.problem_id) is None:
                    raise ProblemNotFoundError(
                        f"Problem {result.problem_id} not found",
                        details={"problem_id": result.problem_id, "learner_id": learner_id},
                    )
                progression = await self.repository.find_progression(
                    learner_id, result.problem_id
                ) or ProgressionRecord(learner_id=learner_id, problem_id=result.problem_id)
                self._record_attempt(
                    progression,
                    result.solved,
                    result.time_spent,
                    result.solution,
                    result.feedback,
                    now,
                )
                await self.repository.upsert_progression(progression)

        logger.info(f"Saved {len(results)} progress results for learner {learner_id}")
        return len(results)
