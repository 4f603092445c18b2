"""
Rating Engine

Elo-style skill rating for learners, with volatility and a parallel
"learning state" maintained by a small Q-learning optimizer.

Rating update for one evaluated attempt:

    problem_rating = base_complexity * 400
    expected       = 1 / (1 + 10 ** ((problem_rating - rating) / 400))
    time_factor    = max(0, 1 - (time_spent - avg_time) / avg_time * TIME_WEIGHT)
    performance    = correct * (1 + DIFFICULTY_WEIGHT * adaptive_difficulty)
                             * (1 + time_factor)
    change         = round(K * (performance - expected)
                           * (1 + volatility * VOLATILITY_WEIGHT))
    new_rating     = max(MIN_RATING, rating + change)

Volatility moves by |performance - expected| * VOLATILITY_WEIGHT and stays
within [50, 200]. Every update appends a RatingHistory row. Nothing here is
retried: a failure propagates so the caller can retry the whole submission.

Usage:
    from practice_core.services.learning.rating import RatingEngine

    engine = RatingEngine(repository)
    update = await engine.update_rating(learner, problem, is_correct=True, time_spent=120)
    print(update.rating_change, rank_title(learner.rating))
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from practice_core.config.settings import settings
from practice_core.enums.practice import RankTitle
from practice_core.models.practice import (
    Learner,
    Problem,
    ProgressionRecord,
    RatingHistory,
    RatingUpdate,
)
from practice_core.repositories.base import PracticeRepository

logger = logging.getLogger(__name__)

MIN_VOLATILITY = 50.0
MAX_VOLATILITY = 200.0
DEFAULT_AVERAGE_TIME = 300.0

_RANK_THRESHOLDS: tuple[tuple[float, RankTitle], ...] = (
    (2400, RankTitle.GRANDMASTER),
    (2200, RankTitle.MASTER),
    (2000, RankTitle.EXPERT),
    (1800, RankTitle.ADVANCED),
    (1600, RankTitle.INTERMEDIATE),
    (1400, RankTitle.APPRENTICE),
)


# =============================================================================
# Pure formulas
# =============================================================================


def expected_score(learner_rating: float, problem_rating: float) -> float:
    return 1.0 / (1.0 + 10 ** ((problem_rating - learner_rating) / 400.0))


def time_factor(time_spent: float, average_time: float, time_weight: float) -> float:
    if average_time <= 0:
        average_time = DEFAULT_AVERAGE_TIME
    return max(0.0, 1.0 - (time_spent - average_time) / average_time * time_weight)


def performance_score(
    is_correct: bool,
    adaptive_difficulty: float,
    time_factor_value: float,
    difficulty_weight: float,
) -> float:
    return (
        (1.0 if is_correct else 0.0)
        * (1.0 + difficulty_weight * adaptive_difficulty)
        * (1.0 + time_factor_value)
    )


def rank_title(rating: float) -> RankTitle:
    """Display title for a rating."""
    for threshold, title in _RANK_THRESHOLDS:
        if rating >= threshold:
            return title
    return RankTitle.NOVICE


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# =============================================================================
# Rating engine
# =============================================================================


@dataclass(frozen=True)
class RatingConfig:
    k_factor: int = 32
    volatility_weight: float = 0.5
    difficulty_weight: float = 0.2
    time_weight: float = 0.1
    min_rating: float = 100.0

    @classmethod
    def from_settings(cls) -> "RatingConfig":
        return cls(
            k_factor=settings.RATING_K_FACTOR,
            volatility_weight=settings.RATING_VOLATILITY_WEIGHT,
            difficulty_weight=settings.RATING_DIFFICULTY_WEIGHT,
            time_weight=settings.RATING_TIME_WEIGHT,
            min_rating=float(settings.RATING_MIN),
        )


class RatingEngine:
    """
    Computes and records rating changes.

    The learner model is mutated in place (rating, max_rating, volatility);
    persisting the learner is the caller's job so it can share a
    transaction with the rest of the attempt's writes.
    """

    def __init__(
        self,
        repository: PracticeRepository,
        config: Optional[RatingConfig] = None,
    ):
        self.repository = repository
        self.config = config or RatingConfig.from_settings()

    def compute(
        self,
        learner: Learner,
        problem: Problem,
        is_correct: bool,
        time_spent: float,
    ) -> RatingUpdate:
        """Compute the rating update without side effects."""
        cfg = self.config
        problem_rating = problem.base_complexity * 400
        expected = expected_score(learner.rating, problem_rating)
        tf = time_factor(time_spent, problem.average_time, cfg.time_weight)
        performance = performance_score(
            is_correct, problem.adaptive_difficulty, tf, cfg.difficulty_weight
        )

        rating_change = round(
            cfg.k_factor
            * (performance - expected)
            * (1 + learner.volatility * cfg.volatility_weight)
        )
        new_rating = max(cfg.min_rating, learner.rating + rating_change)
        volatility_change = abs(performance - expected) * cfg.volatility_weight

        return RatingUpdate(
            old_rating=learner.rating,
            new_rating=new_rating,
            rating_change=rating_change,
            volatility_change=volatility_change,
        )

    async def update_rating(
        self,
        learner: Learner,
        problem: Problem,
        is_correct: bool,
        time_spent: float,
    ) -> RatingUpdate:
        """
        Apply one attempt's rating change to the learner and log it.

        Args:
            learner: Learner to update (mutated in place)
            problem: Problem that was attempted
            is_correct: Evaluation outcome
            time_spent: Seconds spent on the attempt

        Returns:
            RatingUpdate with old/new rating, change and volatility change
        """
        update = self.compute(learner, problem, is_correct, time_spent)

        learner.rating = update.new_rating
        learner.max_rating = max(learner.max_rating, update.new_rating)
        learner.volatility = _clamp(
            learner.volatility + update.volatility_change, MIN_VOLATILITY, MAX_VOLATILITY
        )

        await self.repository.add_rating_history(
            RatingHistory(
                learner_id=learner.id,
                problem_id=problem.id,
                old_rating=update.old_rating,
                new_rating=update.new_rating,
                rating_change=update.rating_change,
                volatility_change=update.volatility_change,
            )
        )

        logger.info(
            f"Rating update for learner {learner.id}: "
            f"{update.old_rating:.0f} -> {update.new_rating:.0f} ({update.rating_change:+d})"
        )
        return update


# =============================================================================
# Learning optimizer
# =============================================================================


class LearningOptimizer:
    """
    Q-learning style tracker of how well practice is working for a learner.

    Each attempt yields a reward averaging three terms:

        correctness = 1 if correct else -0.5
        time        = max(0, 1 - (time_spent - avg_time) / avg_time)
        retention   = retention_score - retention_rate  (0 without a score)

    The reward moves the progression's action value toward
    ``reward + DISCOUNT_FACTOR * max(q, reward)``, adapts the learner's
    learning rate to ``LEARNING_RATE * (1 + reward)`` and nudges the
    difficulty level by 10% in the direction of the reward's sign.
    """

    LEARNING_RATE = 0.1
    DISCOUNT_FACTOR = 0.95
    DIFFICULTY_STEP = 0.1
    MIN_DIFFICULTY = 0.1
    MAX_DIFFICULTY = 1.0
    INITIAL_DIFFICULTY = 0.5

    @staticmethod
    def reward(
        is_correct: bool,
        time_spent: float,
        average_time: float,
        retention_score: Optional[float] = None,
        retention_rate: float = 1.0,
    ) -> float:
        correctness = 1.0 if is_correct else -0.5
        # A learner with no history has no average yet
        baseline = average_time if average_time > 0 else DEFAULT_AVERAGE_TIME
        time_reward = max(0.0, 1.0 - (time_spent - baseline) / baseline)
        retention_reward = retention_score - retention_rate if retention_score else 0.0
        return (correctness + time_reward + retention_reward) / 3

    def update_learning_state(
        self,
        learner: Learner,
        progression: ProgressionRecord,
        is_correct: bool,
        time_spent: float,
        retention_score: Optional[float] = None,
    ) -> float:
        """
        Update learner statistics and the progression's action value.

        Returns:
            The reward signal for this attempt
        """
        reward = self.reward(
            is_correct,
            time_spent,
            learner.average_time,
            retention_score,
            learner.retention_rate,
        )

        q = progression.action_value
        progression.action_value = q + self.LEARNING_RATE * (
            reward + self.DISCOUNT_FACTOR * max(q, reward) - q
        )
        progression.reward_signal = reward

        total = learner.total_problems + 1
        learner.average_time = (learner.average_time * learner.total_problems + time_spent) / total
        if retention_score:
            learner.retention_rate = (learner.retention_rate + retention_score) / 2
        learner.total_problems = total
        if is_correct:
            learner.correct_solutions += 1
        learner.learning_rate = self.LEARNING_RATE * (1 + reward)

        if reward != 0:
            adjusted = learner.difficulty_level * (
                1 + self.DIFFICULTY_STEP * math.copysign(1.0, reward)
            )
            learner.difficulty_level = _clamp(adjusted, self.MIN_DIFFICULTY, self.MAX_DIFFICULTY)

        return reward

    def suggest_next_difficulty(self, learner: Learner) -> float:
        """
        Difficulty in [0.1, 1.0] to aim the next problem at.

        New learners start at 0.5; afterwards the difficulty level is scaled
        by how success, retention and learning rate compare with a 1.5
        baseline.
        """
        if learner.total_problems == 0:
            return self.INITIAL_DIFFICULTY

        success = learner.correct_solutions / learner.total_problems
        suggested = learner.difficulty_level * (
            1 + 0.1 * (success + learner.retention_rate + learner.learning_rate - 1.5)
        )
        return _clamp(suggested, self.MIN_DIFFICULTY, self.MAX_DIFFICULTY)
