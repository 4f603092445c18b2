"""
Mastery Tracker

SM-2 style spaced repetition scheduling per learner/problem pair, plus
per-concept mastery vectors that drift toward recent performance and decay
when a concept is not practiced.

SM-2 variant (performance score p in 0..5):

    ease'     = max(1.3, ease + (0.1 - (5 - p) * (0.08 + (5 - p) * 0.02)))
    interval' = 1                           if p < 3   (forgot: reset)
              = 1                           if interval == 0
              = 6                           if interval == 1
              = round(interval * ease')     otherwise, capped at 365
    next_review = now + interval' days

Usage:
    from practice_core.services.learning.mastery_tracker import next_review

    metrics = next_review(progression.metrics, performance_score=4)
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from practice_core.config.settings import settings
from practice_core.models.base import utc_now
from practice_core.models.practice import (
    Learner,
    Problem,
    ProgressionRecord,
    SpacedRepetitionMetrics,
)

MIN_EASE_FACTOR = 1.3
MAX_INTERVAL_DAYS = 365


def next_review(
    metrics: SpacedRepetitionMetrics,
    performance_score: int,
    now: Optional[datetime] = None,
) -> SpacedRepetitionMetrics:
    """
    Compute the next spaced repetition state.

    Args:
        metrics: Current scheduling state
        performance_score: Quality of recall, 0 (blackout) to 5 (perfect)
        now: Reference time (defaults to current UTC time)

    Returns:
        New SpacedRepetitionMetrics; the input is not modified
    """
    if not 0 <= performance_score <= 5:
        raise ValueError(f"performance_score must be within 0..5, got {performance_score}")

    now = now or utc_now()
    q = 5 - performance_score
    ease = max(MIN_EASE_FACTOR, metrics.ease_factor + (0.1 - q * (0.08 + q * 0.02)))

    if performance_score < 3:
        interval = 1
    elif metrics.interval == 0:
        interval = 1
    elif metrics.interval == 1:
        interval = 6
    else:
        interval = min(MAX_INTERVAL_DAYS, round(metrics.interval * ease))

    return SpacedRepetitionMetrics(
        ease_factor=ease,
        interval=interval,
        next_review=now + timedelta(days=interval),
    )


def performance_score(is_correct: bool, time_spent: float, average_time: float) -> int:
    """
    Map an evaluated attempt onto the 0..5 SM-2 quality scale.

    Incorrect answers score 1 so the interval resets; correct answers score
    3-5 depending on speed relative to the problem's average time.
    """
    if not is_correct:
        return 1
    if average_time <= 0:
        return 4
    if time_spent <= average_time / 2:
        return 5
    if time_spent <= average_time:
        return 4
    return 3


def decay_concept_mastery(
    mastery: dict[str, float],
    concepts: Iterable[str],
    performance_score: int,
    learning_rate: Optional[float] = None,
    decay: Optional[float] = None,
) -> dict[str, float]:
    """
    Update a concept mastery vector after one attempt.

    Concepts exercised by the attempt move toward performance/5; every other
    known concept is multiplied by the decay factor, so mastery of concepts
    that are not practiced fades over time.

    Returns:
        A new mastery dict with values in [0, 1]
    """
    rate = settings.MASTERY_LEARNING_RATE if learning_rate is None else learning_rate
    factor = settings.MASTERY_DECAY if decay is None else decay
    target = performance_score / 5.0
    touched = set(concepts)

    updated = {}
    for concept, value in mastery.items():
        if concept not in touched:
            updated[concept] = max(0.0, min(1.0, value * factor))
    for concept in touched:
        current = mastery.get(concept, 0.0)
        updated[concept] = max(0.0, min(1.0, current + rate * (target - current)))
    return updated


class MasteryTracker:
    """Applies spaced repetition and concept mastery updates for one attempt."""

    def apply_attempt(
        self,
        progression: ProgressionRecord,
        learner: Learner,
        problem: Problem,
        is_correct: bool,
        time_spent: float,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Update the progression's schedule and the learner's concept mastery.

        Both models are mutated in place.

        Returns:
            The performance score (0..5) used for the update
        """
        score = performance_score(is_correct, time_spent, problem.average_time)
        progression.metrics = next_review(progression.metrics, score, now=now)

        domain = problem.language
        learner.concept_mastery[domain] = decay_concept_mastery(
            learner.mastery_for(domain), problem.concepts, score
        )
        return score

    @staticmethod
    def retention_score(progression: ProgressionRecord, now: Optional[datetime] = None) -> float:
        """
        How well the learner is keeping up with the review schedule.

        1.0 when the problem is reviewed on or before its due date, falling
        toward 0 as the review becomes overdue (relative to the interval).
        """
        metrics = progression.metrics
        if metrics.next_review is None or metrics.interval <= 0:
            return 1.0
        now = now or utc_now()
        overdue_days = (now - metrics.next_review).total_seconds() / 86400
        if overdue_days <= 0:
            return 1.0
        return max(0.0, 1.0 - overdue_days / metrics.interval)
