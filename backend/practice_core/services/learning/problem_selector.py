"""
Problem Selector

Chooses the next problem for a learner. Two strategies are tried in order:

1. Similarity: if the learner's most recent problem has an embedding, serve
   the nearest unattempted problem of the target difficulty.
2. Epsilon-greedy: with probability ``exploration_rate`` pick a random
   candidate; otherwise pick the candidate with the highest expected value

       EV = 0.4 * difficulty_match + 0.4 * concept_value + 0.2 * (1 - time_decay)

   where difficulty_match = exp(-(d - skill)^2 / 2), concept_value is the
   mean of (1 - mastery) over the problem's concepts and
   time_decay = exp(-days_since_last_attempt / 7).

Exploration decays with experience, max(0.1, 0.5 * 0.995^attempts), so a
10% exploration floor remains forever. The target difficulty follows the
average score of the last 10 attempts.

The formulas are module-level pure functions; ProblemSelector only gathers
the learner state from the repository and applies them.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from practice_core.config.settings import settings
from practice_core.enums.practice import Difficulty
from practice_core.models.base import utc_now
from practice_core.models.practice import Learner, Problem
from practice_core.repositories.base import PracticeRepository

logger = logging.getLogger(__name__)

INITIAL_EXPLORATION_RATE = 0.5
EXPLORATION_DECAY = 0.995
MIN_EXPLORATION_RATE = 0.1

DIFFICULTY_WEIGHT = 0.4
CONCEPT_WEIGHT = 0.4
RECENCY_WEIGHT = 0.2
RECENCY_HALF_DAYS = 7.0

EASY_THRESHOLD = 0.3
MEDIUM_THRESHOLD = 0.7


class NeedGenerationSignal(Exception):
    """The candidate pool is empty; problems must be generated first."""

    def __init__(self, language: str, difficulty: Difficulty):
        super().__init__(f"No candidates for {language}/{difficulty.value}")
        self.language = language
        self.difficulty = difficulty


# =============================================================================
# Learner state
# =============================================================================


@dataclass
class LearnerState:
    """Reinforcement-learning view of a learner within one domain."""

    learner_id: str
    domain: str
    skill_level: float = 1.0
    concept_mastery: dict[str, float] = field(default_factory=dict)
    total_attempts: int = 0
    recent_scores: list[float] = field(default_factory=list)
    last_attempts: dict[str, datetime] = field(default_factory=dict)
    last_problem: Optional[Problem] = None

    @property
    def exploration_rate(self) -> float:
        return exploration_rate(self.total_attempts)

    @property
    def attempted_ids(self) -> set[str]:
        return set(self.last_attempts)


# =============================================================================
# Pure formulas
# =============================================================================


def exploration_rate(total_attempts: int) -> float:
    """Epsilon for the given experience; non-increasing, floored at 0.1."""
    return max(
        MIN_EXPLORATION_RATE,
        INITIAL_EXPLORATION_RATE * EXPLORATION_DECAY ** max(0, total_attempts),
    )


def target_difficulty(recent_scores: Sequence[float], window: Optional[int] = None) -> Difficulty:
    """
    Difficulty to serve next from rolling performance.

    An average of at most 0.3 over the last ``window`` scores selects EASY,
    below 0.7 MEDIUM, anything higher HARD. No history selects EASY.
    """
    window = window or settings.SELECTOR_HISTORY_WINDOW
    scores = list(recent_scores)[:window]
    if not scores:
        return Difficulty.EASY

    average = sum(scores) / len(scores)
    if average <= EASY_THRESHOLD:
        return Difficulty.EASY
    if average < MEDIUM_THRESHOLD:
        return Difficulty.MEDIUM
    return Difficulty.HARD


def difficulty_match(problem: Problem, skill_level: float) -> float:
    return math.exp(-((problem.difficulty.numeric - skill_level) ** 2) / 2)


def concept_value(problem: Problem, mastery: dict[str, float]) -> float:
    if not problem.concepts:
        return 1.0
    return sum(1.0 - mastery.get(c, 0.0) for c in problem.concepts) / len(problem.concepts)


def time_decay(last_attempt: Optional[datetime], now: datetime) -> float:
    if last_attempt is None:
        return 0.0
    days = max(0.0, (now - last_attempt).total_seconds() / 86400)
    return math.exp(-days / RECENCY_HALF_DAYS)


def expected_value(problem: Problem, state: LearnerState, now: Optional[datetime] = None) -> float:
    now = now or utc_now()
    return (
        DIFFICULTY_WEIGHT * difficulty_match(problem, state.skill_level)
        + CONCEPT_WEIGHT * concept_value(problem, state.concept_mastery)
        + RECENCY_WEIGHT * (1.0 - time_decay(state.last_attempts.get(problem.id), now))
    )


def epsilon_greedy(
    candidates: Sequence[Problem],
    state: LearnerState,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> Problem:
    """
    Pick one candidate: random with probability epsilon, else best EV.

    Ties in expected value go to the earliest candidate.
    """
    if not candidates:
        raise ValueError("epsilon_greedy needs at least one candidate")
    rng = rng or random

    if rng.random() < state.exploration_rate:
        return rng.choice(list(candidates))

    now = now or utc_now()
    best = candidates[0]
    best_value = expected_value(best, state, now)
    for candidate in candidates[1:]:
        value = expected_value(candidate, state, now)
        if value > best_value:
            best, best_value = candidate, value
    return best


# =============================================================================
# Selector service
# =============================================================================


class ProblemSelector:
    """Selects problems for a learner using repository-backed state."""

    def __init__(
        self,
        repository: PracticeRepository,
        rng: Optional[random.Random] = None,
    ):
        self.repository = repository
        self.rng = rng or random.Random()

    async def learner_state(self, learner: Learner, domain: str) -> LearnerState:
        """Assemble the learner's RL state from progression history."""
        progressions = await self.repository.find_progressions(learner.id)

        last_attempts = {
            p.problem_id: p.last_attempt for p in progressions if p.last_attempt is not None
        }
        recent_scores = [1.0 if p.solved else 0.0 for p in progressions if p.attempts > 0][
            : settings.SELECTOR_HISTORY_WINDOW
        ]

        last_problem = None
        if progressions and progressions[0].last_attempt is not None:
            last_problem = await self.repository.find_problem(progressions[0].problem_id)

        return LearnerState(
            learner_id=learner.id,
            domain=domain,
            skill_level=learner.skill_for(domain),
            concept_mastery=dict(learner.concept_mastery.get(domain, {})),
            total_attempts=sum(p.attempts for p in progressions),
            recent_scores=recent_scores,
            last_attempts=last_attempts,
            last_problem=last_problem,
        )

    def select_target_difficulty(self, state: LearnerState) -> Difficulty:
        return target_difficulty(state.recent_scores)

    async def find_similar(
        self,
        state: LearnerState,
        language: str,
        difficulty: Difficulty,
        exclude_ids: Optional[set[str]] = None,
    ) -> Optional[Problem]:
        """Nearest unattempted problem to the learner's last one, if any."""
        last = state.last_problem
        if last is None or not last.embedding:
            return None

        excluded = state.attempted_ids | {last.id} | set(exclude_ids or ())
        matches = await self.repository.nearest_problems(
            last.embedding,
            language=language,
            difficulty=difficulty,
            exclude_ids=excluded,
            limit=1,
        )
        if not matches:
            return None

        problem, distance = matches[0]
        logger.debug(
            f"Similarity pick for learner {state.learner_id}: {problem.id} (distance={distance:.4f})"
        )
        return problem

    async def choose_next(
        self,
        state: LearnerState,
        candidates: Sequence[Problem],
        language: str,
        difficulty: Difficulty,
        exclude_ids: Optional[set[str]] = None,
    ) -> Problem:
        """
        Pick the next problem: similarity first, then epsilon-greedy.

        Raises:
            NeedGenerationSignal: If there is nothing to choose from
        """
        similar = await self.find_similar(state, language, difficulty, exclude_ids)
        if similar is not None:
            return similar

        pool = [c for c in candidates if c.id not in (exclude_ids or set())]
        if not pool:
            raise NeedGenerationSignal(language, difficulty)
        return epsilon_greedy(pool, state, rng=self.rng)

    def order_candidates(
        self,
        candidates: Sequence[Problem],
        state: LearnerState,
        limit: int,
    ) -> list[Problem]:
        """Rank candidates by repeated epsilon-greedy picks without replacement."""
        remaining = list(candidates)
        ordered: list[Problem] = []
        now = utc_now()
        while remaining and len(ordered) < limit:
            pick = epsilon_greedy(remaining, state, rng=self.rng, now=now)
            ordered.append(pick)
            remaining = [c for c in remaining if c.id != pick.id]
        return ordered
