"""
Unit tests for ProblemSelector.

Tests cover:
- Exploration rate decay and floor
- Target difficulty thresholds
- Expected value components
- Epsilon-greedy choice (exploit, explore, ties)
- Similarity fallback and the need-generation signal
"""

import math
import random
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from practice_core.enums.practice import Difficulty
from practice_core.models.practice import Learner, ProgressionRecord
from practice_core.services.learning.problem_selector import (
    LearnerState,
    NeedGenerationSignal,
    ProblemSelector,
    concept_value,
    difficulty_match,
    epsilon_greedy,
    exploration_rate,
    target_difficulty,
    time_decay,
)

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _fixed_rng(roll: float) -> MagicMock:
    """RNG whose random() always returns ``roll`` and whose choice() picks the last item."""
    rng = MagicMock(spec=random.Random)
    rng.random.return_value = roll
    rng.choice.side_effect = lambda items: items[-1]
    return rng


# ============================================================================
# Exploration and difficulty
# ============================================================================


class TestExplorationRate:
    def test_starts_at_half(self):
        assert exploration_rate(0) == 0.5

    def test_never_below_floor(self):
        assert exploration_rate(10_000) == 0.1

    def test_non_increasing(self):
        rates = [exploration_rate(n) for n in range(0, 600, 25)]
        assert all(a >= b for a, b in zip(rates, rates[1:]))
        assert all(0.0 <= r <= 0.5 for r in rates)


class TestTargetDifficulty:
    def test_no_history_is_easy(self):
        assert target_difficulty([]) == Difficulty.EASY

    def test_three_of_ten_is_easy(self):
        assert target_difficulty([1.0] * 3 + [0.0] * 7) == Difficulty.EASY

    def test_half_is_medium(self):
        assert target_difficulty([1.0] * 5 + [0.0] * 5) == Difficulty.MEDIUM

    def test_seven_of_ten_is_hard(self):
        assert target_difficulty([1.0] * 7 + [0.0] * 3) == Difficulty.HARD

    def test_only_most_recent_window_counts(self):
        scores = [0.0] * 10 + [1.0] * 10
        assert target_difficulty(scores, window=10) == Difficulty.EASY


# ============================================================================
# Expected value components
# ============================================================================


class TestExpectedValueComponents:
    def test_difficulty_match_peaks_at_skill(self, make_problem):
        problem = make_problem(difficulty=Difficulty.MEDIUM)

        assert difficulty_match(problem, 2.0) == 1.0
        assert difficulty_match(problem, 1.0) == pytest.approx(math.exp(-0.5))

    def test_concept_value_without_concepts_is_one(self, make_problem):
        assert concept_value(make_problem(concepts=[]), {"loops": 0.9}) == 1.0

    def test_concept_value_is_mean_of_unmastered(self, make_problem):
        problem = make_problem(concepts=["loops", "recursion"])
        assert concept_value(problem, {"loops": 0.5}) == pytest.approx(0.75)

    def test_time_decay_unattempted_is_zero(self):
        assert time_decay(None, NOW) == 0.0

    def test_time_decay_after_a_week(self):
        assert time_decay(NOW - timedelta(days=7), NOW) == pytest.approx(math.exp(-1))


# ============================================================================
# Epsilon-greedy
# ============================================================================


class TestEpsilonGreedy:
    def test_exploits_best_expected_value(self, make_problem):
        easy = make_problem(difficulty=Difficulty.EASY)
        hard = make_problem(difficulty=Difficulty.HARD)
        state = LearnerState(learner_id="l1", domain="python", skill_level=1.0)

        pick = epsilon_greedy([hard, easy], state, rng=_fixed_rng(0.99), now=NOW)

        assert pick is easy

    def test_explores_below_epsilon(self, make_problem):
        first, second = make_problem(), make_problem()
        state = LearnerState(learner_id="l1", domain="python")

        pick = epsilon_greedy([first, second], state, rng=_fixed_rng(0.0), now=NOW)

        assert pick is second

    def test_ties_go_to_first_candidate(self, make_problem):
        first, second = make_problem(), make_problem()
        state = LearnerState(learner_id="l1", domain="python")

        pick = epsilon_greedy([first, second], state, rng=_fixed_rng(0.99), now=NOW)

        assert pick is first

    def test_requires_candidates(self):
        state = LearnerState(learner_id="l1", domain="python")
        with pytest.raises(ValueError):
            epsilon_greedy([], state)


# ============================================================================
# ProblemSelector
# ============================================================================


class TestProblemSelector:
    @pytest.mark.asyncio
    async def test_learner_state_from_history(self, repository, make_problem):
        solved, failed = make_problem(), make_problem()
        await repository.create_problems([solved, failed])
        await repository.upsert_progression(
            ProgressionRecord(
                learner_id="l1",
                problem_id=solved.id,
                attempts=1,
                solved=True,
                last_attempt=NOW,
            )
        )
        await repository.upsert_progression(
            ProgressionRecord(
                learner_id="l1",
                problem_id=failed.id,
                attempts=2,
                solved=False,
                last_attempt=NOW - timedelta(days=1),
            )
        )
        selector = ProblemSelector(repository)

        state = await selector.learner_state(Learner(id="l1"), "python")

        assert state.total_attempts == 3
        assert state.recent_scores == [1.0, 0.0]
        assert state.attempted_ids == {solved.id, failed.id}
        assert state.last_problem.id == solved.id

    @pytest.mark.asyncio
    async def test_find_similar_returns_nearest_unattempted(self, repository, make_problem):
        last = make_problem(embedding=[1.0, 0.0])
        near = make_problem(embedding=[0.9, 0.1])
        far = make_problem(embedding=[-1.0, 0.0])
        await repository.create_problems([last, near, far])
        state = LearnerState(
            learner_id="l1",
            domain="python",
            last_attempts={last.id: NOW},
            last_problem=last,
        )
        selector = ProblemSelector(repository)

        similar = await selector.find_similar(state, "python", Difficulty.EASY)

        assert similar.id == near.id

    @pytest.mark.asyncio
    async def test_find_similar_without_embedding_is_none(self, repository, make_problem):
        state = LearnerState(learner_id="l1", domain="python", last_problem=make_problem())
        selector = ProblemSelector(repository)

        assert await selector.find_similar(state, "python", Difficulty.EASY) is None

    @pytest.mark.asyncio
    async def test_choose_next_signals_generation_when_empty(self, repository):
        state = LearnerState(learner_id="l1", domain="python")
        selector = ProblemSelector(repository)

        with pytest.raises(NeedGenerationSignal) as exc_info:
            await selector.choose_next(state, [], "python", Difficulty.MEDIUM)

        assert exc_info.value.difficulty == Difficulty.MEDIUM

    def test_order_candidates_without_replacement(self, make_problem):
        candidates = [make_problem() for _ in range(4)]
        state = LearnerState(learner_id="l1", domain="python")
        selector = ProblemSelector(MagicMock(), rng=random.Random(7))

        ordered = selector.order_candidates(candidates, state, limit=3)

        assert len(ordered) == 3
        assert len({p.id for p in ordered}) == 3
