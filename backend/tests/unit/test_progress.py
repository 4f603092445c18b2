"""
Unit tests for ProgressService and its helpers.

Tests cover:
- XP, levels and streaks
- Adaptive difficulty adjustment
- apply_evaluation: all effects in one transaction, FAILED marking, rollback
- save_batch: all-or-nothing
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from practice_core.enums.practice import Difficulty, SessionProblemStatus
from practice_core.models.practice import (
    EvaluationResult,
    Learner,
    PracticeSession,
    ProgressResult,
    SessionProblem,
)
from practice_core.services.errors import LearnerNotFoundError, ProblemNotFoundError
from practice_core.services.learning.mastery_tracker import MasteryTracker
from practice_core.services.learning.progress import (
    ProgressService,
    adjust_adaptive_difficulty,
    apply_xp,
    calculate_xp,
    next_level_xp,
    next_streak,
)
from practice_core.services.learning.rating import RatingConfig, RatingEngine

TODAY = date(2024, 5, 1)


@pytest.fixture
def service(repository) -> ProgressService:
    return ProgressService(repository, RatingEngine(repository, RatingConfig()), MasteryTracker())


async def _seed(repository, make_problem, **problem_overrides):
    learner = Learner(id="learner-1")
    problem = make_problem(**problem_overrides)
    await repository.create_learner(learner)
    await repository.create_problems([problem])
    return learner, problem


# ============================================================================
# Pure helpers
# ============================================================================


class TestExperience:
    def test_fast_correct_answer_earns_bonus(self):
        assert calculate_xp(Difficulty.EASY, True, 100) == 16

    def test_slow_correct_answer_earns_base(self):
        assert calculate_xp(Difficulty.MEDIUM, True, 300) == 20

    def test_wrong_answer_earns_tenth(self):
        assert calculate_xp(Difficulty.HARD, False, 10) == 3

    def test_level_thresholds_double(self):
        assert next_level_xp(1) == 1000
        assert next_level_xp(3) == 4000

    def test_apply_xp_levels_up(self):
        learner = Learner(xp=990)

        assert apply_xp(learner, 20) is True
        assert learner.level == 2
        assert apply_xp(learner, 10) is False


class TestStreak:
    def test_first_practice(self):
        assert next_streak(0, None, TODAY) == 1

    def test_consecutive_day_increments(self):
        yesterday = datetime(2024, 4, 30, 20, tzinfo=timezone.utc)
        assert next_streak(4, yesterday, TODAY) == 5

    def test_same_day_keeps_streak(self):
        earlier = datetime(2024, 5, 1, 8, tzinfo=timezone.utc)
        assert next_streak(4, earlier, TODAY) == 4

    def test_gap_resets(self):
        long_ago = datetime(2024, 4, 20, tzinfo=timezone.utc)
        assert next_streak(9, long_ago, TODAY) == 1


class TestAdaptiveDifficulty:
    def test_strong_performance_raises_difficulty(self):
        assert adjust_adaptive_difficulty(1.0, 1.0) == pytest.approx(1.04)

    def test_clamped_to_range(self):
        assert adjust_adaptive_difficulty(2.0, 1.0) == 2.0
        assert adjust_adaptive_difficulty(0.5, 0.0) == 0.5


# ============================================================================
# apply_evaluation
# ============================================================================


class TestApplyEvaluation:
    @pytest.mark.asyncio
    async def test_correct_answer_updates_everything(self, service, repository, make_problem):
        _, problem = await _seed(repository, make_problem)

        outcome = await service.apply_evaluation(
            "learner-1",
            problem.id,
            EvaluationResult(success=True, feedback="Well done"),
            solution="def solve(xs): return sum(xs)",
            time_spent=100,
        )

        learner = await repository.find_learner("learner-1")
        progression = await repository.find_progression("learner-1", problem.id)
        assert outcome.is_correct is True
        assert outcome.xp_gained == 16
        assert learner.xp == 16
        assert learner.streak == 1
        assert learner.rating == outcome.new_rating
        assert learner.concept_mastery["python"]["loops"] > 0
        assert progression.attempts == 1
        assert progression.solved is True
        assert progression.consecutive_correct == 1
        assert progression.last_feedback == "Well done"
        assert len(await repository.find_rating_history("learner-1")) == 1

    @pytest.mark.asyncio
    async def test_wrong_answer_resets_consecutive_and_marks_failed(
        self, service, repository, make_problem
    ):
        _, problem = await _seed(repository, make_problem)
        session = PracticeSession(
            learner_id="learner-1",
            problems=[
                SessionProblem(
                    problem_id=problem.id, order=0, status=SessionProblemStatus.COMPLETED
                )
            ],
        )
        await repository.create_session(session)

        outcome = await service.apply_evaluation(
            "learner-1",
            problem.id,
            EvaluationResult(success=False, feedback="Off by one"),
            time_spent=200,
            session_id=session.id,
        )

        stored = await repository.find_session(session.id)
        progression = await repository.find_progression("learner-1", problem.id)
        assert outcome.is_correct is False
        assert outcome.performance_score == 1
        assert progression.consecutive_correct == 0
        assert stored.problems[0].status == SessionProblemStatus.FAILED

    @pytest.mark.asyncio
    async def test_failure_rolls_back_all_writes(self, service, repository, make_problem):
        _, problem = await _seed(repository, make_problem)
        repository.update_problem = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(RuntimeError):
            await service.apply_evaluation(
                "learner-1", problem.id, EvaluationResult(success=True, feedback="ok")
            )

        learner = await repository.find_learner("learner-1")
        assert learner.xp == 0
        assert learner.rating == 1000
        assert await repository.find_progression("learner-1", problem.id) is None
        assert await repository.find_rating_history("learner-1") == []

    @pytest.mark.asyncio
    async def test_missing_learner_raises(self, service, repository, make_problem):
        problem = make_problem()
        await repository.create_problems([problem])

        with pytest.raises(LearnerNotFoundError):
            await service.apply_evaluation(
                "ghost", problem.id, EvaluationResult(success=True, feedback="ok")
            )

    @pytest.mark.asyncio
    async def test_problem_statistics_follow_outcome(self, service, repository, make_problem):
        _, problem = await _seed(repository, make_problem, total_uses=1, success_rate=0.0)

        await service.apply_evaluation(
            "learner-1", problem.id, EvaluationResult(success=True, feedback="ok"), time_spent=60
        )

        stored = await repository.find_problem(problem.id)
        assert stored.success_rate == pytest.approx(1.0)
        assert stored.average_time == pytest.approx(60.0)
        assert stored.adaptive_difficulty > 1.0

    @pytest.mark.asyncio
    async def test_fast_wrong_answers_never_raise_skill(self, service, repository, make_problem):
        learner, problem = await _seed(repository, make_problem)
        learner.skill_levels["python"] = 2.0
        await repository.update_learner(learner)

        skills = []
        for _ in range(5):
            await service.apply_evaluation(
                "learner-1",
                problem.id,
                EvaluationResult(success=False, feedback="Wrong"),
                time_spent=30,
            )
            skills.append((await repository.find_learner("learner-1")).skill_levels["python"])

        assert skills == sorted(skills, reverse=True)
        assert skills[0] == pytest.approx(1.8)
        assert skills[-1] == pytest.approx(2.0 * 0.9**5)

    @pytest.mark.asyncio
    async def test_correct_answer_raises_skill(self, service, repository, make_problem):
        _, problem = await _seed(repository, make_problem)

        await service.apply_evaluation(
            "learner-1", problem.id, EvaluationResult(success=True, feedback="ok"), time_spent=600
        )

        learner = await repository.find_learner("learner-1")
        assert learner.skill_levels["python"] == pytest.approx(1.1)


# ============================================================================
# save_batch
# ============================================================================


class TestSaveBatch:
    @pytest.mark.asyncio
    async def test_saves_every_row(self, service, repository, make_problem):
        first, second = make_problem(), make_problem()
        await repository.create_problems([first, second])

        saved = await service.save_batch(
            "learner-1",
            [
                ProgressResult(problem_id=first.id, solved=True, time_spent=30),
                ProgressResult(problem_id=second.id, solved=False, time_spent=90),
            ],
        )

        assert saved == 2
        assert (await repository.find_progression("learner-1", first.id)).solved is True
        assert (await repository.find_progression("learner-1", second.id)).solved is False

    @pytest.mark.asyncio
    async def test_missing_problem_writes_nothing(self, service, repository, make_problem):
        problem = make_problem()
        await repository.create_problems([problem])

        with pytest.raises(ProblemNotFoundError):
            await service.save_batch(
                "learner-1",
                [
                    ProgressResult(problem_id=problem.id, solved=True),
                    ProgressResult(problem_id="missing", solved=True),
                ],
            )

        assert await repository.find_progression("learner-1", problem.id) is None
