"""
Unit tests for SessionScheduler.

Tests cover:
- Forced completion thresholds
- Session start: daily limit, resume, fallback tiers, generation on empty pool
- Concurrent starts resolving to one session; similarity pick leading the queue
- Submissions and skips advancing the queue, current problem only
- Background analysis marking wrong answers FAILED
- Stats, available counts, job lookups and daily reset
"""

import asyncio
import random
from datetime import timedelta

import pytest

from practice_core.enums.jobs import JobStatus
from practice_core.enums.practice import Difficulty, SessionProblemStatus, SessionStatus
from practice_core.models.base import utc_now
from practice_core.models.practice import (
    EvaluationResult,
    GeneratedProblem,
    PracticeSession,
    ProgressResult,
    SessionProblem,
)
from practice_core.services.cache import ResponseCache
from practice_core.services.errors import (
    DailyLimitReachedError,
    DataIntegrityError,
    ExcessiveSkippingError,
    GenerationTimeoutError,
    InvariantViolationError,
    JobNotFoundError,
    PoolExhaustedError,
    SessionNotFoundError,
    ValidationFailure,
)
from practice_core.services.jobs.analysis_queue import AnalysisQueue
from practice_core.services.jobs.generation_queue import GenerationQueue
from practice_core.services.learning.mastery_tracker import MasteryTracker
from practice_core.services.learning.problem_selector import ProblemSelector
from practice_core.services.learning.progress import ProgressService
from practice_core.services.learning.rating import RatingConfig, RatingEngine, rank_title
from practice_core.services.learning.session_scheduler import (
    SessionScheduler,
    should_force_complete,
    start_of_day,
)

LEARNER_ID = "learner-1"

GENERATED = GeneratedProblem.model_validate(
    {
        "title": "Two Sum",
        "difficulty": "EASY",
        "language": "python",
        "problem": "Return indices of two numbers adding up to target.",
        "startingCode": "def two_sum(nums, target):\n    pass",
        "solution": "def two_sum(nums, target):\n    ...",
        "concepts": ["hashing"],
    }
)


@pytest.fixture
def generation_queue(repository, mock_llm_client, fast_retry) -> GenerationQueue:
    return GenerationQueue(repository, mock_llm_client, retry_factory=fast_retry)


@pytest.fixture
def analysis_queue(repository, mock_llm_client, fast_retry) -> AnalysisQueue:
    progress = ProgressService(
        repository, RatingEngine(repository, RatingConfig()), MasteryTracker()
    )
    return AnalysisQueue(
        repository, mock_llm_client, progress, cache=ResponseCache(), retry_factory=fast_retry
    )


def _scheduler(repository, analysis_queue, generation_queue, **overrides) -> SessionScheduler:
    options = {"daily_limit": 50, "problems_per_session": 5, "generation_timeout": 5}
    options.update(overrides)
    return SessionScheduler(
        repository,
        ProblemSelector(repository, rng=random.Random(1234)),
        analysis_queue.progress_service,
        analysis_queue,
        generation_queue,
        **options,
    )


@pytest.fixture
def scheduler(repository, analysis_queue, generation_queue) -> SessionScheduler:
    return _scheduler(repository, analysis_queue, generation_queue)


async def _seed(repository, make_problem, count=10, **overrides):
    problems = [make_problem(**overrides) for _ in range(count)]
    await repository.create_problems(problems)
    return problems


# ============================================================================
# Forced completion
# ============================================================================


class TestShouldForceComplete:
    @pytest.mark.parametrize(
        "attempted,skipped,expected",
        [
            (2, 2, False),
            (3, 3, True),
            (5, 3, True),
            (3, 2, False),
            (10, 7, False),
            (10, 8, True),
            (0, 0, False),
        ],
    )
    def test_thresholds(self, attempted, skipped, expected):
        assert should_force_complete(attempted, skipped) is expected

    def test_start_of_day_is_utc_midnight(self):
        now = utc_now()
        midnight = start_of_day(now)

        assert midnight.hour == midnight.minute == midnight.second == 0
        assert midnight.date() == now.date()
        assert midnight <= now


# ============================================================================
# Starting sessions
# ============================================================================


class TestStartSession:
    @pytest.mark.asyncio
    async def test_new_learner_gets_full_easy_session(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem)

        view = await scheduler.start_session(LEARNER_ID)

        assert view.status == SessionStatus.ACTIVE
        assert view.difficulty == Difficulty.EASY
        assert view.total_problems == 5
        assert view.remaining_count == 5
        assert view.current_problem is not None
        assert view.resumed is False
        assert await repository.find_learner(LEARNER_ID) is not None

        session = await repository.find_session(view.session_id)
        assert [entry.order for entry in session.problems] == [0, 1, 2, 3, 4]
        assert len({entry.problem_id for entry in session.problems}) == 5

    @pytest.mark.asyncio
    async def test_active_session_is_resumed(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem)

        first = await scheduler.start_session(LEARNER_ID)
        second = await scheduler.start_session(LEARNER_ID)

        assert second.resumed is True
        assert second.session_id == first.session_id
        assert len(await repository.find_sessions(LEARNER_ID)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_starts_share_one_session(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem)

        first, second = await asyncio.gather(
            scheduler.start_session(LEARNER_ID), scheduler.start_session(LEARNER_ID)
        )

        assert first.session_id == second.session_id
        assert sorted([first.resumed, second.resumed]) == [False, True]
        active = await repository.find_sessions(LEARNER_ID, status=SessionStatus.ACTIVE)
        assert len(active) == 1

    @pytest.mark.asyncio
    async def test_similar_problem_leads_queue(self, scheduler, repository, make_problem):
        last = make_problem(embedding=[1.0, 0.0])
        near = make_problem(embedding=[0.9, 0.1])
        far = make_problem(embedding=[-1.0, 0.0])
        await repository.create_problems([last, near, far])
        await _seed(repository, make_problem, count=3)
        await scheduler.save_progress_batch(
            LEARNER_ID, [ProgressResult(problem_id=last.id, solved=False)]
        )

        view = await scheduler.start_session(LEARNER_ID)

        session = await repository.find_session(view.session_id)
        assert view.current_problem.id == near.id
        assert session.problems[0].problem_id == near.id
        assert last.id not in [entry.problem_id for entry in session.problems]

    @pytest.mark.asyncio
    async def test_falls_back_to_any_difficulty(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem, count=3, difficulty=Difficulty.MEDIUM)

        view = await scheduler.start_session(LEARNER_ID)

        assert view.difficulty == Difficulty.EASY
        assert view.total_problems == 3

    @pytest.mark.asyncio
    async def test_unattempted_problems_come_first(self, scheduler, repository, make_problem):
        problems = await _seed(repository, make_problem, count=6)
        attempted = problems[:4]
        await scheduler.save_progress_batch(
            LEARNER_ID, [ProgressResult(problem_id=p.id, solved=False) for p in attempted]
        )

        view = await scheduler.start_session(LEARNER_ID)

        session = await repository.find_session(view.session_id)
        served = [entry.problem_id for entry in session.problems]
        assert len(served) == 5
        assert set(served[:2]) == {problems[4].id, problems[5].id}
        assert set(served[2:]) <= {p.id for p in attempted}

    @pytest.mark.asyncio
    async def test_daily_limit_rejects_new_session(
        self, repository, analysis_queue, generation_queue, make_problem
    ):
        await _seed(repository, make_problem)
        scheduler = _scheduler(repository, analysis_queue, generation_queue, daily_limit=2)
        now = utc_now()
        await repository.create_session(
            PracticeSession(
                learner_id=LEARNER_ID,
                status=SessionStatus.COMPLETED,
                problems=[
                    SessionProblem(
                        problem_id="p-1",
                        order=0,
                        status=SessionProblemStatus.COMPLETED,
                        completed_at=now,
                    ),
                    SessionProblem(
                        problem_id="p-2",
                        order=1,
                        status=SessionProblemStatus.FAILED,
                        completed_at=now,
                    ),
                ],
            )
        )

        with pytest.raises(DailyLimitReachedError):
            await scheduler.start_session(LEARNER_ID)

    @pytest.mark.asyncio
    async def test_yesterdays_attempts_do_not_count(
        self, repository, analysis_queue, generation_queue, make_problem
    ):
        await _seed(repository, make_problem)
        scheduler = _scheduler(repository, analysis_queue, generation_queue, daily_limit=1)
        yesterday = start_of_day(utc_now()) - timedelta(hours=1)
        await repository.create_session(
            PracticeSession(
                learner_id=LEARNER_ID,
                status=SessionStatus.COMPLETED,
                problems=[
                    SessionProblem(
                        problem_id="p-1",
                        order=0,
                        status=SessionProblemStatus.COMPLETED,
                        completed_at=yesterday,
                    )
                ],
            )
        )

        view = await scheduler.start_session(LEARNER_ID)

        assert view.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_empty_pool_generates_then_starts(self, scheduler, repository, mock_llm_client):
        mock_llm_client.generate_problem.return_value = GENERATED

        view = await scheduler.start_session(LEARNER_ID)

        assert view.total_problems == 5
        assert mock_llm_client.generate_problem.await_count == 5
        assert await repository.count_problems(language="python") == 5

    @pytest.mark.asyncio
    async def test_generation_yielding_nothing_exhausts_pool(self, scheduler, mock_llm_client):
        mock_llm_client.generate_problem.side_effect = ValidationFailure("bad output")

        with pytest.raises(PoolExhaustedError) as exc_info:
            await scheduler.start_session(LEARNER_ID, language="python")

        assert "No python problems in database" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_slow_generation_times_out(
        self, repository, analysis_queue, generation_queue, mock_llm_client
    ):
        release = asyncio.Event()

        async def slow_generation(*args, **kwargs):
            await release.wait()
            return GENERATED

        mock_llm_client.generate_problem.side_effect = slow_generation
        scheduler = _scheduler(
            repository, analysis_queue, generation_queue, generation_timeout=0.01
        )

        with pytest.raises(GenerationTimeoutError) as exc_info:
            await scheduler.start_session(LEARNER_ID)

        assert exc_info.value.retryable is True
        release.set()
        await generation_queue.wait_idle()


# ============================================================================
# Serving, submitting and skipping
# ============================================================================


class TestSessionFlow:
    @pytest.mark.asyncio
    async def test_get_next_problem_records_use(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem)
        view = await scheduler.start_session(LEARNER_ID)

        problem = await scheduler.get_next_problem(view.session_id)

        stored = await repository.find_problem(problem.id)
        assert problem.id == view.current_problem.id
        assert stored.total_uses == 1
        assert stored.last_used is not None

    @pytest.mark.asyncio
    async def test_unknown_session_raises(self, scheduler):
        with pytest.raises(SessionNotFoundError):
            await scheduler.get_next_problem("missing")

    @pytest.mark.asyncio
    async def test_submit_advances_and_queues_analysis(
        self, scheduler, analysis_queue, repository, mock_llm_client, make_problem
    ):
        mock_llm_client.evaluate.return_value = EvaluationResult(success=True, feedback="Nice")
        await _seed(repository, make_problem)
        view = await scheduler.start_session(LEARNER_ID)
        session = await repository.find_session(view.session_id)
        first, second = session.problems[0].problem_id, session.problems[1].problem_id

        receipt = await scheduler.submit_solution(
            view.session_id, LEARNER_ID, first, "def solve(xs): return sum(xs)", time_spent=90
        )
        await analysis_queue.wait_idle()

        assert receipt.remaining_count == 4
        assert receipt.next_problem_id == second
        assert receipt.session_status == SessionStatus.ACTIVE
        assert scheduler.get_job_status(receipt.job_id).status == JobStatus.COMPLETED

        stored = await repository.find_session(view.session_id)
        assert stored.problems[0].status == SessionProblemStatus.COMPLETED
        assert stored.problems[0].time_spent == 90
        assert (await repository.find_progression(LEARNER_ID, first)).solved is True
        assert (await scheduler.get_next_problem(view.session_id)).id == second

    @pytest.mark.asyncio
    async def test_wrong_answer_is_marked_failed(
        self, scheduler, analysis_queue, repository, mock_llm_client, make_problem
    ):
        mock_llm_client.evaluate.return_value = EvaluationResult(
            success=False, feedback="Off by one"
        )
        await _seed(repository, make_problem)
        view = await scheduler.start_session(LEARNER_ID)

        await scheduler.submit_solution(
            view.session_id, LEARNER_ID, view.current_problem.id, "wrong", time_spent=30
        )
        await analysis_queue.wait_idle()

        stored = await repository.find_session(view.session_id)
        assert stored.problems[0].status == SessionProblemStatus.FAILED
        assert await scheduler.attempts_today(LEARNER_ID) == 1

    @pytest.mark.asyncio
    async def test_answering_twice_is_rejected(
        self, scheduler, analysis_queue, repository, mock_llm_client, make_problem
    ):
        mock_llm_client.evaluate.return_value = EvaluationResult(success=True, feedback="ok")
        await _seed(repository, make_problem)
        view = await scheduler.start_session(LEARNER_ID)
        problem_id = view.current_problem.id

        await scheduler.submit_solution(view.session_id, LEARNER_ID, problem_id, "a", 10)
        with pytest.raises(InvariantViolationError):
            await scheduler.skip_problem(view.session_id, problem_id)
        await analysis_queue.wait_idle()

    @pytest.mark.asyncio
    async def test_only_current_problem_can_be_answered(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem)
        view = await scheduler.start_session(LEARNER_ID)
        session = await repository.find_session(view.session_id)
        later = session.problems[1].problem_id

        with pytest.raises(InvariantViolationError) as exc_info:
            await scheduler.submit_solution(view.session_id, LEARNER_ID, later, "code", 10)
        with pytest.raises(InvariantViolationError):
            await scheduler.skip_problem(view.session_id, later)

        assert exc_info.value.details["current_problem_id"] == view.current_problem.id
        stored = await repository.find_session(view.session_id)
        assert all(entry.status == SessionProblemStatus.PENDING for entry in stored.problems)
        assert stored.remaining_count == 5

    @pytest.mark.asyncio
    async def test_other_learner_cannot_submit(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem)
        view = await scheduler.start_session(LEARNER_ID)

        with pytest.raises(DataIntegrityError):
            await scheduler.submit_solution(
                view.session_id, "someone-else", view.current_problem.id, "code", 10
            )

    @pytest.mark.asyncio
    async def test_finishing_last_problem_completes_session(
        self, scheduler, analysis_queue, repository, mock_llm_client, make_problem
    ):
        mock_llm_client.evaluate.return_value = EvaluationResult(success=True, feedback="ok")
        await _seed(repository, make_problem, count=2)
        view = await scheduler.start_session(LEARNER_ID)
        session = await repository.find_session(view.session_id)

        receipt = None
        for entry in session.problems:
            receipt = await scheduler.submit_solution(
                view.session_id, LEARNER_ID, entry.problem_id, "code", 20
            )
        await analysis_queue.wait_idle()

        assert receipt.session_status == SessionStatus.COMPLETED
        assert receipt.next_problem_id is None
        assert await scheduler.get_next_problem(view.session_id) is None

    @pytest.mark.asyncio
    async def test_skip_advances(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem)
        view = await scheduler.start_session(LEARNER_ID)
        session = await repository.find_session(view.session_id)

        receipt = await scheduler.skip_problem(view.session_id, session.problems[0].problem_id)

        stored = await repository.find_session(view.session_id)
        assert stored.problems[0].status == SessionProblemStatus.SKIPPED
        assert receipt.remaining_count == 4
        assert receipt.next_problem_id == session.problems[1].problem_id

    @pytest.mark.asyncio
    async def test_third_skip_ends_session(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem)
        view = await scheduler.start_session(LEARNER_ID)
        session = await repository.find_session(view.session_id)
        ids = [entry.problem_id for entry in session.problems]

        await scheduler.skip_problem(view.session_id, ids[0])
        await scheduler.skip_problem(view.session_id, ids[1])
        with pytest.raises(ExcessiveSkippingError) as exc_info:
            await scheduler.skip_problem(view.session_id, ids[2])

        assert exc_info.value.details["skipped"] == 3
        stored = await repository.find_session(view.session_id)
        assert stored.status == SessionStatus.COMPLETED
        assert stored.remaining_count == 0
        with pytest.raises(InvariantViolationError):
            await scheduler.skip_problem(view.session_id, ids[3])


# ============================================================================
# Stats and jobs
# ============================================================================


class TestStatsAndJobs:
    @pytest.mark.asyncio
    async def test_session_stats_for_active_session(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem)
        view = await scheduler.start_session(LEARNER_ID)

        stats = await scheduler.get_session_stats(LEARNER_ID)

        assert stats.active_session_id == view.session_id
        assert stats.session_total == 5
        assert stats.session_completed == 0
        assert stats.rank == rank_title(stats.rating)
        assert stats.remaining_today == 50
        assert stats.next_level_xp == 1000
        assert stats.suggested_difficulty == 0.5

    @pytest.mark.asyncio
    async def test_available_counts_exclude_attempted(self, scheduler, repository, make_problem):
        easy = await _seed(repository, make_problem, count=3)
        await _seed(repository, make_problem, count=2, difficulty=Difficulty.MEDIUM)
        await scheduler.save_progress_batch(
            LEARNER_ID, [ProgressResult(problem_id=easy[0].id, solved=True)]
        )

        counts = await scheduler.get_available_counts(LEARNER_ID, "python")

        assert counts == {Difficulty.EASY: 2, Difficulty.MEDIUM: 2, Difficulty.HARD: 0}

    def test_unknown_job_raises(self, scheduler):
        with pytest.raises(JobNotFoundError):
            scheduler.get_job_status("nope")

    @pytest.mark.asyncio
    async def test_generation_jobs_are_visible(self, scheduler, mock_llm_client):
        mock_llm_client.generate_problem.return_value = GENERATED

        job_id = await scheduler.generation_queue.enqueue("python", Difficulty.EASY, 1)
        await scheduler.generation_queue.wait_idle()

        assert scheduler.get_job_status(job_id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_reset_daily_progress_closes_sessions(self, scheduler, repository, make_problem):
        await _seed(repository, make_problem)
        view = await scheduler.start_session(LEARNER_ID)

        closed = await scheduler.reset_daily_progress(LEARNER_ID)

        stored = await repository.find_session(view.session_id)
        assert closed == 1
        assert stored.status == SessionStatus.COMPLETED
        assert all(e.status == SessionProblemStatus.SKIPPED for e in stored.problems)
        assert await scheduler.get_next_problem(view.session_id) is None
