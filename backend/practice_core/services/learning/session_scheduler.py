"""
Session Scheduler

Orchestrates bounded practice sessions and is the entry point callers use.

Session lifecycle:
    start_session
      ├── reject when today's attempts reached the daily limit
      ├── resume an ACTIVE session that still has PENDING work
      └── otherwise build a queue of PROBLEMS_PER_SESSION problems:
            1. target difficulty, unattempted
            2. one difficulty easier, unattempted
            3. any difficulty, unattempted
            4. already attempted (last resort)
          An empty queue triggers generation (bounded wait), then one
          rebuild; still empty is a hard failure.

    submit_solution / skip_problem
      mark the current entry (first PENDING by order) COMPLETED / SKIPPED
      and advance; answering any other entry is rejected. Submissions are
      evaluated in the background by the AnalysisQueue, which flips the
      entry to FAILED on a wrong answer.

    A session is force-completed when the learner skips 3 problems, or when
    at least 3 problems were attempted and more than 70% were skipped.

Usage:
    scheduler = SessionScheduler(repository, selector, progress_service,
                                 analysis_queue, generation_queue)
    view = await scheduler.start_session(learner_id, language="python")
    problem = await scheduler.get_next_problem(view.session_id)
    receipt = await scheduler.submit_solution(
        view.session_id, learner_id, problem.id, code, time_spent=120
    )
    job = scheduler.get_job_status(receipt.job_id)
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone
from typing import Optional

from practice_core.config.settings import settings
from practice_core.enums.practice import (
    Difficulty,
    SessionProblemStatus,
    SessionStatus,
)
from practice_core.models.base import utc_now
from practice_core.models.jobs import JobState
from practice_core.models.practice import (
    Learner,
    PracticeSession,
    Problem,
    ProgressResult,
    SessionProblem,
    SessionStats,
    SessionView,
    SubmissionReceipt,
)
from practice_core.repositories.base import PracticeRepository
from practice_core.services.errors import (
    DailyLimitReachedError,
    DataIntegrityError,
    ExcessiveSkippingError,
    InvariantViolationError,
    JobNotFoundError,
    PoolExhaustedError,
    ProblemNotFoundError,
    SessionNotFoundError,
)
from practice_core.services.jobs.analysis_queue import AnalysisQueue
from practice_core.services.jobs.generation_queue import GenerationQueue
from practice_core.services.learning.problem_selector import (
    LearnerState,
    NeedGenerationSignal,
    ProblemSelector,
)
from practice_core.services.learning.progress import ProgressService, next_level_xp
from practice_core.services.learning.rating import rank_title

logger = logging.getLogger(__name__)

MAX_SKIPS = 3
MIN_ATTEMPTS_FOR_SKIP_RATE = 3
MAX_SKIP_RATE = 0.7


def should_force_complete(attempted: int, skipped: int) -> bool:
    """Whether a session has been skipped through and must end now."""
    if skipped == MAX_SKIPS:
        return True
    return attempted >= MIN_ATTEMPTS_FOR_SKIP_RATE and skipped / attempted > MAX_SKIP_RATE


def start_of_day(now: datetime) -> datetime:
    return datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)


class SessionScheduler:
    """Caller-facing practice API: sessions, submissions, stats and jobs."""

    def __init__(
        self,
        repository: PracticeRepository,
        selector: ProblemSelector,
        progress_service: ProgressService,
        analysis_queue: AnalysisQueue,
        generation_queue: GenerationQueue,
        daily_limit: Optional[int] = None,
        problems_per_session: Optional[int] = None,
        generation_timeout: Optional[float] = None,
    ):
        self.repository = repository
        self.selector = selector
        self.progress_service = progress_service
        self.analysis_queue = analysis_queue
        self.generation_queue = generation_queue
        self.daily_limit = daily_limit or settings.DAILY_PROBLEM_LIMIT
        self.problems_per_session = problems_per_session or settings.PROBLEMS_PER_SESSION
        self.generation_timeout = generation_timeout or settings.GENERATION_WAIT_TIMEOUT_SECONDS

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def _get_or_create_learner(self, learner_id: str) -> Learner:
        learner = await self.repository.find_learner(learner_id)
        if learner is None:
            learner = await self.repository.create_learner(Learner(id=learner_id))
            logger.info(f"Created learner {learner_id}")
        return learner

    async def _require_session(self, session_id: str) -> PracticeSession:
        session = await self.repository.find_session(session_id)
        if session is None:
            raise SessionNotFoundError(
                f"Session {session_id} not found", details={"session_id": session_id}
            )
        return session

    async def attempts_today(self, learner_id: str, now: Optional[datetime] = None) -> int:
        since = start_of_day(now or utc_now())
        completed = await self.repository.count_session_problems(
            learner_id, SessionProblemStatus.COMPLETED, since=since
        )
        failed = await self.repository.count_session_problems(
            learner_id, SessionProblemStatus.FAILED, since=since
        )
        return completed + failed

    async def _complete(self, session: PracticeSession) -> None:
        session.status = SessionStatus.COMPLETED
        session.remaining_count = 0
        session.completed_at = utc_now()
        await self.repository.update_session(session)
        logger.info(f"Session {session.id} completed for learner {session.learner_id}")

    # -------------------------------------------------------------------------
    # Session start
    # -------------------------------------------------------------------------

    async def start_session(self, learner_id: str, language: str = "python") -> SessionView:
        """
        Resume or create a practice session.

        Raises:
            DailyLimitReachedError: The learner hit today's attempt limit
            GenerationTimeoutError: The pool was empty and generation is slow
            PoolExhaustedError: No problems exist even after generation
        """
        # Lookup and create share a transaction so concurrent starts resume
        # one session instead of opening two
        try:
            async with self.repository.transaction():
                return await self._resume_or_create(learner_id, language)
        except NeedGenerationSignal as signal:
            await self._generate(signal)

        try:
            async with self.repository.transaction():
                return await self._resume_or_create(learner_id, language)
        except NeedGenerationSignal as signal:
            raise PoolExhaustedError(
                f"No {language} problems in database",
                details={"language": language, "difficulty": signal.difficulty.value},
            ) from None

    async def _resume_or_create(self, learner_id: str, language: str) -> SessionView:
        learner = await self._get_or_create_learner(learner_id)

        attempts = await self.attempts_today(learner_id)
        if attempts >= self.daily_limit:
            raise DailyLimitReachedError(
                f"Daily limit of {self.daily_limit} problems reached",
                details={"learner_id": learner_id, "attempts_today": attempts},
            )

        for existing in await self.repository.find_sessions(
            learner_id, status=SessionStatus.ACTIVE, language=language
        ):
            if existing.pending:
                logger.info(f"Resuming session {existing.id} for learner {learner_id}")
                return await self._view(existing, resumed=True)
            await self._complete(existing)

        state = await self.selector.learner_state(learner, language)
        difficulty = self.selector.select_target_difficulty(state)

        problems = await self._build_queue(state, language, difficulty)

        session = PracticeSession(
            learner_id=learner_id,
            language=language,
            difficulty=difficulty,
            problems=[
                SessionProblem(problem_id=problem.id, order=order)
                for order, problem in enumerate(problems)
            ],
            remaining_count=len(problems),
        )
        await self.repository.create_session(session)

        logger.info(
            f"Started session {session.id} for learner {learner_id}: "
            f"{len(problems)} x {language}/{difficulty.value}"
        )
        return await self._view(session)

    async def _build_queue(
        self, state: LearnerState, language: str, difficulty: Difficulty
    ) -> list[Problem]:
        limit = self.problems_per_session
        attempted = state.attempted_ids
        chosen: list[Problem] = []
        chosen_ids: set[str] = set()

        def take(problems: list[Problem]) -> None:
            for problem in problems:
                if len(chosen) >= limit:
                    return
                if problem.id not in chosen_ids:
                    chosen.append(problem)
                    chosen_ids.add(problem.id)

        tiers: list[dict] = [{"difficulty": difficulty, "exclude_ids": attempted}]
        easier = difficulty.easier()
        if easier is not None:
            tiers.append({"difficulty": easier, "exclude_ids": attempted})
        tiers.append({"difficulty": None, "exclude_ids": attempted})
        if attempted:
            tiers.append({"difficulty": None, "include_ids": attempted})

        for tier in tiers:
            if len(chosen) >= limit:
                break
            exclude = set(tier.get("exclude_ids") or ()) | chosen_ids
            candidates = await self.repository.find_problems(
                language=language,
                difficulty=tier["difficulty"],
                exclude_ids=exclude,
                include_ids=tier.get("include_ids"),
            )
            if not chosen:
                # Lead with the similarity or epsilon-greedy pick
                try:
                    lead = await self.selector.choose_next(state, candidates, language, difficulty)
                except NeedGenerationSignal:
                    continue
                take([lead])
                candidates = [c for c in candidates if c.id not in chosen_ids]
            take(self.selector.order_candidates(candidates, state, limit - len(chosen)))

        if not chosen:
            raise NeedGenerationSignal(language, difficulty)
        return chosen

    async def _generate(self, signal: NeedGenerationSignal) -> None:
        logger.warning(f"{signal}; generating before starting session")
        job_id = await self.generation_queue.enqueue(
            signal.language, signal.difficulty, self.problems_per_session
        )
        await self.generation_queue.wait_for_problems(job_id, self.generation_timeout)

    async def _view(self, session: PracticeSession, resumed: bool = False) -> SessionView:
        current = None
        if session.pending:
            current = await self.repository.find_problem(session.pending[0].problem_id)
        return SessionView(
            session_id=session.id,
            status=session.status,
            language=session.language,
            difficulty=session.difficulty,
            total_problems=len(session.problems),
            remaining_count=session.remaining_count,
            current_problem=current,
            resumed=resumed,
        )

    # -------------------------------------------------------------------------
    # Serving and answering
    # -------------------------------------------------------------------------

    async def get_next_problem(self, session_id: str) -> Optional[Problem]:
        """First PENDING problem by order, or None once the session is done."""
        session = await self._require_session(session_id)
        if session.status == SessionStatus.COMPLETED:
            return None

        pending = session.pending
        if not pending:
            await self._complete(session)
            return None

        problem_id = pending[0].problem_id
        async with self.repository.transaction():
            problem = await self.repository.find_problem(problem_id)
            if problem is None:
                raise ProblemNotFoundError(
                    f"Problem {problem_id} in session {session_id} not found",
                    details={"session_id": session_id, "problem_id": problem_id},
                )
            problem.total_uses += 1
            problem.last_used = utc_now()
            await self.repository.update_problem(problem)
        return problem

    def _answerable_entry(self, session: PracticeSession, problem_id: str) -> SessionProblem:
        if session.status == SessionStatus.COMPLETED:
            raise InvariantViolationError(
                f"Session {session.id} is already completed",
                details={"session_id": session.id},
            )
        entry = session.entry_for(problem_id)
        if entry is None:
            raise ProblemNotFoundError(
                f"Problem {problem_id} is not part of session {session.id}",
                details={"session_id": session.id, "problem_id": problem_id},
            )
        if entry.status != SessionProblemStatus.PENDING:
            raise InvariantViolationError(
                f"Problem {problem_id} was already answered in session {session.id}",
                details={"session_id": session.id, "status": entry.status.value},
            )
        current = session.pending[0]
        if entry.problem_id != current.problem_id:
            raise InvariantViolationError(
                f"Problem {problem_id} is not the current problem of session {session.id}",
                details={"session_id": session.id, "current_problem_id": current.problem_id},
            )
        return entry

    def _receipt(
        self, session: PracticeSession, problem_id: str, job_id: Optional[str] = None
    ) -> SubmissionReceipt:
        pending = session.pending
        return SubmissionReceipt(
            session_id=session.id,
            problem_id=problem_id,
            session_status=session.status,
            remaining_count=session.remaining_count,
            next_problem_id=pending[0].problem_id if pending else None,
            job_id=job_id,
        )

    async def submit_solution(
        self,
        session_id: str,
        learner_id: str,
        problem_id: str,
        solution: str,
        time_spent: int,
        priority: int = 1,
    ) -> SubmissionReceipt:
        """
        Record a submission and queue it for background analysis.

        Raises:
            SessionNotFoundError / ProblemNotFoundError: Unknown references
            DataIntegrityError: The session belongs to another learner
            InvariantViolationError: Session completed, problem answered, or
                problem not the current one
        """
        # The analysis worker also writes session entries; read and write together
        async with self.repository.transaction():
            session = await self._require_session(session_id)
            if session.learner_id != learner_id:
                raise DataIntegrityError(
                    f"Session {session_id} does not belong to learner {learner_id}",
                    details={"session_id": session_id, "learner_id": learner_id},
                )

            entry = self._answerable_entry(session, problem_id)
            entry.status = SessionProblemStatus.COMPLETED
            entry.time_spent = time_spent
            entry.completed_at = utc_now()
            session.remaining_count = max(0, session.remaining_count - 1)
            if not session.pending:
                session.status = SessionStatus.COMPLETED
                session.completed_at = entry.completed_at

            await self.repository.update_session(session)

        job = await self.analysis_queue.enqueue(
            learner_id,
            problem_id,
            solution,
            time_spent=time_spent,
            session_id=session_id,
            priority=priority,
        )
        logger.info(
            f"Learner {learner_id} submitted {problem_id} in session {session_id} (job={job.id})"
        )
        return self._receipt(session, problem_id, job_id=job.id)

    async def skip_problem(self, session_id: str, problem_id: str) -> SubmissionReceipt:
        """
        Skip the problem and advance.

        Raises:
            ExcessiveSkippingError: The skip ended the session early
        """
        async with self.repository.transaction():
            session = await self._require_session(session_id)
            entry = self._answerable_entry(session, problem_id)
            entry.status = SessionProblemStatus.SKIPPED
            entry.completed_at = utc_now()
            session.remaining_count = max(0, session.remaining_count - 1)

            attempted, skipped = session.attempted_count, session.skipped_count
            forced = should_force_complete(attempted, skipped)
            if forced or not session.pending:
                await self._complete(session)
            else:
                await self.repository.update_session(session)

        # Raised after commit so the forced completion is kept
        if forced:
            logger.warning(
                f"Session {session_id} force-completed: {skipped} of {attempted} skipped"
            )
            raise ExcessiveSkippingError(
                "Too many problems skipped; session ended",
                details={"session_id": session_id, "attempted": attempted, "skipped": skipped},
            )
        return self._receipt(session, problem_id)

    # -------------------------------------------------------------------------
    # Stats and jobs
    # -------------------------------------------------------------------------

    async def get_session_stats(self, learner_id: str) -> SessionStats:
        learner = await self._get_or_create_learner(learner_id)
        attempts = await self.attempts_today(learner_id)

        active = await self.repository.find_sessions(learner_id, status=SessionStatus.ACTIVE)
        session = active[0] if active else None

        return SessionStats(
            learner_id=learner_id,
            xp=learner.xp,
            level=learner.level,
            next_level_xp=next_level_xp(learner.level),
            streak=learner.streak,
            rating=learner.rating,
            max_rating=learner.max_rating,
            rank=rank_title(learner.rating),
            attempts_today=attempts,
            daily_limit=self.daily_limit,
            remaining_today=max(0, self.daily_limit - attempts),
            active_session_id=session.id if session else None,
            session_completed=session.attempted_count if session else 0,
            session_total=len(session.problems) if session else 0,
            suggested_difficulty=self.progress_service.optimizer.suggest_next_difficulty(learner),
        )

    async def get_available_counts(self, learner_id: str, language: str) -> dict[Difficulty, int]:
        """Unattempted ACTIVE problems per difficulty for the learner."""
        progressions = await self.repository.find_progressions(learner_id)
        attempted = {p.problem_id for p in progressions if p.attempts > 0}
        counts: dict[Difficulty, int] = {}
        for difficulty in Difficulty:
            problems = await self.repository.find_problems(
                language=language, difficulty=difficulty, exclude_ids=attempted
            )
            counts[difficulty] = len(problems)
        return counts

    def get_job_status(self, job_id: str) -> JobState:
        """
        Current state of an analysis or generation job.

        Raises:
            JobNotFoundError: Neither queue knows the id
        """
        job = self.analysis_queue.get_status(job_id) or self.generation_queue.get_status(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found", details={"job_id": job_id})
        return job

    # -------------------------------------------------------------------------
    # Maintenance helpers
    # -------------------------------------------------------------------------

    async def reset_daily_progress(self, learner_id: str) -> int:
        """
        Close out a learner's active sessions.

        Pending entries become SKIPPED and the sessions COMPLETED.

        Returns:
            Number of sessions closed
        """
        now = utc_now()
        async with self.repository.transaction():
            sessions = await self.repository.find_sessions(learner_id, status=SessionStatus.ACTIVE)
            for session in sessions:
                for entry in session.pending:
                    entry.status = SessionProblemStatus.SKIPPED
                    entry.completed_at = now
                session.status = SessionStatus.COMPLETED
                session.remaining_count = 0
                session.completed_at = now
                await self.repository.update_session(session)

        logger.info(f"Reset daily progress for learner {learner_id}: {len(sessions)} sessions")
        return len(sessions)

    async def save_progress_batch(self, learner_id: str, results: list[ProgressResult]) -> int:
        """All-or-nothing progression upsert for a batch of results."""
        return await self.progress_service.save_batch(learner_id, results)
