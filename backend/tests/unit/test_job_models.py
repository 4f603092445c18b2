"""
Unit tests for the job state models and the shared job table.

Tests cover:
- Tagged-union transitions and discriminated parsing
- JobTable completion futures, timeouts and garbage collection
"""

import asyncio
from datetime import timedelta

import pytest
from pydantic import ValidationError

from practice_core.enums.jobs import JobKind, JobStatus
from practice_core.models.base import utc_now
from practice_core.models.jobs import (
    JOB_STATE_ADAPTER,
    CompletedJob,
    FailedJob,
    InProgressJob,
    PendingJob,
    is_terminal,
)
from practice_core.services.errors import JobNotFoundError
from practice_core.services.jobs.base import JobTable


class TestJobStates:
    def test_transitions_produce_new_objects(self):
        pending = PendingJob(kind=JobKind.ANALYSIS, payload={"a": 1}, priority=2)
        running = pending.start()
        done = running.complete({"ok": True})

        assert isinstance(running, InProgressJob)
        assert isinstance(done, CompletedJob)
        assert pending.status == JobStatus.PENDING
        assert done.id == pending.id
        assert done.priority == 2
        assert done.result == {"ok": True}

    def test_failed_job_carries_error(self):
        failed = PendingJob(kind=JobKind.GENERATION).start().fail("boom")

        assert isinstance(failed, FailedJob)
        assert failed.error == "boom"
        assert is_terminal(failed)

    def test_states_are_frozen(self):
        job = PendingJob(kind=JobKind.ANALYSIS)
        with pytest.raises(ValidationError):
            job.priority = 5

    def test_parse_picks_variant_by_status(self):
        done = PendingJob(kind=JobKind.ANALYSIS).complete({"cached": True})

        parsed = JOB_STATE_ADAPTER.validate_python(done.model_dump())

        assert isinstance(parsed, CompletedJob)
        assert parsed.result == {"cached": True}

    def test_completed_state_rejects_error_field(self):
        data = PendingJob(kind=JobKind.ANALYSIS).complete(None).model_dump()
        data["error"] = "should not be here"

        with pytest.raises(ValidationError):
            JOB_STATE_ADAPTER.validate_python(data)


class TestJobTable:
    @pytest.mark.asyncio
    async def test_wait_for_resolves_on_terminal_state(self):
        table = JobTable("test")
        pending = PendingJob(kind=JobKind.ANALYSIS)
        table._store(pending)
        running = pending.start()
        table._store(running)

        async def finish():
            await asyncio.sleep(0)
            table._store(running.complete("done"))

        asyncio.create_task(finish())
        result = await table.wait_for(pending.id, timeout=1)

        assert isinstance(result, CompletedJob)
        assert result.result == "done"

    @pytest.mark.asyncio
    async def test_wait_for_timeout_returns_latest_state(self):
        table = JobTable("test")
        pending = PendingJob(kind=JobKind.ANALYSIS)
        table._store(pending)

        result = await table.wait_for(pending.id, timeout=0.01)

        assert result.status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_job_raises(self):
        table = JobTable("test")

        with pytest.raises(JobNotFoundError):
            await table.wait_for("nope", timeout=0.01)
        assert table.get_status("nope") is None

    @pytest.mark.asyncio
    async def test_cleanup_removes_terminal_and_expired(self):
        table = JobTable("test", max_job_age_hours=1)
        done = PendingJob(kind=JobKind.ANALYSIS).complete("x")
        stale = PendingJob(kind=JobKind.ANALYSIS, created_at=utc_now() - timedelta(hours=2))
        fresh = PendingJob(kind=JobKind.ANALYSIS)
        for job in (done, stale, fresh):
            table._store(job)

        assert table.cleanup() == 2
        assert table.get_status(fresh.id) is not None
        assert table.get_status(done.id) is None
        assert table.cleanup() == 0
