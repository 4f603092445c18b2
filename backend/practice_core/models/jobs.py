"""
Background Job State Models

Job state is a tagged union discriminated on ``status``. Each variant carries
only the fields that are valid in that state: a pending job has no result,
a failed job has an error but no result, and so on. Transitions build a new
object rather than mutating the old one.

Usage:
    job = PendingJob(kind=JobKind.ANALYSIS, payload={...}, priority=2)
    job = job.start()
    job = job.complete({"feedback": "..."})

    # Parsing a stored dict back into the right variant
    state = JOB_STATE_ADAPTER.validate_python(data)
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from practice_core.enums.jobs import JobKind, JobStatus
from practice_core.models.base import utc_now
from practice_core.models.practice import new_id


class _JobBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(default_factory=new_id)
    kind: JobKind
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    created_at: datetime = Field(default_factory=utc_now)

    def _carry(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "payload": self.payload,
            "priority": self.priority,
            "created_at": self.created_at,
        }


class PendingJob(_JobBase):
    status: Literal[JobStatus.PENDING] = JobStatus.PENDING

    def start(self) -> "InProgressJob":
        return InProgressJob(**self._carry(), started_at=utc_now())

    def complete(self, result: Any) -> "CompletedJob":
        """Complete without running (analysis cache hit)."""
        now = utc_now()
        return CompletedJob(**self._carry(), started_at=now, finished_at=now, result=result)


class InProgressJob(_JobBase):
    status: Literal[JobStatus.IN_PROGRESS] = JobStatus.IN_PROGRESS
    started_at: datetime

    def complete(self, result: Any) -> "CompletedJob":
        return CompletedJob(
            **self._carry(),
            started_at=self.started_at,
            finished_at=utc_now(),
            result=result,
        )

    def fail(self, error: str) -> "FailedJob":
        return FailedJob(
            **self._carry(),
            started_at=self.started_at,
            finished_at=utc_now(),
            error=error,
        )


class CompletedJob(_JobBase):
    status: Literal[JobStatus.COMPLETED] = JobStatus.COMPLETED
    started_at: Optional[datetime] = None
    finished_at: datetime
    result: Any = None


class FailedJob(_JobBase):
    status: Literal[JobStatus.FAILED] = JobStatus.FAILED
    started_at: Optional[datetime] = None
    finished_at: datetime
    error: str


JobState = Annotated[
    Union[PendingJob, InProgressJob, CompletedJob, FailedJob],
    Field(discriminator="status"),
]

JOB_STATE_ADAPTER: TypeAdapter[JobState] = TypeAdapter(JobState)


def is_terminal(job: JobState) -> bool:
    return job.status.is_terminal
