"""
Background Job Enums

Statuses and kinds for the in-process generation and analysis queues.
"""

from enum import Enum


class JobStatus(str, Enum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING → IN_PROGRESS (picked up by a worker)
    - IN_PROGRESS → COMPLETED | FAILED
    - PENDING → COMPLETED (analysis cache hit, no work performed)
    """

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobKind(str, Enum):
    """Which queue owns a job."""

    GENERATION = "generation"
    ANALYSIS = "analysis"
