"""
Base Models for Domain Entities and Service Results

Two flavours, mirroring how data flows through the practice core:

    Repository row → DomainModel (mutable, ORM-convertible) → Service Layer
    Service Layer → ResultModel (immutable) → Caller

Usage:
    class Learner(DomainModel):
        id: str
        rating: float = 1000.0

    class RatingUpdate(ResultModel):
        old_rating: float
        new_rating: float
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class DomainModel(BaseModel):
    """
    Base model for entities persisted through the repository.

    Features:
        - extra="ignore": ORM rows may carry columns the domain does not use
        - from_attributes=True: Allows ORM model conversion
        - validate_assignment=False: Services mutate entities in place
    """

    model_config = ConfigDict(
        extra="ignore",
        from_attributes=True,
        validate_assignment=False,
    )


class ResultModel(BaseModel):
    """
    Base model for values returned to callers.

    Results are snapshots; mutating them has no effect on stored state,
    so they are frozen.
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        from_attributes=True,
    )
