"""
Practice Service Errors

Typed exceptions surfaced by the scheduling and job services. Every error
derives from ServiceError, which carries an HTTP-style status code, an error
code for categorization and optional details, so a route layer can turn any
of them into a structured response without knowing the concrete type.

Taxonomy:
    ExhaustionError          - daily limit reached, pool empty after generation.
                               Terminal for now; the learner retries later.
    InvariantViolationError  - excessive skipping. Terminal for the session.
    TransientProviderError   - LLM generation/evaluation call failed. Retried
                               with backoff inside the services; only surfaces
                               once retries are exhausted.
    DataIntegrityError       - missing learner/problem/session/job reference.
    ValidationFailure        - malformed generated content, rejected before
                               persistence.

Usage:
    from practice_core.services.errors import DailyLimitReachedError

    try:
        view = await scheduler.start_session(learner_id)
    except ExhaustionError as e:
        return {"error": e.error_code, "message": e.message}
"""

from typing import Optional


class ServiceError(Exception):
    """
    Base exception for service errors.

    Provides consistent error handling with:
    - HTTP status code
    - Error code for categorization
    - Optional details for debugging

    Example:
        raise ServiceError("Database connection failed", status_code=503)
    """

    status_code: int = 500
    error_code: str = "service_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code
        if error_code:
            self.error_code = error_code
        self.details = details


# =============================================================================
# Exhaustion
# =============================================================================


class ExhaustionError(ServiceError):
    """A resource ran out; the caller should wait and try again later."""

    status_code = 429
    error_code = "exhausted"


class DailyLimitReachedError(ExhaustionError):
    error_code = "daily_limit_reached"


class PoolExhaustedError(ExhaustionError):
    """No problems could be found or generated for a session."""

    status_code = 503
    error_code = "no_problems_available"


# =============================================================================
# Invariant violations
# =============================================================================


class InvariantViolationError(ServiceError):
    status_code = 409
    error_code = "invariant_violation"


class ExcessiveSkippingError(InvariantViolationError):
    """
    Raised when a learner skips too much within one session.

    The session has already been force-completed when this is raised.
    """

    error_code = "excessive_skipping"


# =============================================================================
# Provider failures
# =============================================================================


class TransientProviderError(ServiceError):
    """
    LLM provider error.

    Raised when generation, embedding or evaluation calls fail (rate limits,
    timeouts, malformed transport responses).
    """

    status_code = 502
    error_code = "provider_error"
    retryable = True


class GenerationTimeoutError(TransientProviderError):
    """Waiting for on-demand problem generation exceeded its deadline."""

    status_code = 504
    error_code = "generation_timeout"


# =============================================================================
# Data integrity
# =============================================================================


class DataIntegrityError(ServiceError):
    status_code = 500
    error_code = "data_integrity"


class NotFoundError(DataIntegrityError):
    """
    Resource not found error.

    Raised when a referenced learner, problem, session or job doesn't exist.
    """

    status_code = 404
    error_code = "not_found"


class LearnerNotFoundError(NotFoundError):
    error_code = "learner_not_found"


class ProblemNotFoundError(NotFoundError):
    error_code = "problem_not_found"


class SessionNotFoundError(NotFoundError):
    error_code = "session_not_found"


class JobNotFoundError(NotFoundError):
    error_code = "job_not_found"


# =============================================================================
# Validation
# =============================================================================


class ValidationFailure(ServiceError):
    """
    Data validation error.

    Raised when generated content or caller input fails validation.
    """

    status_code = 422
    error_code = "validation_error"
