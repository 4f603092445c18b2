"""
Provider Retry Policy

One retry policy for every unit of LLM work (generating a problem,
evaluating a submission). Built on tenacity, like the Celery task retries:

- 3 attempts
- exponential backoff starting at 1s and doubling (1s, 2s), capped at 4s
- only TransientProviderError is retried; validation failures and
  programming errors surface immediately
- the final error is re-raised unchanged so callers can log and skip

Usage:
    from practice_core.services.retry import provider_retry

    async for attempt in provider_retry():
        with attempt:
            problem = await client.generate_problem(language, difficulty, topic)
"""

import logging
from typing import Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from practice_core.config.settings import settings
from practice_core.services.errors import TransientProviderError

logger = logging.getLogger(__name__)


def provider_retry(
    attempts: Optional[int] = None,
    base_seconds: Optional[float] = None,
    max_seconds: Optional[float] = None,
) -> AsyncRetrying:
    """Build an AsyncRetrying for one provider-backed unit of work."""
    base = settings.PROVIDER_RETRY_BASE_SECONDS if base_seconds is None else base_seconds
    return AsyncRetrying(
        stop=stop_after_attempt(attempts or settings.PROVIDER_RETRY_ATTEMPTS),
        wait=wait_exponential(
            multiplier=base,
            min=base,
            max=settings.PROVIDER_RETRY_MAX_SECONDS if max_seconds is None else max_seconds,
        ),
        retry=retry_if_exception_type(TransientProviderError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
