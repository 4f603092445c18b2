"""
LLM Client for problem generation, embeddings and solution review.

Wraps LiteLLM, which exposes 100+ providers behind the "provider/model-name"
format. The client owns a ResponseCache: completions are memoized by a hash
of (system prompt, prompt, model, temperature, max_tokens), so repeating an
identical request is served locally.

Retries are NOT performed here. Callers wrap calls in the provider retry
policy (practice_core.services.retry) so that one place decides how many
attempts a unit of work gets. Provider exceptions are normalized into
TransientProviderError; unusable content becomes ValidationFailure.

See: https://docs.litellm.ai/

Usage:
    from practice_core.services.llm import get_llm_client

    client = get_llm_client()

    text = await client.generate("Explain recursion in one sentence")
    vector = await client.embed("Reverse a linked list in place")
    problem = await client.generate_problem("python", Difficulty.EASY, "strings")
    review = await client.evaluate(code, problem.test_cases, problem)
"""

import json
import logging
import os
import time
from typing import Any, Optional

import litellm
from litellm import acompletion, aembedding
from pydantic import ValidationError as PydanticValidationError

from practice_core.config.settings import settings
from practice_core.enums.practice import Difficulty
from practice_core.models.practice import EvaluationResult, GeneratedProblem, Problem
from practice_core.services.cache import ResponseCache, make_key
from practice_core.services.errors import TransientProviderError, ValidationFailure
from practice_core.services.llm.prompts import (
    REVIEW_SYSTEM_PROMPT,
    REVIEW_USER_PROMPT,
    generation_prompts,
)

logger = logging.getLogger(__name__)

# Configure LiteLLM
litellm.drop_params = True  # Drop unsupported params instead of erroring
if settings.DEBUG:
    os.environ["LITELLM_LOG"] = "DEBUG"


def build_messages(
    prompt: str,
    system_prompt: Optional[str] = None,
) -> list[dict[str, str]]:
    """
    Build messages list from prompt and optional system prompt.

    Args:
        prompt: User prompt text
        system_prompt: Optional system prompt

    Returns:
        List of message dicts for LLM API
    """
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


def parse_json_response(text: str) -> Any:
    """
    Parse a model response as JSON, tolerating markdown code fences.

    Raises:
        json.JSONDecodeError: If the content is not valid JSON
    """
    content = text.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else ""
        if content.rstrip().endswith("```"):
            content = content.rstrip()[:-3]
    return json.loads(content)


class PracticeLLMClient:
    """
    Text generation, embedding and evaluation gateway.

    Attributes:
        cache: Response cache shared by every generate() call.
        model: Default completion model (LiteLLM format).
        embedding_model: Model used by embed().
    """

    def __init__(
        self,
        cache: Optional[ResponseCache[str]] = None,
        model: Optional[str] = None,
        embedding_model: Optional[str] = None,
    ):
        self.cache = cache if cache is not None else ResponseCache(
            max_entries=settings.CACHE_MAX_ENTRIES,
            ttl_seconds=settings.CACHE_TTL_HOURS * 3600,
        )
        self.model = model or settings.TEXT_MODEL
        self.embedding_model = embedding_model or settings.EMBEDDING_MODEL
        self._validate_api_keys()

    def _validate_api_keys(self) -> None:
        available_keys = []
        if os.getenv("OPENAI_API_KEY") or settings.OPENAI_API_KEY:
            available_keys.append("OpenAI")
        if os.getenv("ANTHROPIC_API_KEY") or settings.ANTHROPIC_API_KEY:
            available_keys.append("Anthropic")

        if not available_keys:
            logger.warning(
                "No LLM API keys configured. Set at least one of: "
                "OPENAI_API_KEY, ANTHROPIC_API_KEY"
            )
        else:
            logger.info(f"LLM client initialized with providers: {available_keys}")

    # =========================================================================
    # Completions
    # =========================================================================

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        use_cache: bool = True,
    ) -> str:
        """
        Generate a completion, consulting the response cache first.

        Args:
            prompt: User prompt text
            system_prompt: Optional system prompt
            model: Model override (defaults to settings.TEXT_MODEL)
            temperature: Sampling temperature
            max_tokens: Maximum tokens in the response
            json_mode: Request a JSON object response
            use_cache: Set False for calls that must produce fresh content

        Returns:
            Response text

        Raises:
            TransientProviderError: If the provider call fails or returns nothing
        """
        model = model or self.model
        temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        max_tokens = max_tokens or settings.LLM_MAX_TOKENS

        key = make_key(system_prompt, prompt, model, temperature, max_tokens, json_mode)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"LLM cache hit [{model}] key={key[:12]}")
                return cached

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": build_messages(prompt, system_prompt),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout": settings.LLM_TIMEOUT_SECONDS,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        start_time = time.perf_counter()
        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            logger.error(f"LLM completion failed: {e} (model={model})")
            raise TransientProviderError(
                f"Completion failed: {e}", details={"model": model}
            ) from e

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        content = response.choices[0].message.content
        if not content:
            raise TransientProviderError("Empty completion", details={"model": model})

        logger.debug(f"LLM completion [{model}] - Latency: {latency_ms}ms")
        if use_cache:
            self.cache.set(key, content)
        return content

    async def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for a text.

        Raises:
            TransientProviderError: If the provider call fails
        """
        try:
            response = await aembedding(model=self.embedding_model, input=[text])
        except Exception as e:
            logger.error(f"Embedding failed: {e} (model={self.embedding_model})")
            raise TransientProviderError(
                f"Embedding failed: {e}", details={"model": self.embedding_model}
            ) from e
        return list(response.data[0]["embedding"])

    # =========================================================================
    # Domain operations
    # =========================================================================

    async def generate_problem(
        self,
        language: str,
        difficulty: Difficulty,
        topic: str,
    ) -> GeneratedProblem:
        """
        Generate one practice problem.

        Generation bypasses the cache: identical prompts must still yield
        distinct problems for the pool.

        Raises:
            TransientProviderError: Provider failure
            ValidationFailure: Response is not a valid problem
        """
        system_prompt, prompt = generation_prompts(language, difficulty, topic)
        text = await self.generate(
            prompt,
            system_prompt=system_prompt,
            json_mode=True,
            use_cache=False,
        )

        try:
            data = parse_json_response(text)
            return GeneratedProblem.model_validate(data)
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise ValidationFailure(
                f"Generated problem failed validation: {e}",
                details={"language": language, "difficulty": difficulty.value},
            ) from e

    async def evaluate(
        self,
        code: str,
        tests: list[Any],
        problem: Problem,
    ) -> EvaluationResult:
        """
        Review a submitted solution against the reference and test cases.

        The review is cached like any completion, so re-evaluating an
        identical submission is free. An unparseable review is evicted from
        the cache and reported as a transient failure so a retry asks again.

        Raises:
            TransientProviderError: Provider failure or unusable review
        """
        prompt = REVIEW_USER_PROMPT.format(
            language=problem.language,
            description=problem.description,
            tests=json.dumps(tests, default=str),
            code=code,
            solution=problem.solution,
        )
        text = await self.generate(
            prompt,
            system_prompt=REVIEW_SYSTEM_PROMPT,
            temperature=0.0,
            json_mode=True,
        )

        try:
            data = parse_json_response(text)
            if not isinstance(data.get("isCorrect"), bool):
                raise ValueError("isCorrect must be a boolean")
            return EvaluationResult(
                success=data["isCorrect"],
                feedback=data.get("feedback") or "",
                metrics={
                    "hint": data.get("hint"),
                    "suggestions": data.get("suggestions") or [],
                },
            )
        except (json.JSONDecodeError, AttributeError, ValueError, PydanticValidationError) as e:
            key = make_key(
                REVIEW_SYSTEM_PROMPT, prompt, self.model, 0.0, settings.LLM_MAX_TOKENS, True
            )
            self.cache.delete(key)
            raise TransientProviderError(
                f"Unusable review response: {e}", details={"problem_id": problem.id}
            ) from e


# Singleton instance
_client: Optional[PracticeLLMClient] = None


def get_llm_client() -> PracticeLLMClient:
    """
    Get or create singleton LLM client.

    Returns:
        Shared PracticeLLMClient instance
    """
    global _client
    if _client is None:
        _client = PracticeLLMClient()
    return _client


def reset_llm_client() -> None:
    """Reset the singleton client (useful for testing)."""
    global _client
    _client = None
