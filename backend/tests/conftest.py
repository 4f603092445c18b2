"""
Shared Test Fixtures and Configuration

This module provides pytest fixtures used across the unit tests: an
in-memory repository, a mocked LLM client, a zero-delay retry policy and
factories for domain models.
"""

import os
import random
import sys
from pathlib import Path
from typing import Any, Callable, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from dotenv import load_dotenv

# Add the backend directory to the path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load .env file from project root BEFORE any fixtures run
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

# Settings are read at import time, so keys must be present before collection
os.environ.setdefault("OPENAI_API_KEY", "test-api-key")
# Use litellm's bundled model cost map instead of fetching it at import time
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from practice_core.enums.practice import Difficulty  # noqa: E402
from practice_core.models.practice import Learner, Problem  # noqa: E402
from practice_core.repositories.memory import InMemoryPracticeRepository  # noqa: E402
from practice_core.services.cache import ResponseCache  # noqa: E402
from practice_core.services.llm.client import PracticeLLMClient  # noqa: E402
from practice_core.services.retry import provider_retry  # noqa: E402


# ============================================================================
# Environment Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> Generator[None, None, None]:
    """
    Set up test environment variables before any tests run.

    Overrides values from .env files to keep tests isolated.
    """
    original_env = os.environ.copy()

    test_env = {
        "POSTGRES_HOST": os.environ.get("POSTGRES_HOST", "localhost"),
        "POSTGRES_PORT": os.environ.get("POSTGRES_PORT", "5432"),
        "POSTGRES_USER": os.environ.get("POSTGRES_TEST_USER", "testuser"),
        "POSTGRES_PASSWORD": os.environ.get("POSTGRES_TEST_PASSWORD", "testpass"),
        "POSTGRES_DB": os.environ.get("POSTGRES_TEST_DB", "testdb"),
        "CELERY_BROKER_URL": "memory://",
        "CELERY_RESULT_BACKEND": "cache+memory://",
        "OPENAI_API_KEY": os.environ.get("OPENAI_API_KEY", "test-api-key"),
    }
    os.environ.update(test_env)

    yield

    os.environ.clear()
    os.environ.update(original_env)


# ============================================================================
# Model Factories
# ============================================================================


@pytest.fixture
def make_problem() -> Callable[..., Problem]:
    """Factory for pool problems; keyword arguments override defaults."""
    counter = {"n": 0}

    def _make(**overrides: Any) -> Problem:
        counter["n"] += 1
        data: dict[str, Any] = {
            "title": f"Problem {counter['n']}",
            "description": "Return the sum of a list of integers.",
            "language": "python",
            "difficulty": Difficulty.EASY,
            "concepts": ["loops"],
            "solution": "def solve(xs):\n    return sum(xs)",
            "test_cases": ["solve([1, 2]) == 3"],
        }
        data.update(overrides)
        return Problem(**data)

    return _make


@pytest.fixture
def learner() -> Learner:
    return Learner(id="learner-1")


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def repository() -> InMemoryPracticeRepository:
    return InMemoryPracticeRepository()


@pytest.fixture
def fast_retry() -> Callable:
    """Provider retry policy with the production attempt count and no sleeping."""
    return lambda: provider_retry(base_seconds=0, max_seconds=0)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def mock_llm_client() -> MagicMock:
    """
    Create a mock LLM client.

    generate_problem, embed and evaluate are AsyncMocks; tests set their
    return values or side effects.
    """
    mock = MagicMock(spec=PracticeLLMClient)
    mock.cache = ResponseCache()
    mock.generate = AsyncMock(return_value="")
    mock.generate_problem = AsyncMock()
    mock.embed = AsyncMock(return_value=[0.0, 0.0, 0.0])
    mock.evaluate = AsyncMock()
    return mock
