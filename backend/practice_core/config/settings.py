"""
Application Configuration

This module provides type-safe configuration loading using Pydantic settings.
Environment variables are loaded from .env file and validated.

Usage:
    from practice_core.config import settings

    # Access settings
    db_url = settings.POSTGRES_URL
    limit = settings.DAILY_PROBLEM_LIMIT
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Practice Core"
    DEBUG: bool = False

    # PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "practice"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "practice"

    @property
    def POSTGRES_URL(self) -> str:
        """Async PostgreSQL connection URL."""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis (cross-process pool bucket locks)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # LLM providers (model-agnostic via LiteLLM)
    # Format: provider/model-name
    OPENAI_API_KEY: str = ""
    ANTHROPIC_API_KEY: str = ""
    TEXT_MODEL: str = "openai/gpt-4o-mini"
    EMBEDDING_MODEL: str = "openai/text-embedding-3-small"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 2000
    LLM_TIMEOUT_SECONDS: int = 60

    # Response cache (LRU + TTL)
    CACHE_MAX_ENTRIES: int = 500
    CACHE_TTL_HOURS: int = 24

    # Session scheduling
    DAILY_PROBLEM_LIMIT: int = 50
    PROBLEMS_PER_SESSION: int = 5
    GENERATION_WAIT_TIMEOUT_SECONDS: float = 60.0

    # Rating engine (Elo-style)
    RATING_K_FACTOR: int = 32
    RATING_VOLATILITY_WEIGHT: float = 0.5
    RATING_DIFFICULTY_WEIGHT: float = 0.2
    RATING_TIME_WEIGHT: float = 0.1
    RATING_MIN: int = 100
    RATING_DEFAULT: float = 1000.0

    # Spaced repetition and concept mastery
    MASTERY_LEARNING_RATE: float = 0.3
    MASTERY_DECAY: float = 0.95

    # Problem selection (epsilon-greedy)
    SELECTOR_HISTORY_WINDOW: int = 10

    # Pool replenishment
    POOL_MIN_SIZE: int = 50
    POOL_BATCH_SIZE: int = 10
    POOL_MAX_CONCURRENT_BUCKETS: int = 2
    POOL_STALE_DAYS: int = 30
    POOL_ARCHIVE_THRESHOLD: float = 0.2
    POOL_ARCHIVE_MIN_SAMPLES: int = 5
    POOL_LOCK_TTL_SECONDS: int = 900

    # Provider retry (per generated/evaluated unit)
    PROVIDER_RETRY_ATTEMPTS: int = 3
    PROVIDER_RETRY_BASE_SECONDS: float = 1.0
    PROVIDER_RETRY_MAX_SECONDS: float = 4.0

    # Job garbage collection
    JOB_MAX_AGE_HOURS: int = 24

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()


@lru_cache()
def load_yaml_config() -> dict[str, Any]:
    """Load application configuration from config/default.yaml."""
    config_path = Path(__file__).parent.parent.parent.parent / "config" / "default.yaml"

    if not config_path.exists():
        return {}

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


yaml_config: dict[str, Any] = load_yaml_config()


def practice_languages() -> list[str]:
    """Languages tracked as pool buckets, from the YAML ``practice`` section."""
    practice = yaml_config.get("practice", {})
    return list(practice.get("languages", ["javascript", "python", "java"]))
