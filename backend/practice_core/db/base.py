"""
Database Base Configuration

Sets up the async SQLAlchemy engine and session management for PostgreSQL.

Usage:
    from practice_core.db.base import async_session_maker, Base

    async with async_session_maker() as session:
        result = await session.execute(...)
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from practice_core.config import settings, yaml_config


# Get pool configuration from yaml config
db_config: dict[str, Any] = yaml_config.get("database", {})
pool_size: int = db_config.get("pool_size", 5)
max_overflow: int = db_config.get("max_overflow", 10)
pool_timeout: int = db_config.get("pool_timeout", 30)

# Create async engine
engine = create_async_engine(
    settings.POSTGRES_URL,
    pool_size=pool_size,
    max_overflow=max_overflow,
    pool_timeout=pool_timeout,
    echo=settings.DEBUG,
)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def task_session_maker() -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to a fresh engine for Celery tasks.

    Each Celery task runs its coroutine under its own ``asyncio.run`` loop,
    and asyncpg connections cannot cross event loops, so tasks must not
    reuse the module-level pool.
    """
    task_engine = create_async_engine(
        settings.POSTGRES_URL,
        pool_size=1,
        max_overflow=0,
        echo=settings.DEBUG,
    )
    return async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# Import models AFTER Base is defined to avoid circular imports.
# This ensures all models are registered with Base.metadata.
from practice_core.db import models_practice  # noqa: F401, E402


async def init_db() -> None:
    """Create all tables. Used for local setups without migrations."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
