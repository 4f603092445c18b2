"""
Redis Connection and Bucket Locks

Provides Redis clients and the cross-process lock that marks a pool bucket
as being replenished.

Usage:
    from practice_core.db.redis import RedisBucketLock, create_redis_client

    client = create_redis_client()
    lock = RedisBucketLock(client)
    if await lock.acquire("python", Difficulty.EASY):
        ...
        await lock.release("python", Difficulty.EASY)
    await client.aclose()
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError

from practice_core.config import settings
from practice_core.enums.practice import Difficulty

logger = logging.getLogger(__name__)


def create_redis_client() -> redis.Redis:
    """
    Create a standalone Redis client.

    Celery tasks run each coroutine under its own ``asyncio.run`` loop and
    Redis connections cannot cross event loops, so every task builds its own
    client and closes it when done.
    """
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


class RedisBucketLock:
    """
    Per-bucket replenishment marker shared by every worker process.

    Each bucket maps to one Redis lock with a TTL. The holder refreshes the
    TTL before every batch; a worker that dies mid-chain frees the bucket
    once the TTL runs out.
    """

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "practice:pool",
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self.client = client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds or settings.POOL_LOCK_TTL_SECONDS
        self._held: dict[str, Lock] = {}

    def _make_key(self, language: str, difficulty: Difficulty) -> str:
        return f"{self.prefix}:{language}:{difficulty.value}"

    async def acquire(self, language: str, difficulty: Difficulty) -> bool:
        """Take the bucket without blocking; False if another holder has it."""
        key = self._make_key(language, difficulty)
        lock = self.client.lock(key, timeout=self.ttl_seconds, blocking=False)
        if not await lock.acquire(blocking=False):
            return False
        self._held[key] = lock
        return True

    async def refresh(self, language: str, difficulty: Difficulty) -> None:
        """
        Reset the TTL of a held bucket.

        Raises:
            LockError: The lock expired and may now belong to someone else
        """
        lock = self._held.get(self._make_key(language, difficulty))
        if lock is not None:
            await lock.reacquire()

    async def release(self, language: str, difficulty: Difficulty) -> None:
        key = self._make_key(language, difficulty)
        lock = self._held.pop(key, None)
        if lock is None:
            return
        try:
            await lock.release()
        except LockError:
            logger.warning(f"Bucket lock {key} expired before release")
