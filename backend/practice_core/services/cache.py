"""
Response Cache

In-memory LRU cache with per-entry TTL, used to memoize expensive LLM
generation and evaluation calls.

Eviction happens by whichever comes first:
- TTL expiry (default 24h), checked lazily on read and by purge_expired()
- capacity overflow (default 500 entries), evicting the least recently used

A hit increments the entry's usage counter and refreshes its recency.
Operations are guarded by an RLock so the cache can be shared between the
event loop and worker threads.

Usage:
    from practice_core.services.cache import ResponseCache, make_key

    cache = ResponseCache(max_entries=500, ttl_seconds=24 * 3600)
    key = make_key(prompt, "openai/gpt-4o-mini", 0.7, 2000)

    text = cache.get(key)
    if text is None:
        text = await call_llm(...)
        cache.set(key, text)
"""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


def make_key(*parts: Any) -> str:
    """
    Build a stable cache key from request parameters.

    Parts are serialized as canonical JSON (sorted keys) and hashed with
    SHA-256, so equal parameters always map to the same key regardless of
    dict ordering.
    """
    canonical = json.dumps(parts, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry(Generic[V]):
    """A cached value plus its usage metadata."""

    key: str
    value: V
    created_at: float
    last_accessed: float = field(init=False)
    access_count: int = 0

    def __post_init__(self) -> None:
        self.last_accessed = self.created_at

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.created_at >= ttl_seconds

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed = now


class ResponseCache(Generic[V]):
    """
    Thread-safe LRU cache with TTL.

    Attributes:
        max_entries: Capacity before LRU eviction kicks in.
        ttl_seconds: Lifetime of an entry from insertion.
    """

    def __init__(
        self,
        max_entries: int = 500,
        ttl_seconds: float = 24 * 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry[V]]" = OrderedDict()
        self._lock = threading.RLock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock(), self.ttl_seconds)

    def get(self, key: str) -> Optional[V]:
        """Return the cached value, or None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if entry.is_expired(now, self.ttl_seconds):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None

            entry.touch(now)
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def get_entry(self, key: str) -> Optional[CacheEntry[V]]:
        """Peek at an entry's metadata without counting a hit."""
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, value: V) -> None:
        """Insert or replace a value, evicting the LRU entry when full."""
        with self._lock:
            now = self._clock()
            if key in self._entries:
                self._entries[key] = CacheEntry(key=key, value=value, created_at=now)
                self._entries.move_to_end(key)
                return

            while len(self._entries) >= self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Evicted cache entry {evicted_key[:12]}")

            self._entries[key] = CacheEntry(key=key, value=value, created_at=now)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """
        Drop every expired entry.

        Safe to run concurrently with reads and writes; returns the number
        of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired = [
                key
                for key, entry in self._entries.items()
                if entry.is_expired(now, self.ttl_seconds)
            ]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)

        if expired:
            logger.info(f"Purged {len(expired)} expired cache entries")
        return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "hit_rate": self._hits / lookups if lookups else 0.0,
            }
