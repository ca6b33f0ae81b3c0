"""
ResponseCache - In-memory TTL cache for idempotent MAPI reads.

Features:
- Keyed by the final request path (query string included)
- Passive expiry by TTL, early removal by `set(key, None)` or `delete`
- Disabled mode where every lookup misses and every store is a no-op
- Async-safe: all access goes through one asyncio.Lock
"""

import asyncio
import copy
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

DEFAULT_TTL = timedelta(minutes=5)


@dataclass
class CacheEntry:
    """A single cached response body."""

    data: Any
    timestamp: datetime
    ttl: timedelta

    def is_expired(self) -> bool:
        """Check if entry is past its TTL."""
        return datetime.now() > self.timestamp + self.ttl


class ResponseCache:
    """
    Read-through cache used by MapiClient.

    Values are deep-copied on the way in and out, so callers never share
    a cached object.

    There is no size bound: the number of entries is bounded by the
    number of distinct resource paths queried, and entries expire by TTL.

    Usage:
        cache = ResponseCache(ttl=timedelta(minutes=1))

        data = await cache.get("/machines?owner_uuid=abc")
        if data is None:
            data = await fetch()
            await cache.set("/machines?owner_uuid=abc", data)

        # Deletes drop the entry early
        await cache.set("/machines/123", None)
    """

    def __init__(
        self,
        enabled: bool = True,
        ttl: timedelta | None = None,
        debug: bool = False,
    ):
        self._memory: dict[str, CacheEntry] = {}
        self._enabled = enabled
        self._ttl = ttl if ttl is not None else DEFAULT_TTL
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def get(self, key: str) -> Any | None:
        """Return the cached value for key, or None when absent or expired."""
        if not self._enabled:
            return None

        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key}")
                return None

            if entry.is_expired():
                del self._memory[key]
                self._stats.misses += 1
                self._log(f"EXPIRED: {key}")
                return None

            self._stats.hits += 1
            self._log(f"HIT: {key}")
            return copy.deepcopy(entry.data)

    async def set(self, key: str, data: Any) -> None:
        """
        Store data under key.

        Storing None removes the entry instead.
        """
        if not self._enabled:
            return

        if data is None:
            await self.delete(key)
            return

        async with self._lock:
            self._memory[key] = CacheEntry(
                data=copy.deepcopy(data), timestamp=datetime.now(), ttl=self._ttl
            )
            self._log(f"SET: {key} (TTL: {self._ttl.total_seconds()}s)")

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if not self._enabled:
            return False

        async with self._lock:
            if key in self._memory:
                del self._memory[key]
                self._stats.invalidations += 1
                self._log(f"DELETE: {key}")
                return True
            return False

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            expired_keys = [k for k, v in self._memory.items() if v.is_expired()]
            for key in expired_keys:
                del self._memory[key]

            if expired_keys:
                self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

            return len(expired_keys)

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ResponseCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "invalidations": self.invalidations,
            "size": self.size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
