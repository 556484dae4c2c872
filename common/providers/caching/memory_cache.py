import asyncio
import time
import fnmatch
from collections import OrderedDict
from typing import Any, Optional, List
from dataclasses import dataclass

from .interface import CacheInterface
from common.core.otel_axiom_exporter import get_logger

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """Represents a cached entry with expiration."""

    value: Any
    expires_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if this entry has expired."""
        if self.expires_at is None:
            return False
        return (now if now is not None else time.monotonic()) >= self.expires_at


class MemoryCache(CacheInterface):
    """
    Size-bounded in-memory TTL cache.

    - At most max_entries live at once; inserting into a full cache evicts the
      oldest entry first.
    - Every entry gets default_ttl unless set() passes its own.
    - evict_expired() drops expired entries on demand; start() runs it on a
      timer until stop() is called. Whoever builds the cache owns that task.
    """

    def __init__(
        self,
        max_entries: int = 100,
        default_ttl: Optional[int] = 60,
        sweep_interval_seconds: float = 60.0,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self.sweep_interval_seconds = sweep_interval_seconds
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._sweeper: Optional[asyncio.Task] = None
        logger.info(
            "Memory cache provider initialized",
            extra={"max_entries": max_entries, "default_ttl": default_ttl},
        )

    def __len__(self) -> int:
        return len(self._cache)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the periodic expiry sweep."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the sweep task and drop all entries."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        self._cache.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.evict_expired()

    def evict_expired(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        now = time.monotonic()
        expired_keys = [
            key for key, entry in self._cache.items() if entry.is_expired(now)
        ]
        for key in expired_keys:
            del self._cache[key]

        if expired_keys:
            logger.debug(f"Evicted {len(expired_keys)} expired cache entries")
        return len(expired_keys)

    def _evict_oldest(self) -> None:
        key, _ = self._cache.popitem(last=False)
        logger.debug(f"Cache full, evicted oldest key {key}")

    # =========================================================================
    # CacheInterface
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)

        if entry is None:
            return None

        if entry.is_expired():
            del self._cache[key]
            return None

        return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        effective_ttl = ttl if ttl is not None else self.default_ttl
        expires_at = (
            time.monotonic() + effective_ttl if effective_ttl is not None else None
        )

        if key in self._cache:
            # Re-inserting moves the key to the newest position
            del self._cache[key]
        else:
            if len(self._cache) >= self.max_entries:
                self.evict_expired()
            while len(self._cache) >= self.max_entries:
                self._evict_oldest()

        self._cache[key] = CacheEntry(value=value, expires_at=expires_at)
        return True

    async def delete(self, key: str) -> bool:
        if key in self._cache:
            del self._cache[key]
            return True
        return False

    async def delete_pattern(self, pattern: str) -> int:
        matching_keys = [key for key in self._cache if fnmatch.fnmatch(key, pattern)]
        for key in matching_keys:
            del self._cache[key]

        if matching_keys:
            logger.debug(
                f"Deleted {len(matching_keys)} cache keys matching pattern {pattern}"
            )
        return len(matching_keys)

    async def clear(self) -> bool:
        self._cache.clear()
        return True

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def get_keys(self, pattern: str) -> List[str]:
        self.evict_expired()
        return [key for key in self._cache if fnmatch.fnmatch(key, pattern)]
