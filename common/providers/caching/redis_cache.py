import json
from fnmatch import fnmatchcase
from typing import Any, Optional, List
import redis.asyncio as redis

from .interface import CacheInterface
from common.core.otel_axiom_exporter import get_logger, trace_span

logger = get_logger(__name__)


class RedisCache(CacheInterface):
    """
    Redis-backed cache shared by every API and worker process.

    Keys are tracked in per-prefix index sets so pattern deletes never need
    KEYS or SCAN over the whole database. A key "billing:balance:7:2026-03-02"
    is indexed under "billing:balance:7", so "billing:balance:7:*" resolves
    from a single set.

    Redis errors are logged and reported as misses or failed writes; the
    TTL bounds how long a lost invalidation can serve a stale value.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        default_ttl: Optional[int] = None,
        index_prefix: str = "cache_index:",
    ):
        self._redis_url = redis_url
        self._client = client
        self.default_ttl = default_ttl
        self._index_prefix = index_prefix

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self._redis_url, decode_responses=True
            )
            logger.info("Redis cache provider connected")
        return self._client

    async def stop(self) -> None:
        """Disconnect from Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis cache provider disconnected")

    def _pattern_base(self, key: str) -> str:
        # "billing:balance:7:2026-03-02" -> "billing:balance:7"
        return key.rsplit(":", 1)[0] if ":" in key else ""

    def _index_key(self, base: str) -> str:
        return f"{self._index_prefix}{base}"

    async def _add_to_index(self, key: str) -> None:
        try:
            await self._get_client().sadd(
                self._index_key(self._pattern_base(key)), key
            )
        except redis.RedisError as e:
            logger.warning(f"Failed to add key {key} to index: {e}")

    async def _remove_from_index(self, *keys: str) -> None:
        for key in keys:
            try:
                await self._get_client().srem(
                    self._index_key(self._pattern_base(key)), key
                )
            except redis.RedisError as e:
                logger.warning(f"Failed to remove key {key} from index: {e}")

    @trace_span
    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self._get_client().get(key)
        except redis.RedisError as e:
            logger.error(f"Error getting cache key {key}: {e}")
            return None

        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to deserialize cached value for key {key}: {e}")
            return None

    @trace_span
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ttl = ttl if ttl is not None else self.default_ttl
        serialized_value = json.dumps(value, default=str)

        try:
            if ttl:
                success = await self._get_client().setex(key, ttl, serialized_value)
            else:
                success = await self._get_client().set(key, serialized_value)
        except redis.RedisError as e:
            logger.error(f"Error setting cache key {key}: {e}")
            return False

        if not success:
            return False
        await self._add_to_index(key)
        logger.debug(f"Cached key {key} with TTL {ttl}")
        return True

    @trace_span
    async def delete(self, key: str) -> bool:
        try:
            deleted = await self._get_client().delete(key)
        except redis.RedisError as e:
            logger.error(f"Error deleting cache key {key}: {e}")
            return False

        await self._remove_from_index(key)
        return bool(deleted)

    @trace_span
    async def delete_pattern(self, pattern: str) -> int:
        keys = await self.get_keys(pattern)
        if not keys:
            return 0

        try:
            deleted_count = await self._get_client().delete(*keys)
        except redis.RedisError as e:
            logger.error(f"Error deleting cache pattern {pattern}: {e}")
            return 0

        await self._remove_from_index(*keys)
        logger.debug(f"Deleted {deleted_count} cache keys matching pattern {pattern}")
        return deleted_count

    @trace_span
    async def clear(self) -> bool:
        """Delete every indexed key and its index; other data in the database is kept."""
        client = self._get_client()
        try:
            async for index_key in client.scan_iter(match=f"{self._index_prefix}*"):
                members = await client.smembers(index_key)
                if members:
                    await client.delete(*members)
                await client.delete(index_key)
        except redis.RedisError as e:
            logger.error(f"Error clearing cache: {e}")
            return False

        logger.info("Cleared all cache data")
        return True

    @trace_span
    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._get_client().exists(key))
        except redis.RedisError as e:
            logger.error(f"Error checking if cache key {key} exists: {e}")
            return False

    @trace_span
    async def get_keys(self, pattern: str) -> List[str]:
        """
        Live keys matching pattern.

        Patterns must end in "*" after the last ":" segment to be resolved
        from an index; any other pattern is treated as an exact key.
        """
        if not pattern.endswith("*"):
            return [pattern] if await self.exists(pattern) else []

        base = pattern[:-1].rstrip(":")
        try:
            members = await self._get_client().smembers(self._index_key(base))
        except redis.RedisError as e:
            logger.error(f"Error getting cache keys for pattern {pattern}: {e}")
            return []

        candidates = sorted(k for k in members if fnmatchcase(k, pattern))
        if not candidates:
            return []

        try:
            values = await self._get_client().mget(candidates)
        except redis.RedisError as e:
            logger.error(f"Error getting cache keys for pattern {pattern}: {e}")
            return []

        live = [k for k, v in zip(candidates, values) if v is not None]
        expired = [k for k, v in zip(candidates, values) if v is None]
        if expired:
            await self._remove_from_index(*expired)
        return live
