import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis

from common.core.config import Settings
from common.core.constants import CacheProvider
from common.providers.caching import build_cache_provider
from common.providers.caching.memory_cache import MemoryCache
from common.providers.caching.passthrough_cache import PassthroughCache
from common.providers.caching.redis_cache import RedisCache


class TestRedisCache:
    """Unit tests for the Redis-backed cache."""

    @pytest.fixture
    def mock_redis_client(self):
        return AsyncMock(spec=redis.Redis)

    @pytest.fixture
    def cache(self, mock_redis_client):
        return RedisCache(client=mock_redis_client, default_ttl=60)

    async def test_set_uses_default_ttl_and_indexes_key(self, cache, mock_redis_client):
        """Test that set serializes to JSON, applies the TTL and indexes the key."""
        mock_redis_client.setex = AsyncMock(return_value=True)

        assert await cache.set("billing:balance:1:2026-03-02", {"balance": 10}) is True

        mock_redis_client.setex.assert_called_once_with(
            "billing:balance:1:2026-03-02", 60, json.dumps({"balance": 10})
        )
        mock_redis_client.sadd.assert_called_once_with(
            "cache_index:billing:balance:1", "billing:balance:1:2026-03-02"
        )

    async def test_set_without_ttl(self, mock_redis_client):
        """Test that a cache without a default TTL stores keys without expiry."""
        cache = RedisCache(client=mock_redis_client)
        mock_redis_client.set = AsyncMock(return_value=True)

        assert await cache.set("k", 1) is True

        mock_redis_client.set.assert_called_once_with("k", "1")
        mock_redis_client.setex.assert_not_called()

    async def test_get_deserializes(self, cache, mock_redis_client):
        """Test that stored JSON is returned as Python data."""
        mock_redis_client.get = AsyncMock(return_value='{"balance": 10}')

        assert await cache.get("billing:balance:1:2026-03-02") == {"balance": 10}

    async def test_get_miss(self, cache, mock_redis_client):
        """Test that a missing key is None."""
        mock_redis_client.get = AsyncMock(return_value=None)

        assert await cache.get("missing") is None

    async def test_corrupt_value_is_a_miss(self, cache, mock_redis_client):
        """Test that an undecodable value is treated as a miss."""
        mock_redis_client.get = AsyncMock(return_value="{not json")

        assert await cache.get("k") is None

    async def test_redis_errors_are_misses(self, cache, mock_redis_client):
        """Test that an unreachable Redis degrades to cache misses and failed writes."""
        mock_redis_client.get = AsyncMock(side_effect=redis.ConnectionError("down"))
        mock_redis_client.setex = AsyncMock(side_effect=redis.ConnectionError("down"))

        assert await cache.get("k") is None
        assert await cache.set("k", 1) is False

    async def test_delete_pattern_uses_index(self, cache, mock_redis_client):
        """Test that pattern deletes resolve keys from the index set."""
        mock_redis_client.smembers = AsyncMock(
            return_value={"billing:balance:1:2026-03-02", "billing:balance:1:2026-03-01"}
        )
        mock_redis_client.mget = AsyncMock(return_value=["{}", "{}"])
        mock_redis_client.delete = AsyncMock(return_value=2)

        deleted = await cache.delete_pattern("billing:balance:1:*")

        assert deleted == 2
        mock_redis_client.smembers.assert_called_once_with("cache_index:billing:balance:1")
        mock_redis_client.delete.assert_called_once_with(
            "billing:balance:1:2026-03-01", "billing:balance:1:2026-03-02"
        )
        mock_redis_client.keys.assert_not_called()

    async def test_get_keys_prunes_expired_members(self, cache, mock_redis_client):
        """Test that index members whose keys expired are dropped from the index."""
        mock_redis_client.smembers = AsyncMock(
            return_value={"billing:balance:1:2026-03-01", "billing:balance:1:2026-03-02"}
        )
        mock_redis_client.mget = AsyncMock(return_value=[None, "{}"])

        keys = await cache.get_keys("billing:balance:1:*")

        assert keys == ["billing:balance:1:2026-03-02"]
        mock_redis_client.srem.assert_called_once_with(
            "cache_index:billing:balance:1", "billing:balance:1:2026-03-01"
        )

    async def test_delete_pattern_with_no_keys(self, cache, mock_redis_client):
        """Test that an empty index deletes nothing."""
        mock_redis_client.smembers = AsyncMock(return_value=set())

        assert await cache.delete_pattern("billing:balance:9:*") == 0
        mock_redis_client.delete.assert_not_called()

    async def test_clear_only_touches_indexed_keys(self, cache, mock_redis_client):
        """Test that clear deletes indexed keys and indexes, not the whole database."""

        async def index_keys(match=None):
            yield "cache_index:billing:balance:1"

        mock_redis_client.scan_iter = MagicMock(side_effect=index_keys)
        mock_redis_client.smembers = AsyncMock(
            return_value={"billing:balance:1:2026-03-02"}
        )

        assert await cache.clear() is True

        mock_redis_client.delete.assert_any_call("billing:balance:1:2026-03-02")
        mock_redis_client.delete.assert_any_call("cache_index:billing:balance:1")
        mock_redis_client.flushdb.assert_not_called()

    async def test_stop_closes_client(self, cache, mock_redis_client):
        """Test that stop() disconnects from Redis."""
        await cache.stop()

        mock_redis_client.aclose.assert_called_once()


class TestBuildCacheProvider:
    """Test the cache provider factory."""

    def test_redis(self):
        """Test that the redis setting builds a RedisCache with the cache TTL."""
        cache = build_cache_provider(
            Settings(cache_provider=CacheProvider.REDIS, cache_ttl_seconds=15)
        )

        assert isinstance(cache, RedisCache)
        assert cache.default_ttl == 15

    def test_memory_is_default(self):
        """Test that the default provider is the in-process cache."""
        assert isinstance(build_cache_provider(Settings()), MemoryCache)

    def test_passthrough(self):
        """Test that caching can be disabled."""
        cache = build_cache_provider(Settings(cache_provider=CacheProvider.PASSTHROUGH))

        assert isinstance(cache, PassthroughCache)
