import uuid
from typing import Optional
import redis.asyncio as redis

from .interface import DistributedLockInterface
from common.core.otel_axiom_exporter import get_logger

logger = get_logger(__name__)

# Atomic check-and-delete: only the holder of the token may release
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

# Atomic check-and-extend
_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class RedisLock(DistributedLockInterface):
    """Redis-based distributed lock implementation (SET NX EX + token-checked release)."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        lock_prefix: str = "lock:",
    ):
        self._redis_url = redis_url
        self._client = client
        self._lock_prefix = lock_prefix

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self._redis_url, decode_responses=True
            )
            logger.info("Redis lock provider connected")
        return self._client

    async def close(self) -> None:
        """Disconnect from Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis lock provider disconnected")

    async def acquire_lock(
        self, resource_key: str, timeout_seconds: int = 30
    ) -> Optional[str]:
        lock_key = f"{self._lock_prefix}{resource_key}"
        lock_token = str(uuid.uuid4())

        # Redis errors propagate: failing open would drop serialization
        acquired = await self._get_client().set(
            lock_key,
            lock_token,
            nx=True,  # Only set if not exists
            ex=timeout_seconds,  # Expiration time
        )

        if acquired:
            logger.debug(f"Acquired lock for {resource_key} with token {lock_token}")
            return lock_token

        logger.debug(f"Failed to acquire lock for {resource_key} - already locked")
        return None

    async def release_lock(self, resource_key: str, lock_token: str) -> bool:
        lock_key = f"{self._lock_prefix}{resource_key}"

        try:
            result = await self._get_client().eval(
                _RELEASE_SCRIPT, 1, lock_key, lock_token
            )
        except redis.RedisError as e:
            # The TTL reclaims the key if the release is lost
            logger.error(f"Error releasing lock for {resource_key}: {e}")
            return False

        if result:
            logger.debug(f"Released lock for {resource_key}")
            return True

        logger.warning(
            f"Cannot release lock for {resource_key} - token mismatch or lock expired"
        )
        return False

    async def extend_lock(
        self, resource_key: str, lock_token: str, additional_seconds: int
    ) -> bool:
        lock_key = f"{self._lock_prefix}{resource_key}"

        try:
            result = await self._get_client().eval(
                _EXTEND_SCRIPT, 1, lock_key, lock_token, additional_seconds
            )
        except redis.RedisError as e:
            logger.error(f"Error extending lock for {resource_key}: {e}")
            return False

        return bool(result)

    async def is_locked(self, resource_key: str) -> bool:
        lock_key = f"{self._lock_prefix}{resource_key}"
        exists = await self._get_client().exists(lock_key)
        return bool(exists)
