import time
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from .interface import DistributedLockInterface
from common.core.otel_axiom_exporter import get_logger

logger = get_logger(__name__)


@dataclass
class _Holder:
    token: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class LocalLock(DistributedLockInterface):
    """
    In-process lock with the same semantics as the Redis provider.

    Acquire is set-if-absent with a TTL and release/extend are token-checked.
    Only serializes callers within one process; use RedisLock when several
    API pods or workers touch the same subscriptions.
    """

    def __init__(self):
        self._holders: Dict[str, _Holder] = {}

    def _live_holder(self, resource_key: str) -> Optional[_Holder]:
        holder = self._holders.get(resource_key)
        if holder is not None and holder.is_expired(time.monotonic()):
            logger.warning(f"Lock for {resource_key} expired before release")
            del self._holders[resource_key]
            return None
        return holder

    async def acquire_lock(
        self, resource_key: str, timeout_seconds: int = 30
    ) -> Optional[str]:
        # No await between check and set, so this is atomic on the event loop
        if self._live_holder(resource_key) is not None:
            return None

        lock_token = str(uuid.uuid4())
        self._holders[resource_key] = _Holder(
            token=lock_token, expires_at=time.monotonic() + timeout_seconds
        )
        logger.debug(f"Acquired lock for {resource_key}")
        return lock_token

    async def release_lock(self, resource_key: str, lock_token: str) -> bool:
        holder = self._live_holder(resource_key)
        if holder is None or holder.token != lock_token:
            logger.warning(
                f"Cannot release lock for {resource_key} - token mismatch or lock expired"
            )
            return False
        del self._holders[resource_key]
        logger.debug(f"Released lock for {resource_key}")
        return True

    async def extend_lock(
        self, resource_key: str, lock_token: str, additional_seconds: int
    ) -> bool:
        holder = self._live_holder(resource_key)
        if holder is None or holder.token != lock_token:
            return False
        holder.expires_at = time.monotonic() + additional_seconds
        return True

    async def is_locked(self, resource_key: str) -> bool:
        return self._live_holder(resource_key) is not None
