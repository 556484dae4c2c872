from typing import Any, Optional, List

from .interface import CacheInterface
from common.core.otel_axiom_exporter import get_logger

logger = get_logger(__name__)


class PassthroughCache(CacheInterface):
    """Cache that stores nothing; every read misses (caching disabled)."""

    def __init__(self):
        logger.info("Passthrough cache provider initialized (caching disabled)")

    async def get(self, key: str) -> Optional[Any]:
        return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return True

    async def delete(self, key: str) -> bool:
        return False

    async def delete_pattern(self, pattern: str) -> int:
        return 0

    async def clear(self) -> bool:
        return True

    async def exists(self, key: str) -> bool:
        return False

    async def get_keys(self, pattern: str) -> List[str]:
        return []
