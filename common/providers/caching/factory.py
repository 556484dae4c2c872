from common.core.config import Settings
from common.core.constants import CacheProvider
from common.core.otel_axiom_exporter import get_logger

from .interface import CacheInterface
from .memory_cache import MemoryCache
from .passthrough_cache import PassthroughCache
from .redis_cache import RedisCache

logger = get_logger(__name__)


def build_cache_provider(settings: Settings) -> CacheInterface:
    """
    Build the configured cache provider.

    The returned instance is owned by the caller, which is responsible for
    calling start() and stop().
    """
    if settings.cache_provider == CacheProvider.PASSTHROUGH:
        return PassthroughCache()

    if settings.cache_provider == CacheProvider.REDIS:
        logger.info("Initialized Redis cache provider")
        return RedisCache(
            redis_url=settings.redis_connection_url,
            default_ttl=settings.cache_ttl_seconds,
        )

    return MemoryCache(
        max_entries=settings.cache_max_entries,
        default_ttl=settings.cache_ttl_seconds,
        sweep_interval_seconds=settings.cache_sweep_interval_seconds,
    )
