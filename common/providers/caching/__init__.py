from .interface import CacheInterface
from .factory import build_cache_provider
from .memory_cache import MemoryCache
from .passthrough_cache import PassthroughCache
from .redis_cache import RedisCache

__all__ = [
    "CacheInterface",
    "build_cache_provider",
    "MemoryCache",
    "PassthroughCache",
    "RedisCache",
]
