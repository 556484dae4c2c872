from enum import Enum


class Environment(str, Enum):
    """Environment profiles."""

    LOCAL = "local"
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class LockProvider(str, Enum):
    """Lock provider types."""

    LOCAL = "local"
    REDIS = "redis"


class CacheProvider(str, Enum):
    """Cache provider types."""

    MEMORY = "memory"
    PASSTHROUGH = "passthrough"
    REDIS = "redis"
