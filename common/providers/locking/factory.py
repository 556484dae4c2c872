from common.core.config import Settings
from common.core.constants import LockProvider
from common.core.otel_axiom_exporter import get_logger

from .interface import DistributedLockInterface
from .local_lock import LocalLock
from .redis_lock import RedisLock

logger = get_logger(__name__)


def build_lock_provider(settings: Settings) -> DistributedLockInterface:
    """
    Build the configured lock provider.

    The caller owns the instance (the API lifespan or the worker), there is
    no module-level singleton.
    """
    if settings.lock_provider == LockProvider.REDIS:
        logger.info("Initialized Redis lock provider")
        return RedisLock(
            redis_url=settings.redis_connection_url, lock_prefix="billing:lock:"
        )

    logger.info("Initialized in-process lock provider")
    return LocalLock()
