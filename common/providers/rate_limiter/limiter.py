"""Global rate limiter instance for SlowAPI."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from common.core.config import settings

# Point rate_limit_storage_uri at Redis when several API pods share limits.
# - 20/second: absorbs bursts of debit calls from one client
# - 600/minute: sustained rate limit (10 req/sec average)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["20/second", "600/minute"],
    storage_uri=settings.rate_limit_storage_uri,
)
