"""
Context-managed lock holding.

hold_lock() acquires a lock from a provider, releases it on exit, and is
re-entrant within one task: if the current context already holds the key,
nested calls pass straight through. This lets a composite operation that
holds a subscription lock call other operations that take the same lock.

Usage:
    async with hold_lock(lock_provider, "subscription:42"):
        ...  # exclusive for this subscription
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncGenerator, FrozenSet

from common.core.exceptions import LockTimeoutError
from common.core.otel_axiom_exporter import get_logger
from .interface import DistributedLockInterface

logger = get_logger(__name__)

_held_locks: ContextVar[FrozenSet[str]] = ContextVar("held_locks", default=frozenset())


def is_held(resource_key: str) -> bool:
    """Check if the current context already holds the lock."""
    return resource_key in _held_locks.get()


@asynccontextmanager
async def hold_lock(
    provider: DistributedLockInterface,
    resource_key: str,
    lock_ttl_seconds: int = 60,
    acquire_timeout_seconds: float = 10.0,
) -> AsyncGenerator[None, None]:
    """
    Hold a lock for the duration of the block.

    Raises:
        LockTimeoutError: If the lock could not be acquired in time
    """
    held = _held_locks.get()
    if resource_key in held:
        yield
        return

    lock_token = await provider.acquire_lock_with_retry(
        resource_key,
        lock_ttl_seconds=lock_ttl_seconds,
        acquire_timeout_seconds=acquire_timeout_seconds,
    )
    if lock_token is None:
        logger.warning(
            f"Timed out waiting for lock on {resource_key}",
            extra={"resource_key": resource_key},
        )
        raise LockTimeoutError(f"{resource_key} is busy, retry shortly")

    context_token = _held_locks.set(held | {resource_key})
    try:
        yield
    finally:
        _held_locks.reset(context_token)
        await provider.release_lock(resource_key, lock_token)
