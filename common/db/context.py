"""
Database session context management.

Holds the current session in ContextVars so repositories can share the
session of an enclosing transaction() without it being passed around:
- Reuses sessions within explicit transactions
- Auto-acquires/releases for one-off operations
- Supports reader/writer separation

Usage:
    # Explicit transaction - ledger writes share one session
    async with transaction():
        await subscription_repo.add_usage(subscription_id, tokens)
        await usage_repo.increment(subscription_id, today, units)

    # Force readonly for entire call chain
    @readonly
    async def build_history_report(subscription_id: int):
        ...  # All DB ops use read session
"""

from contextvars import ContextVar
from functools import wraps
from typing import Optional, Callable, TypeVar, ParamSpec

from sqlalchemy.ext.asyncio import AsyncSession


# =============================================================================
# Context Variables
# =============================================================================

# Holds the current write session (if inside a write transaction)
_write_session: ContextVar[Optional[AsyncSession]] = ContextVar(
    "db_write_session", default=None
)

# Holds the current read session (if inside a read transaction)
_read_session: ContextVar[Optional[AsyncSession]] = ContextVar(
    "db_read_session", default=None
)

# Forces all operations in this context to use readonly
_force_readonly: ContextVar[bool] = ContextVar("db_force_readonly", default=False)


# =============================================================================
# Context Accessors
# =============================================================================


def is_readonly_forced() -> bool:
    """Check if current context is forced to readonly."""
    return _force_readonly.get()


def get_current_session(readonly: bool = False) -> Optional[AsyncSession]:
    """
    Get the current session from context, if any.

    Args:
        readonly: If True, get read session. If False, get write session.
                  Note: if readonly is forced via decorator, always returns read session.

    Returns:
        The current session if inside a transaction, None otherwise.
    """
    effective_readonly = readonly or is_readonly_forced()
    if effective_readonly:
        return _read_session.get()
    return _write_session.get()


def set_current_session(session: AsyncSession, readonly: bool = False) -> object:
    """Set session in context and return the reset token."""
    if readonly:
        return _read_session.set(session)
    return _write_session.set(session)


def reset_current_session(token: object, readonly: bool = False) -> None:
    """Reset session context using token from set_current_session."""
    if readonly:
        _read_session.reset(token)
    else:
        _write_session.reset(token)


def in_transaction(readonly: bool = False) -> bool:
    """Check if we're currently inside a transaction of the given type."""
    return get_current_session(readonly=readonly) is not None


# =============================================================================
# Decorators
# =============================================================================

P = ParamSpec("P")
T = TypeVar("T")


def readonly(func: Callable[P, T]) -> Callable[P, T]:
    """Decorator that forces all DB operations in this call chain to use readonly sessions."""

    @wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        token = _force_readonly.set(True)
        try:
            return await func(*args, **kwargs)
        finally:
            _force_readonly.reset(token)

    return wrapper
