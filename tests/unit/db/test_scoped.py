from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from common.db.context import get_current_session, in_transaction
from common.db.scoped import get_session, transaction
from packages.billing.models.database import SubscriptionEntity
from packages.billing.models.domain.enums import SubscriptionTier

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def _subscription(subscriber_id: str) -> SubscriptionEntity:
    return SubscriptionEntity(
        subscriber_id=subscriber_id,
        tier=SubscriptionTier.FREE.value,
        tokens_total=10,
        tokens_used=0,
        period_start=NOW,
        period_end=NOW + timedelta(days=30),
        created_at=NOW,
        updated_at=NOW,
    )


async def _exists(session_factory, subscriber_id: str) -> bool:
    async with session_factory() as session:
        result = await session.execute(
            select(SubscriptionEntity.id).where(
                SubscriptionEntity.subscriber_id == subscriber_id
            )
        )
        return result.scalar_one_or_none() is not None


class TestTransaction:
    """Test the transaction() context manager."""

    async def test_commits_on_success(self, test_session_factory):
        """Test that transaction commits data."""
        async with transaction() as session:
            session.add(_subscription("tx_commit"))

        assert await _exists(test_session_factory, "tx_commit")

    async def test_rolls_back_on_exception(self, test_session_factory):
        """Test that an exception discards the transaction's writes."""
        with pytest.raises(ValueError):
            async with transaction() as session:
                session.add(_subscription("tx_rollback"))
                await session.flush()
                raise ValueError("Simulated error")

        assert not await _exists(test_session_factory, "tx_rollback")

    async def test_sets_and_resets_context(self):
        """Test that the session is visible in context only inside the block."""
        assert not in_transaction()

        async with transaction() as session:
            assert in_transaction()
            assert get_current_session(readonly=False) is session

        assert not in_transaction()

    async def test_nested_transaction_joins_outer(self, test_session_factory):
        """Test that an inner transaction() reuses the outer session and its fate."""
        with pytest.raises(ValueError):
            async with transaction() as outer:
                async with transaction() as inner:
                    assert inner is outer
                    inner.add(_subscription("tx_nested"))
                # Inner exit must not have committed
                raise ValueError("outer fails")

        assert not await _exists(test_session_factory, "tx_nested")


class TestGetSession:
    """Test get_session() lazy acquisition."""

    async def test_reuses_transaction_session(self):
        """Test that get_session() inside a transaction shares its session."""
        async with transaction() as tx_session:
            async with get_session() as session:
                assert session is tx_session

    async def test_standalone_commits(self, test_session_factory):
        """Test that a standalone get_session() commits on exit."""
        async with get_session() as session:
            session.add(_subscription("standalone"))

        assert await _exists(test_session_factory, "standalone")
