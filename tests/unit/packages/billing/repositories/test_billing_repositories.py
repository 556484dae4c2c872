"""
Unit tests for billing repositories against the test database.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from packages.billing.models.domain.enums import (
    AuthorizationStatus,
    LedgerEntryKind,
    LedgerEntryStatus,
    SubscriptionTier,
)
from packages.billing.models.domain.ledger import LedgerEntryCreateModel
from packages.billing.models.domain.subscription import SubscriptionCreateModel
from packages.billing.repositories.daily_usage_repository import DailyUsageRepository
from packages.billing.repositories.ledger_entry_repository import LedgerEntryRepository
from packages.billing.repositories.subscription_repository import SubscriptionRepository

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
async def subscription(test_db: AsyncSession):
    repo = SubscriptionRepository(test_db)
    return await repo.create(
        SubscriptionCreateModel(
            subscriber_id="repo_sub",
            tier=SubscriptionTier.PRO,
            tokens_total=100,
            period_start=NOW,
            period_end=NOW + timedelta(days=30),
            created_at=NOW,
            updated_at=NOW,
        )
    )


class TestSubscriptionRepository:
    """Test SubscriptionRepository operations."""

    async def test_create_and_lookup(self, test_db: AsyncSession, subscription):
        """Test creating a subscription and finding it by subscriber id."""
        repo = SubscriptionRepository(test_db)

        found = await repo.get_by_subscriber_id("repo_sub")

        assert found.id == subscription.id
        assert found.tier == SubscriptionTier.PRO
        assert found.authorization_status == AuthorizationStatus.NONE
        assert found.period_end == NOW + timedelta(days=30)

    async def test_add_usage_is_conditional(self, test_db: AsyncSession, subscription):
        """Test that usage is only added while the balance covers it."""
        repo = SubscriptionRepository(test_db)

        assert await repo.add_usage(subscription.id, 60) is True
        assert await repo.add_usage(subscription.id, 41) is False
        assert await repo.add_usage(subscription.id, 40) is True

        updated = await repo.get(subscription.id)
        assert updated.tokens_used == 100
        assert updated.tokens_remaining == 0

    async def test_add_tokens_and_reset(self, test_db: AsyncSession, subscription):
        """Test credits raise the total and a reset restores a clean grant."""
        repo = SubscriptionRepository(test_db)
        await repo.add_usage(subscription.id, 30)

        await repo.add_tokens(subscription.id, 50)
        assert (await repo.get(subscription.id)).tokens_total == 150

        await repo.reset_balance(subscription.id, 500)
        reset = await repo.get(subscription.id)
        assert (reset.tokens_total, reset.tokens_used) == (500, 0)

    async def test_authorization_request_and_clear(
        self, test_db: AsyncSession, subscription
    ):
        """Test recording and clearing the pending tier."""
        repo = SubscriptionRepository(test_db)

        await repo.set_authorization_requested(
            subscription.id, SubscriptionTier.PREMIUM, 100000, "cus_repo"
        )
        requested = await repo.get(subscription.id)
        assert requested.pending_tier == SubscriptionTier.PREMIUM
        assert requested.gateway_customer_ref == "cus_repo"

        await repo.clear_pending_tier(subscription.id)
        cleared = await repo.get(subscription.id)
        assert cleared.pending_tier is None
        assert cleared.pending_amount_minor_units is None

    async def test_update_missing_subscription_returns_false(self, test_db: AsyncSession):
        """Test that updates on unknown ids report no row changed."""
        repo = SubscriptionRepository(test_db)

        assert await repo.set_cancel_at_period_end(9999, True) is False


class TestLedgerEntryRepository:
    """Test LedgerEntryRepository operations."""

    async def _entry(self, test_db, subscription_id, **fields):
        values = dict(
            subscription_id=subscription_id,
            kind=LedgerEntryKind.CHARGE,
            status=LedgerEntryStatus.PENDING,
            amount_minor_units=30000,
            created_at=NOW,
            updated_at=NOW,
        )
        values.update(fields)
        return await LedgerEntryRepository(test_db).create(
            LedgerEntryCreateModel(**values)
        )

    async def test_resolve_is_compare_and_set(self, test_db: AsyncSession, subscription):
        """Test that resolve only succeeds from the expected status."""
        entry = await self._entry(test_db, subscription.id, external_charge_ref="ref_1")
        repo = LedgerEntryRepository(test_db)

        assert await repo.resolve(
            entry.id, LedgerEntryStatus.PENDING, LedgerEntryStatus.FAILED,
            failure_code="card_declined",
        )
        assert not await repo.resolve(
            entry.id, LedgerEntryStatus.PENDING, LedgerEntryStatus.COMPLETED
        )

        stored = await repo.find_by_charge_ref("ref_1")
        assert stored.status == LedgerEntryStatus.FAILED
        assert stored.failure_code == "card_declined"

    async def test_find_by_payment_ref_skips_refunds(
        self, test_db: AsyncSession, subscription
    ):
        """Test that a refund sharing the payment ref is not returned as the charge."""
        charge = await self._entry(
            test_db,
            subscription.id,
            status=LedgerEntryStatus.COMPLETED,
            gateway_payment_ref="pi_shared",
        )
        await self._entry(
            test_db,
            subscription.id,
            kind=LedgerEntryKind.REFUND,
            status=LedgerEntryStatus.COMPLETED,
            amount_minor_units=-30000,
            gateway_payment_ref="pi_shared",
        )

        found = await LedgerEntryRepository(test_db).find_by_payment_ref("pi_shared")

        assert found.id == charge.id

    async def test_failure_and_pending_counters(
        self, test_db: AsyncSession, subscription
    ):
        """Test the time-windowed failure count and pending check."""
        repo = LedgerEntryRepository(test_db)
        await self._entry(
            test_db, subscription.id, status=LedgerEntryStatus.FAILED,
            created_at=NOW - timedelta(days=40),
        )
        await self._entry(test_db, subscription.id, status=LedgerEntryStatus.FAILED)
        await self._entry(test_db, subscription.id)

        assert await repo.count_failed_charges_since(
            subscription.id, NOW - timedelta(days=30)
        ) == 1
        assert await repo.has_pending_charge_since(
            subscription.id, NOW - timedelta(hours=1)
        )
        assert not await repo.has_pending_charge_since(
            subscription.id, NOW + timedelta(hours=1)
        )

    async def test_stale_timeouts_count_as_failures(
        self, test_db: AsyncSession, subscription
    ):
        """Test that only timed-out pending charges older than the cutoff are counted."""
        repo = LedgerEntryRepository(test_db)
        await self._entry(
            test_db, subscription.id, failure_code="GATEWAY_TIMEOUT",
            created_at=NOW - timedelta(days=2),
        )
        await self._entry(test_db, subscription.id, failure_code="GATEWAY_TIMEOUT")
        await self._entry(
            test_db, subscription.id, created_at=NOW - timedelta(days=2)
        )
        await self._entry(test_db, subscription.id, status=LedgerEntryStatus.FAILED)

        since = NOW - timedelta(days=30)
        assert await repo.count_failed_charges_since(subscription.id, since) == 1
        assert await repo.count_failed_charges_since(
            subscription.id, since, timed_out_before=NOW - timedelta(hours=24)
        ) == 2

    async def test_list_filters_by_kind(self, test_db: AsyncSession, subscription):
        """Test listing entries of one kind."""
        await self._entry(test_db, subscription.id)
        await self._entry(
            test_db, subscription.id,
            kind=LedgerEntryKind.TOKEN_GRANT,
            status=LedgerEntryStatus.COMPLETED,
            amount_minor_units=0,
            token_delta=20,
        )

        grants = await LedgerEntryRepository(test_db).list_for_subscription(
            subscription.id, kind=LedgerEntryKind.TOKEN_GRANT
        )

        assert [g.token_delta for g in grants] == [20]


class TestDailyUsageRepository:
    """Test DailyUsageRepository operations."""

    async def test_increment_creates_then_accumulates(
        self, test_db: AsyncSession, subscription
    ):
        """Test that the first increment creates the counter and later ones add to it."""
        repo = DailyUsageRepository(test_db)
        today = NOW.date()

        assert await repo.units_for_date(subscription.id, today) == 0
        assert await repo.increment(subscription.id, today, 7) == 7
        assert await repo.increment(subscription.id, today, 5) == 12
        assert await repo.units_for_date(subscription.id, today + timedelta(days=1)) == 0
