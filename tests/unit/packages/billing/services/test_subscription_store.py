"""
Unit tests for the subscription store.
"""

from datetime import timedelta

import pytest

from packages.billing.exceptions import (
    InvalidLedgerTransitionError,
    LedgerEntryNotFoundError,
    SubscriptionNotFoundError,
)
from packages.billing.models.domain.enums import (
    AuthorizationStatus,
    LedgerEntryKind,
    LedgerEntryStatus,
    SubscriptionTier,
)


class TestSubscriptionLifecycle:
    """Tests for creating and updating subscriptions."""

    async def test_create_grants_tier_tokens_and_period(self, services, now):
        """Test that a new subscription starts with its tier grant and a 30 day period."""
        subscription = await services.store.create(
            "sub_new", SubscriptionTier.PRO, now=now
        )

        assert subscription.tier == SubscriptionTier.PRO
        assert subscription.tokens_total == 500000
        assert subscription.tokens_used == 0
        assert subscription.period_start == now
        assert subscription.period_end == now + timedelta(days=30)
        assert subscription.cancel_at_period_end is False
        assert subscription.authorization_status == AuthorizationStatus.NONE
        assert subscription.has_credential() is False

    async def test_get_missing_subscription_raises(self, services):
        """Test that an unknown id raises SubscriptionNotFoundError."""
        with pytest.raises(SubscriptionNotFoundError):
            await services.store.get(9999)

    async def test_get_or_create_is_lazy_and_stable(self, services):
        """Test that the first lookup creates a FREE subscription and later ones reuse it."""
        first = await services.store.get_or_create_for_subscriber("sub_lazy")
        second = await services.store.get_or_create_for_subscriber("sub_lazy")

        assert first.tier == SubscriptionTier.FREE
        assert first.tokens_total == 10
        assert second.id == first.id

    async def test_get_by_tier(self, services, free_subscription, pro_subscription):
        """Test filtering subscriptions by tier."""
        pro = await services.store.get_by_tier(SubscriptionTier.PRO)

        assert [s.id for s in pro] == [pro_subscription.id]

    async def test_set_cancel_at_period_end(self, services, pro_subscription):
        """Test that cancelling sets the flag and keeps the period."""
        updated = await services.store.set_cancel_at_period_end(pro_subscription.id)

        assert updated.cancel_at_period_end is True
        assert updated.period_end == pro_subscription.period_end

    async def test_renew_period_moves_window_and_tier(
        self, services, free_subscription, now
    ):
        """Test that renewing sets the new period and optionally the tier."""
        new_end = now + timedelta(days=30)

        await services.store.renew_period(
            free_subscription.id, now, new_end, SubscriptionTier.PREMIUM
        )

        subscription = await services.store.get(free_subscription.id)
        assert subscription.period_start == now
        assert subscription.period_end == new_end
        assert subscription.tier == SubscriptionTier.PREMIUM

    async def test_renew_period_rejects_inverted_window(
        self, services, free_subscription, now
    ):
        """Test that new_start must precede new_end."""
        with pytest.raises(ValueError):
            await services.store.renew_period(free_subscription.id, now, now)

    async def test_bind_credential_lifts_pending_cancel(
        self, services, pro_subscription
    ):
        """Test that binding a new credential marks it issued and clears cancel."""
        await services.store.set_cancel_at_period_end(pro_subscription.id)

        await services.store.bind_credential(pro_subscription.id, "pm_new", "cus_new")

        subscription = await services.store.get(pro_subscription.id)
        assert subscription.billing_credential_ref == "pm_new"
        assert subscription.gateway_customer_ref == "cus_new"
        assert subscription.authorization_status == AuthorizationStatus.CREDENTIAL_ISSUED
        assert subscription.cancel_at_period_end is False


class TestListDueForRenewal:
    """Tests for the renewal window query."""

    async def test_inside_lookahead_window_is_due(self, services, pro_subscription, now):
        """Test that a period ending in one hour is due within a 24h lookahead."""
        due = await services.store.list_due_for_renewal(now, timedelta(hours=24))

        assert [s.id for s in due] == [pro_subscription.id]

    async def test_outside_lookahead_window_is_not_due(
        self, services, pro_subscription, now
    ):
        """Test that the same subscription is not due 48 hours before its period end."""
        period_end = pro_subscription.period_end

        due = await services.store.list_due_for_renewal(
            period_end - timedelta(hours=48), timedelta(hours=24)
        )

        assert due == []

    async def test_cancelled_subscriptions_are_excluded(
        self, services, pro_subscription, now
    ):
        """Test that cancel_at_period_end removes a subscription from renewals."""
        await services.store.set_cancel_at_period_end(pro_subscription.id)

        due = await services.store.list_due_for_renewal(now, timedelta(hours=24))

        assert due == []

    async def test_subscriptions_without_credential_are_excluded(
        self, services, free_subscription, now
    ):
        """Test that a subscription with no bound credential is never due."""
        due = await services.store.list_due_for_renewal(
            now + timedelta(days=60), timedelta(hours=24)
        )

        assert due == []


class TestLedgerEntries:
    """Tests for ledger entry writes and transitions."""

    async def test_record_and_resolve_entry(self, services, pro_subscription, now):
        """Test that a pending charge can be completed exactly once."""
        entry = await services.store.record_entry(
            pro_subscription.id,
            LedgerEntryKind.CHARGE,
            LedgerEntryStatus.PENDING,
            amount_minor_units=30000,
            external_charge_ref="renewal_1_1_abc",
            plan_tier=SubscriptionTier.PRO,
            now=now,
        )

        first = await services.store.resolve_entry(
            entry.id,
            LedgerEntryStatus.PENDING,
            LedgerEntryStatus.COMPLETED,
            gateway_payment_ref="pi_1",
        )
        second = await services.store.resolve_entry(
            entry.id, LedgerEntryStatus.PENDING, LedgerEntryStatus.COMPLETED
        )

        assert first is True
        assert second is False
        stored = await services.store.get_entry(entry.id)
        assert stored.status == LedgerEntryStatus.COMPLETED
        assert stored.gateway_payment_ref == "pi_1"
        assert stored.plan_tier == SubscriptionTier.PRO

    async def test_disallowed_transition_raises(self, services, pro_subscription):
        """Test that FAILED -> COMPLETED is rejected before touching the database."""
        entry = await services.store.record_entry(
            pro_subscription.id, LedgerEntryKind.CHARGE, LedgerEntryStatus.FAILED
        )

        with pytest.raises(InvalidLedgerTransitionError):
            await services.store.resolve_entry(
                entry.id, LedgerEntryStatus.FAILED, LedgerEntryStatus.COMPLETED
            )

    async def test_missing_entry_raises(self, services):
        """Test that an unknown entry id raises LedgerEntryNotFoundError."""
        with pytest.raises(LedgerEntryNotFoundError):
            await services.store.get_entry(424242)

    async def test_payment_history_is_newest_first(
        self, services, pro_subscription, now
    ):
        """Test that history lists the newest entries first, capped at the limit."""
        for offset in range(12):
            await services.store.record_entry(
                pro_subscription.id,
                LedgerEntryKind.TOKEN_GRANT,
                LedgerEntryStatus.COMPLETED,
                token_delta=offset,
                now=now + timedelta(minutes=offset),
            )

        history = await services.store.payment_history(pro_subscription.id)

        assert len(history) == 10
        assert [e.token_delta for e in history[:3]] == [11, 10, 9]


class TestFailurePolicy:
    """Tests for auto-cancel after repeated charge failures."""

    async def _fail(self, services, subscription_id, when):
        await services.store.record_entry(
            subscription_id,
            LedgerEntryKind.CHARGE,
            LedgerEntryStatus.FAILED,
            failure_code="card_declined",
            now=when,
        )

    async def test_cancels_at_threshold(self, services, pro_subscription, now):
        """Test that the third failure inside the window sets cancel_at_period_end."""
        for days_ago in (20, 10, 1):
            await self._fail(services, pro_subscription.id, now - timedelta(days=days_ago))

        cancelled = await services.store.apply_failure_policy(
            pro_subscription.id, now, window_days=30, threshold=3
        )

        assert cancelled is True
        subscription = await services.store.get(pro_subscription.id)
        assert subscription.cancel_at_period_end is True

    async def test_old_failures_fall_out_of_window(self, services, pro_subscription, now):
        """Test that failures older than the window do not count."""
        for days_ago in (45, 10, 1):
            await self._fail(services, pro_subscription.id, now - timedelta(days=days_ago))

        cancelled = await services.store.apply_failure_policy(
            pro_subscription.id, now, window_days=30, threshold=3
        )

        assert cancelled is False

    async def test_already_cancelled_is_not_reported_again(
        self, services, pro_subscription, now
    ):
        """Test that the policy reports True only for the call that cancels."""
        for days_ago in (3, 2, 1):
            await self._fail(services, pro_subscription.id, now - timedelta(days=days_ago))

        first = await services.store.apply_failure_policy(
            pro_subscription.id, now, window_days=30, threshold=3
        )
        second = await services.store.apply_failure_policy(
            pro_subscription.id, now, window_days=30, threshold=3
        )

        assert (first, second) == (True, False)
