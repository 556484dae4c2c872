"""
Unit tests for gateway event reconciliation.

Events are replayed and delivered out of order; every case checks that the
ledger ends up in the same state as a single in-order delivery.
"""

from datetime import timedelta

import pytest

from packages.billing.models.domain.enums import (
    ChargeReason,
    LedgerEntryKind,
    LedgerEntryStatus,
    SubscriptionTier,
)
from packages.billing.models.domain.events import (
    ChargeCanceled,
    ChargeFailed,
    ChargeSucceeded,
    CredentialIssued,
    UnknownEvent,
)
from packages.billing.models.domain.results import ReconcileOutcome


@pytest.fixture
async def pending_charge(services, gateway, pro_subscription, now):
    """A renewal charge the gateway accepted but has not settled."""
    gateway.settled = False
    outcome = await services.charges.charge(
        pro_subscription, SubscriptionTier.PRO, ChargeReason.RENEWAL, now=now
    )
    gateway.settled = True
    return await services.store.find_entry_by_charge_ref(outcome.charge_ref)


class TestChargeSucceeded:
    """Tests for CHARGE_SUCCEEDED events."""

    async def test_completes_pending_charge_exactly_once(
        self, services, pending_charge, pro_subscription, now
    ):
        """Test that replaying the same success event applies it once."""
        event = ChargeSucceeded(
            event_id="evt_1",
            charge_ref=pending_charge.external_charge_ref,
            payment_ref="pi_settled",
            customer_ref="cus_pro",
            amount_minor_units=30000,
            plan_tier="pro",
        )

        first = await services.reconciler.reconcile(event, now=now)
        await services.ledger.debit(pro_subscription.id, 10, now=now)
        second = await services.reconciler.reconcile(
            event, now=now + timedelta(days=1)
        )

        assert first.outcome == ReconcileOutcome.APPLIED
        assert second.outcome == ReconcileOutcome.DUPLICATE
        assert first.ledger_entry_id == pending_charge.id

        entry = await services.store.get_entry(pending_charge.id)
        assert entry.status == LedgerEntryStatus.COMPLETED
        assert entry.gateway_payment_ref == "pi_settled"

        subscription = await services.store.get(pro_subscription.id)
        assert subscription.period_end == now + timedelta(days=30)
        assert subscription.tokens_used == 10

    async def test_unknown_charge_is_created_completed(
        self, services, pro_subscription, now
    ):
        """Test that a success for a charge we never recorded is created terminal."""
        event = ChargeSucceeded(
            event_id="evt_2",
            charge_ref="initial_lost_1",
            payment_ref="pi_lost",
            customer_ref="cus_pro",
            amount_minor_units=100000,
            plan_tier="premium",
        )

        result = await services.reconciler.reconcile(event, now=now)
        replay = await services.reconciler.reconcile(event, now=now)

        assert result.outcome == ReconcileOutcome.CREATED
        assert replay.outcome == ReconcileOutcome.DUPLICATE
        assert replay.ledger_entry_id == result.ledger_entry_id

        entry = await services.store.get_entry(result.ledger_entry_id)
        assert entry.status == LedgerEntryStatus.COMPLETED
        assert entry.plan_tier == SubscriptionTier.PREMIUM
        assert entry.amount_minor_units == 100000

        subscription = await services.store.get(pro_subscription.id)
        assert subscription.tier == SubscriptionTier.PREMIUM
        assert subscription.tokens_total == 2000000

    async def test_found_by_payment_ref_when_charge_ref_missing(
        self, services, gateway, pro_subscription, now
    ):
        """Test that events without metadata are matched on the payment ref."""
        outcome = await services.charges.charge(
            pro_subscription, SubscriptionTier.PRO, ChargeReason.RENEWAL, now=now
        )
        entry = await services.store.find_entry_by_charge_ref(outcome.charge_ref)

        result = await services.reconciler.reconcile(
            ChargeSucceeded(
                event_id="evt_3",
                payment_ref=entry.gateway_payment_ref,
                customer_ref="cus_pro",
                amount_minor_units=30000,
            ),
            now=now,
        )

        assert result.outcome == ReconcileOutcome.DUPLICATE
        assert result.ledger_entry_id == entry.id

    async def test_unknown_customer_is_ignored(self, services, now):
        """Test that an event for a customer we do not know changes nothing."""
        result = await services.reconciler.reconcile(
            ChargeSucceeded(
                event_id="evt_4",
                charge_ref="renewal_other",
                payment_ref="pi_other",
                customer_ref="cus_someone_else",
                amount_minor_units=30000,
            ),
            now=now,
        )

        assert result.outcome == ReconcileOutcome.IGNORED
        assert result.ledger_entry_id is None


class TestChargeFailed:
    """Tests for CHARGE_FAILED events."""

    async def test_fails_pending_charge(self, services, pending_charge, now):
        """Test that a failure event moves the pending charge to FAILED."""
        result = await services.reconciler.reconcile(
            ChargeFailed(
                event_id="evt_5",
                charge_ref=pending_charge.external_charge_ref,
                payment_ref="pi_declined",
                customer_ref="cus_pro",
                failure_code="card_declined",
            ),
            now=now,
        )

        assert result.outcome == ReconcileOutcome.APPLIED
        entry = await services.store.get_entry(pending_charge.id)
        assert entry.status == LedgerEntryStatus.FAILED
        assert entry.failure_code == "card_declined"

    async def test_failure_after_success_is_duplicate(
        self, services, pending_charge, now
    ):
        """Test that a late failure cannot undo a completed charge."""
        await services.reconciler.reconcile(
            ChargeSucceeded(
                event_id="evt_6",
                charge_ref=pending_charge.external_charge_ref,
                payment_ref="pi_ok",
                customer_ref="cus_pro",
                plan_tier="pro",
            ),
            now=now,
        )

        result = await services.reconciler.reconcile(
            ChargeFailed(
                event_id="evt_7",
                charge_ref=pending_charge.external_charge_ref,
                payment_ref="pi_ok",
                customer_ref="cus_pro",
                failure_code="card_declined",
            ),
            now=now,
        )

        assert result.outcome == ReconcileOutcome.DUPLICATE
        entry = await services.store.get_entry(pending_charge.id)
        assert entry.status == LedgerEntryStatus.COMPLETED

    async def test_created_failures_feed_the_failure_policy(
        self, services, pro_subscription, now
    ):
        """Test that failures recorded from events count toward auto-cancel."""
        for i in range(3):
            result = await services.reconciler.reconcile(
                ChargeFailed(
                    event_id=f"evt_fail_{i}",
                    charge_ref=f"renewal_unseen_{i}",
                    payment_ref=f"pi_unseen_{i}",
                    customer_ref="cus_pro",
                    failure_code="card_declined",
                ),
                now=now,
            )
            assert result.outcome == ReconcileOutcome.CREATED

        subscription = await services.store.get(pro_subscription.id)
        assert subscription.cancel_at_period_end is True


class TestChargeCanceled:
    """Tests for CHARGE_CANCELED events."""

    async def test_cancels_completed_charge_and_records_refund(
        self, services, pro_subscription, now
    ):
        """Test that a gateway reversal cancels the charge and writes a refund entry."""
        outcome = await services.charges.charge(
            pro_subscription, SubscriptionTier.PRO, ChargeReason.RENEWAL, now=now
        )
        entry = await services.store.find_entry_by_charge_ref(outcome.charge_ref)
        event = ChargeCanceled(
            event_id="evt_8",
            payment_ref=entry.gateway_payment_ref,
            customer_ref="cus_pro",
            amount_minor_units=30000,
        )

        first = await services.reconciler.reconcile(event, now=now)
        second = await services.reconciler.reconcile(event, now=now)

        assert first.outcome == ReconcileOutcome.APPLIED
        assert second.outcome == ReconcileOutcome.DUPLICATE

        cancelled = await services.store.get_entry(entry.id)
        assert cancelled.status == LedgerEntryStatus.CANCELLED

        refund = await services.store.find_entry_by_charge_ref(
            f"{outcome.charge_ref}:refund"
        )
        assert refund.kind == LedgerEntryKind.REFUND
        assert refund.amount_minor_units == -30000

    async def test_cancel_of_pending_charge_is_not_applied(
        self, services, pending_charge, now
    ):
        """Test that only completed charges can be cancelled."""
        result = await services.reconciler.reconcile(
            ChargeCanceled(
                event_id="evt_9",
                charge_ref=pending_charge.external_charge_ref,
                payment_ref="pi_x",
                customer_ref="cus_pro",
            ),
            now=now,
        )

        assert result.outcome == ReconcileOutcome.DUPLICATE
        entry = await services.store.get_entry(pending_charge.id)
        assert entry.status == LedgerEntryStatus.PENDING

    async def test_cancel_of_unseen_charge_records_refund(
        self, services, pro_subscription, now
    ):
        """Test that a cancelled charge we never saw is recorded with its refund."""
        event = ChargeCanceled(
            event_id="evt_10",
            charge_ref="ext_charge_1",
            payment_ref="pi_ext",
            customer_ref="cus_pro",
            amount_minor_units=30000,
        )

        first = await services.reconciler.reconcile(event, now=now)
        second = await services.reconciler.reconcile(event, now=now)

        assert first.outcome == ReconcileOutcome.CREATED
        assert second.outcome == ReconcileOutcome.DUPLICATE

        charge = await services.store.find_entry_by_charge_ref("ext_charge_1")
        assert charge.kind == LedgerEntryKind.CHARGE
        assert charge.status == LedgerEntryStatus.CANCELLED

        refund = await services.store.find_entry_by_charge_ref("ext_charge_1:refund")
        assert refund.kind == LedgerEntryKind.REFUND
        assert refund.status == LedgerEntryStatus.COMPLETED
        assert refund.amount_minor_units == -30000

        history = await services.store.payment_history(pro_subscription.id)
        refunds = [e for e in history if e.kind == LedgerEntryKind.REFUND]
        assert len(refunds) == 1


class TestCredentialIssued:
    """Tests for CREDENTIAL_ISSUED events."""

    async def test_binds_credential_and_runs_initial_charge(
        self, services, gateway, now
    ):
        """Test that the event binds the credential and charges the pending tier once."""
        request = await services.authorizer.request_authorization(
            "sub_new", SubscriptionTier.PRO
        )
        event = CredentialIssued(
            event_id="evt_10",
            customer_key=request.customer_key,
            customer_ref="cus_1",
            credential_ref="pm_customer_sub_new",
        )

        first = await services.reconciler.reconcile(event, now=now)
        second = await services.reconciler.reconcile(event, now=now)

        assert first.outcome == ReconcileOutcome.APPLIED
        assert second.outcome == ReconcileOutcome.DUPLICATE
        assert len(gateway.charges) == 1
        assert gateway.charges[0]["charge_ref"].startswith("initial_")

        subscription = await services.store.get(request.subscription_id)
        assert subscription.tier == SubscriptionTier.PRO
        assert subscription.billing_credential_ref == "pm_customer_sub_new"
        assert subscription.pending_tier is None

    async def test_customer_resolved_from_customer_ref(
        self, services, pro_subscription, now
    ):
        """Test that an event without a customer key is matched by customer ref."""
        result = await services.reconciler.reconcile(
            CredentialIssued(
                event_id="evt_11", customer_ref="cus_pro", credential_ref="pm_rotated"
            ),
            now=now,
        )

        assert result.outcome == ReconcileOutcome.APPLIED
        subscription = await services.store.get(pro_subscription.id)
        assert subscription.billing_credential_ref == "pm_rotated"

    async def test_unknown_customer_key_is_ignored(self, services, now):
        """Test that a credential for a subscriber we never saw is ignored."""
        result = await services.reconciler.reconcile(
            CredentialIssued(
                event_id="evt_12",
                customer_key="customer_ghost",
                credential_ref="pm_ghost",
            ),
            now=now,
        )

        assert result.outcome == ReconcileOutcome.IGNORED


class TestUnknownEvent:
    async def test_unknown_event_is_ignored(self, services, now):
        """Test that event types we do not handle are acknowledged and ignored."""
        result = await services.reconciler.reconcile(
            UnknownEvent(event_id="evt_13", event_type="customer.updated"), now=now
        )

        assert result.outcome == ReconcileOutcome.IGNORED
