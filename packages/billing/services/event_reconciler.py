"""
Event reconciler: applies gateway events to the ledger idempotently.

Events may be duplicated, reordered, or describe charges this service never
saw (for example a charge created before a crash). Every change is a
conditional transition, so replaying an event is harmless and reports
DUPLICATE.
"""

from datetime import datetime, timezone
from typing import Optional

from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.scoped import transaction
from packages.billing.models.domain.enums import (
    LedgerEntryKind,
    LedgerEntryStatus,
    SubscriptionTier,
)
from packages.billing.models.domain.events import (
    ChargeCanceled,
    ChargeFailed,
    ChargeSucceeded,
    CredentialIssued,
    GatewayEvent,
)
from packages.billing.models.domain.ledger import LedgerEntry
from packages.billing.models.domain.results import ReconcileOutcome, ReconcileResult
from packages.billing.services.charge_service import ChargeService
from packages.billing.services.credential_authorizer import (
    CredentialAuthorizer,
    customer_key_for,
    subscriber_id_from_customer_key,
)
from packages.billing.services.subscription_store import SubscriptionStore

logger = get_logger(__name__)


def _tier_or_none(value: Optional[str]) -> Optional[SubscriptionTier]:
    try:
        return SubscriptionTier(value) if value else None
    except ValueError:
        return None


class EventReconciler:
    """Routes normalized gateway events to idempotent ledger updates."""

    def __init__(
        self,
        store: SubscriptionStore,
        charges: ChargeService,
        authorizer: CredentialAuthorizer,
    ):
        self.store = store
        self.charges = charges
        self.authorizer = authorizer

    async def _find_entry(
        self, charge_ref: Optional[str], payment_ref: Optional[str]
    ) -> Optional[LedgerEntry]:
        entry = None
        if charge_ref:
            entry = await self.store.find_entry_by_charge_ref(charge_ref)
        if entry is None and payment_ref:
            entry = await self.store.find_entry_by_payment_ref(payment_ref)
        return entry

    def _result(
        self,
        event: GatewayEvent,
        outcome: ReconcileOutcome,
        entry_id: Optional[int] = None,
    ) -> ReconcileResult:
        result = ReconcileResult(
            event_id=event.event_id,
            kind=event.kind,
            outcome=outcome,
            ledger_entry_id=entry_id,
        )
        logger.info(
            f"Reconciled {event.kind} event {event.event_id}: {outcome.value}",
            extra={
                "event_id": event.event_id,
                "event_kind": event.kind,
                "outcome": outcome.value,
                "ledger_entry_id": entry_id,
            },
        )
        return result

    @trace_span
    async def reconcile(
        self, event: GatewayEvent, now: Optional[datetime] = None
    ) -> ReconcileResult:
        now = now or datetime.now(timezone.utc)

        if isinstance(event, CredentialIssued):
            return await self._on_credential_issued(event, now)
        if isinstance(event, ChargeSucceeded):
            return await self._on_charge_succeeded(event, now)
        if isinstance(event, ChargeFailed):
            return await self._on_charge_failed(event, now)
        if isinstance(event, ChargeCanceled):
            return await self._on_charge_canceled(event, now)
        return self._result(event, ReconcileOutcome.IGNORED)

    async def _on_credential_issued(
        self, event: CredentialIssued, now: datetime
    ) -> ReconcileResult:
        customer_key = event.customer_key
        if not customer_key and event.customer_ref:
            subscription = await self.store.get_by_customer_ref(event.customer_ref)
            if subscription:
                customer_key = customer_key_for(subscription.subscriber_id)
        if not customer_key:
            logger.warning(
                "Credential event without a known customer",
                extra={"event_id": event.event_id},
            )
            return self._result(event, ReconcileOutcome.IGNORED)

        subscription = await self.store.get_by_subscriber(
            subscriber_id_from_customer_key(customer_key)
        )
        if subscription is None:
            logger.warning(
                "Credential event for unknown subscriber",
                extra={"event_id": event.event_id, "customer_key": customer_key},
            )
            return self._result(event, ReconcileOutcome.IGNORED)

        already_bound = subscription.billing_credential_ref == event.credential_ref
        await self.authorizer.on_credential_issued(
            customer_key, event.credential_ref, event.customer_ref, now=now
        )
        return self._result(
            event,
            ReconcileOutcome.DUPLICATE if already_bound else ReconcileOutcome.APPLIED,
            subscription.id,
        )

    async def _on_charge_succeeded(
        self, event: ChargeSucceeded, now: datetime
    ) -> ReconcileResult:
        entry = await self._find_entry(event.charge_ref, event.payment_ref)

        if entry is None:
            return await self._create_missing(
                event,
                LedgerEntryStatus.COMPLETED,
                now,
                plan_tier=_tier_or_none(event.plan_tier),
            )

        if entry.status != LedgerEntryStatus.PENDING:
            return self._result(event, ReconcileOutcome.DUPLICATE, entry.id)

        won = await self.charges.complete_charge(
            entry, now, gateway_payment_ref=event.payment_ref
        )
        return self._result(
            event,
            ReconcileOutcome.APPLIED if won else ReconcileOutcome.DUPLICATE,
            entry.id,
        )

    async def _on_charge_failed(
        self, event: ChargeFailed, now: datetime
    ) -> ReconcileResult:
        entry = await self._find_entry(event.charge_ref, event.payment_ref)

        if entry is None:
            result = await self._create_missing(
                event,
                LedgerEntryStatus.FAILED,
                now,
                failure_code=event.failure_code,
            )
            if result.outcome == ReconcileOutcome.CREATED and result.ledger_entry_id:
                created = await self.store.get_entry(result.ledger_entry_id)
                await self.charges.apply_failure_policy(created.subscription_id, now)
            return result

        if entry.status != LedgerEntryStatus.PENDING:
            return self._result(event, ReconcileOutcome.DUPLICATE, entry.id)

        won, _ = await self.charges.fail_charge(
            entry, event.failure_code, now, gateway_payment_ref=event.payment_ref
        )
        return self._result(
            event,
            ReconcileOutcome.APPLIED if won else ReconcileOutcome.DUPLICATE,
            entry.id,
        )

    async def _on_charge_canceled(
        self, event: ChargeCanceled, now: datetime
    ) -> ReconcileResult:
        entry = await self._find_entry(event.charge_ref, event.payment_ref)

        if entry is None:
            return await self._create_missing(event, LedgerEntryStatus.CANCELLED, now)

        if entry.status != LedgerEntryStatus.COMPLETED:
            # Already cancelled or refunded through us
            return self._result(event, ReconcileOutcome.DUPLICATE, entry.id)

        amount = event.amount_minor_units or entry.amount_minor_units
        async with self.store.lock(entry.subscription_id):
            async with transaction():
                won = await self.store.resolve_entry(
                    entry.id, LedgerEntryStatus.COMPLETED, LedgerEntryStatus.CANCELLED
                )
                if won:
                    await self.store.record_entry(
                        entry.subscription_id,
                        LedgerEntryKind.REFUND,
                        LedgerEntryStatus.COMPLETED,
                        amount_minor_units=-amount,
                        external_charge_ref=f"{entry.external_charge_ref or event.payment_ref}:refund",
                        gateway_payment_ref=event.payment_ref,
                        description="Charge cancelled at gateway",
                        now=now,
                    )

        return self._result(
            event,
            ReconcileOutcome.APPLIED if won else ReconcileOutcome.DUPLICATE,
            entry.id,
        )

    async def _create_missing(
        self,
        event,
        status: LedgerEntryStatus,
        now: datetime,
        plan_tier: Optional[SubscriptionTier] = None,
        failure_code: Optional[str] = None,
    ) -> ReconcileResult:
        """
        Record a charge the ledger has never seen, directly in its final state.

        The subscription is found through the gateway customer. A completed
        charge with a plan tier also starts the paid period; a cancelled one
        gets its REFUND entry alongside.
        """
        if not event.customer_ref:
            logger.warning(
                "Charge event for unknown charge without customer",
                extra={"event_id": event.event_id, "payment_ref": event.payment_ref},
            )
            return self._result(event, ReconcileOutcome.IGNORED)

        subscription = await self.store.get_by_customer_ref(event.customer_ref)
        if subscription is None:
            logger.warning(
                "Charge event for unknown customer",
                extra={"event_id": event.event_id, "customer_ref": event.customer_ref},
            )
            return self._result(event, ReconcileOutcome.IGNORED)

        async with self.store.lock(subscription.id):
            async with transaction():
                # Another delivery may have created it while we waited
                existing = await self._find_entry(event.charge_ref, event.payment_ref)
                if existing is not None:
                    return self._result(event, ReconcileOutcome.DUPLICATE, existing.id)

                entry = await self.store.record_entry(
                    subscription.id,
                    LedgerEntryKind.CHARGE,
                    status,
                    amount_minor_units=event.amount_minor_units,
                    external_charge_ref=event.charge_ref,
                    gateway_payment_ref=event.payment_ref,
                    failure_code=failure_code,
                    plan_tier=plan_tier,
                    description="Recorded from gateway event",
                    now=now,
                )
                if status == LedgerEntryStatus.COMPLETED and plan_tier is not None:
                    await self.charges.apply_paid_period(subscription.id, plan_tier, now)
                if status == LedgerEntryStatus.CANCELLED:
                    await self.store.record_entry(
                        subscription.id,
                        LedgerEntryKind.REFUND,
                        LedgerEntryStatus.COMPLETED,
                        amount_minor_units=-event.amount_minor_units,
                        external_charge_ref=f"{event.charge_ref or event.payment_ref}:refund",
                        gateway_payment_ref=event.payment_ref,
                        description="Charge cancelled at gateway",
                        now=now,
                    )

        if status == LedgerEntryStatus.COMPLETED and plan_tier is not None:
            await self.charges.ledger.invalidate_balance(subscription.id)
        return self._result(event, ReconcileOutcome.CREATED, entry.id)
