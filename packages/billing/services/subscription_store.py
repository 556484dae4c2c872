"""
Subscription store: subscriptions, ledger entries and daily usage counters.

The store performs plain and conditional writes. It does not take locks on
its own; services wrap read-check-write sequences in lock() so that all
writes for one subscription are serialized.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.context import readonly
from common.db.scoped import transaction
from common.providers.locking.interface import DistributedLockInterface
from common.providers.locking.scoped import hold_lock
from packages.billing.cache_keys import subscriber_lock_key, subscription_lock_key
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
from packages.billing.models.domain.ledger import LedgerEntry, LedgerEntryCreateModel
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
)
from packages.billing.repositories.daily_usage_repository import DailyUsageRepository
from packages.billing.repositories.ledger_entry_repository import LedgerEntryRepository
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.services.plan_catalog import PlanCatalog

logger = get_logger(__name__)


class SubscriptionStore:
    """Owns subscription records, ledger history and daily usage counters."""

    def __init__(
        self,
        catalog: PlanCatalog,
        lock_provider: DistributedLockInterface,
        subscription_repo: Optional[SubscriptionRepository] = None,
        ledger_repo: Optional[LedgerEntryRepository] = None,
        daily_usage_repo: Optional[DailyUsageRepository] = None,
        lock_ttl_seconds: int = 60,
        lock_acquire_timeout_seconds: float = 10.0,
    ):
        self.catalog = catalog
        self.lock_provider = lock_provider
        self.subscription_repo = subscription_repo or SubscriptionRepository()
        self.ledger_repo = ledger_repo or LedgerEntryRepository()
        self.daily_usage_repo = daily_usage_repo or DailyUsageRepository()
        self.lock_ttl_seconds = lock_ttl_seconds
        self.lock_acquire_timeout_seconds = lock_acquire_timeout_seconds

    # =========================================================================
    # Locking
    # =========================================================================

    def _hold(self, resource_key: str):
        return hold_lock(
            self.lock_provider,
            resource_key,
            lock_ttl_seconds=self.lock_ttl_seconds,
            acquire_timeout_seconds=self.lock_acquire_timeout_seconds,
        )

    @asynccontextmanager
    async def lock(self, subscription_id: int) -> AsyncGenerator[None, None]:
        """Serialize writes for one subscription. Re-entrant within a task."""
        async with self._hold(subscription_lock_key(subscription_id)):
            yield

    # =========================================================================
    # Subscriptions
    # =========================================================================

    @trace_span
    async def create(
        self,
        subscriber_id: str,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Create a subscription with the tier's grant and a fresh period."""
        now = now or datetime.now(timezone.utc)
        subscription = await self.subscription_repo.create(
            SubscriptionCreateModel(
                subscriber_id=subscriber_id,
                tier=tier,
                tokens_total=self.catalog.token_grant_for(tier),
                period_start=now,
                period_end=now + timedelta(days=self.catalog.billing_period_days),
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(
            f"Created {tier.value} subscription for subscriber {subscriber_id}",
            extra={"subscription_id": subscription.id, "tier": tier.value},
        )
        return subscription

    @trace_span
    async def get(self, subscription_id: int) -> Subscription:
        subscription = await self.subscription_repo.get(subscription_id)
        if not subscription:
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    async def get_by_subscriber(self, subscriber_id: str) -> Optional[Subscription]:
        return await self.subscription_repo.get_by_subscriber_id(subscriber_id)

    async def get_by_customer_ref(self, customer_ref: str) -> Optional[Subscription]:
        return await self.subscription_repo.get_by_customer_ref(customer_ref)

    @trace_span
    async def get_or_create_for_subscriber(
        self, subscriber_id: str, now: Optional[datetime] = None
    ) -> Subscription:
        """Get the subscriber's subscription, creating it on FREE the first time."""
        subscription = await self.get_by_subscriber(subscriber_id)
        if subscription:
            return subscription

        async with self._hold(subscriber_lock_key(subscriber_id)):
            subscription = await self.get_by_subscriber(subscriber_id)
            if subscription:
                return subscription
            return await self.create(subscriber_id, SubscriptionTier.FREE, now=now)

    async def get_by_tier(self, tier: SubscriptionTier) -> list[Subscription]:
        return await self.subscription_repo.get_by_tier(tier)

    @trace_span
    async def set_cancel_at_period_end(
        self, subscription_id: int, value: bool = True
    ) -> Subscription:
        if not await self.subscription_repo.set_cancel_at_period_end(
            subscription_id, value
        ):
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
        return await self.get(subscription_id)

    @trace_span
    async def renew_period(
        self,
        subscription_id: int,
        new_start: datetime,
        new_end: datetime,
        tier: Optional[SubscriptionTier] = None,
    ) -> None:
        if new_start >= new_end:
            raise ValueError("new_start must be before new_end")
        if not await self.subscription_repo.renew_period(
            subscription_id, new_start, new_end, tier
        ):
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")

    @trace_span
    async def bind_credential(
        self,
        subscription_id: int,
        credential_ref: str,
        customer_ref: Optional[str],
    ) -> None:
        if not await self.subscription_repo.bind_credential(
            subscription_id, credential_ref, customer_ref
        ):
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")

    @trace_span
    async def mark_authorization_requested(
        self,
        subscription_id: int,
        tier: SubscriptionTier,
        amount_minor_units: int,
        customer_ref: Optional[str] = None,
    ) -> None:
        await self.subscription_repo.set_authorization_requested(
            subscription_id, tier, amount_minor_units, customer_ref
        )

    async def mark_authorization_failed(self, subscription_id: int) -> None:
        await self.subscription_repo.set_authorization_status(
            subscription_id, AuthorizationStatus.AUTHORIZATION_FAILED
        )

    async def clear_pending_tier(self, subscription_id: int) -> None:
        await self.subscription_repo.clear_pending_tier(subscription_id)

    @trace_span
    async def list_due_for_renewal(
        self, as_of: datetime, lookahead: timedelta
    ) -> list[Subscription]:
        """
        Subscriptions to charge in this run.

        Returns subscriptions that are not cancelling, whose period ends at or
        before as_of + lookahead, and that have a bound credential.
        """
        return await self.subscription_repo.list_due_for_renewal(as_of + lookahead)

    # Balance primitives, called by the token ledger under lock()

    async def add_usage(self, subscription_id: int, tokens: int) -> bool:
        return await self.subscription_repo.add_usage(subscription_id, tokens)

    async def add_tokens(self, subscription_id: int, tokens: int) -> None:
        if not await self.subscription_repo.add_tokens(subscription_id, tokens):
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")

    async def reset_balance(self, subscription_id: int, grant: int) -> None:
        if not await self.subscription_repo.reset_balance(subscription_id, grant):
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")

    # =========================================================================
    # Ledger entries
    # =========================================================================

    @trace_span
    async def record_entry(
        self,
        subscription_id: int,
        kind: LedgerEntryKind,
        status: LedgerEntryStatus,
        amount_minor_units: int = 0,
        token_delta: int = 0,
        external_charge_ref: Optional[str] = None,
        gateway_payment_ref: Optional[str] = None,
        failure_code: Optional[str] = None,
        plan_tier: Optional[SubscriptionTier] = None,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LedgerEntry:
        """Append a ledger entry."""
        now = now or datetime.now(timezone.utc)
        entry = await self.ledger_repo.create(
            LedgerEntryCreateModel(
                subscription_id=subscription_id,
                kind=kind,
                status=status,
                amount_minor_units=amount_minor_units,
                token_delta=token_delta,
                external_charge_ref=external_charge_ref,
                gateway_payment_ref=gateway_payment_ref,
                failure_code=failure_code,
                plan_tier=plan_tier,
                description=description,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(
            f"Recorded {kind.value} entry ({status.value})",
            extra={
                "subscription_id": subscription_id,
                "ledger_entry_id": entry.id,
                "external_charge_ref": external_charge_ref,
                "amount_minor_units": amount_minor_units,
            },
        )
        return entry

    async def get_entry(self, entry_id: int) -> LedgerEntry:
        entry = await self.ledger_repo.get(entry_id)
        if not entry:
            raise LedgerEntryNotFoundError(f"Ledger entry {entry_id} not found")
        return entry

    @trace_span
    async def resolve_entry(
        self,
        entry_id: int,
        expected: LedgerEntryStatus,
        new: LedgerEntryStatus,
        **fields,
    ) -> bool:
        """
        Conditionally transition an entry.

        Returns:
            True if this call won the transition, False if the entry was no
            longer in the expected status

        Raises:
            InvalidLedgerTransitionError: If expected -> new is not allowed
        """
        if not expected.can_transition_to(new):
            raise InvalidLedgerTransitionError(
                f"Ledger entry cannot move from {expected.value} to {new.value}"
            )
        won = await self.ledger_repo.resolve(entry_id, expected, new, **fields)
        logger.info(
            f"Ledger entry {entry_id} {expected.value} -> {new.value}: "
            f"{'applied' if won else 'lost'}",
            extra={"ledger_entry_id": entry_id, "won": won},
        )
        return won

    async def set_entry_failure_code(self, entry_id: int, failure_code: str) -> None:
        await self.ledger_repo.set_failure_code(entry_id, failure_code)

    async def find_entry_by_charge_ref(self, charge_ref: str) -> Optional[LedgerEntry]:
        return await self.ledger_repo.find_by_charge_ref(charge_ref)

    async def find_entry_by_payment_ref(self, payment_ref: str) -> Optional[LedgerEntry]:
        return await self.ledger_repo.find_by_payment_ref(payment_ref)

    async def count_failed_charges_since(
        self,
        subscription_id: int,
        since: datetime,
        timed_out_before: Optional[datetime] = None,
    ) -> int:
        return await self.ledger_repo.count_failed_charges_since(
            subscription_id, since, timed_out_before=timed_out_before
        )

    async def has_pending_charge_since(
        self, subscription_id: int, since: datetime
    ) -> bool:
        return await self.ledger_repo.has_pending_charge_since(subscription_id, since)

    @trace_span
    @readonly
    async def payment_history(
        self, subscription_id: int, limit: int = 10
    ) -> list[LedgerEntry]:
        """Newest entries first."""
        return await self.ledger_repo.list_for_subscription(subscription_id, limit=limit)

    # =========================================================================
    # Daily usage
    # =========================================================================

    async def daily_units(self, subscription_id: int, usage_date: date) -> int:
        return await self.daily_usage_repo.units_for_date(subscription_id, usage_date)

    async def increment_daily_units(
        self, subscription_id: int, usage_date: date, units: int
    ) -> int:
        return await self.daily_usage_repo.increment(subscription_id, usage_date, units)

    # =========================================================================
    # Composite writes
    # =========================================================================

    @trace_span
    async def apply_failure_policy(
        self,
        subscription_id: int,
        now: datetime,
        window_days: int,
        threshold: int,
        pending_grace: Optional[timedelta] = None,
    ) -> bool:
        """
        Auto-cancel after repeated charge failures.

        With pending_grace, charges left pending by a gateway timeout longer
        than the grace period count as failures.

        Returns:
            True if this call set cancel_at_period_end
        """
        async with self.lock(subscription_id):
            async with transaction():
                failures = await self.count_failed_charges_since(
                    subscription_id,
                    now - timedelta(days=window_days),
                    timed_out_before=now - pending_grace if pending_grace else None,
                )
                if failures < threshold:
                    return False
                subscription = await self.get(subscription_id)
                if subscription.cancel_at_period_end:
                    return False
                await self.subscription_repo.set_cancel_at_period_end(
                    subscription_id, True
                )

        logger.warning(
            f"Auto-cancelled subscription {subscription_id} after {failures} failed charges",
            extra={"subscription_id": subscription_id, "failures": failures},
        )
        return True
