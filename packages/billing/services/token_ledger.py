"""
Token ledger: debit, credit, period reset and balance snapshots.

This is the only place token balances change. Every write runs under the
subscription lock and inside one transaction, and invalidates the cached
balance snapshot once committed.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import Iterable, Optional

from common.core.exceptions import ValidationError
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.scoped import transaction
from common.providers.caching.interface import CacheInterface
from packages.billing.cache_keys import balance_key, balance_key_pattern
from packages.billing.exceptions import (
    DailyCapExceededError,
    InsufficientBalanceError,
)
from packages.billing.models.domain.enums import (
    LedgerEntryKind,
    LedgerEntryStatus,
    Surcharge,
)
from packages.billing.models.domain.usage import (
    BalanceSnapshot,
    DebitResult,
    LOW_BALANCE_UNITS,
)
from packages.billing.services.plan_catalog import PlanCatalog, UNIT_COST
from packages.billing.services.subscription_store import SubscriptionStore

logger = get_logger(__name__)


def required_tokens(units: int, surcharges: Iterable[Surcharge] = ()) -> int:
    """
    Tokens needed for a debit of `units` work units.

    Surcharges add fractional costs; the total is always rounded up, so
    1 unit with a character save costs 2 tokens, not 1.2.
    """
    total = UNIT_COST * units
    for surcharge in set(surcharges):
        total += Surcharge(surcharge).cost(units)
    return int(total.to_integral_value(rounding=ROUND_CEILING))


class TokenLedger:
    """Balance accounting and quota enforcement."""

    def __init__(
        self,
        store: SubscriptionStore,
        catalog: PlanCatalog,
        cache: CacheInterface,
        enforcement_enabled: bool = True,
        balance_cache_ttl: Optional[int] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.cache = cache
        self.enforcement_enabled = enforcement_enabled
        self.balance_cache_ttl = balance_cache_ttl

    async def _invalidate(self, subscription_id: int) -> None:
        await self.cache.delete_pattern(balance_key_pattern(subscription_id))

    @trace_span
    async def debit(
        self,
        subscription_id: int,
        units: int,
        surcharges: Iterable[Surcharge] = (),
        daily_cap: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> DebitResult:
        """
        Consume tokens for `units` work units.

        The daily cap is checked before the balance. The cap counts work
        units, not tokens, and defaults to the tier's cap.

        Raises:
            ValidationError: If units is not positive
            DailyCapExceededError: If today's units plus this debit exceed the cap
            InsufficientBalanceError: If the balance cannot cover the debit
        """
        if units <= 0:
            raise ValidationError("units must be positive")
        surcharges = tuple(surcharges)
        required = required_tokens(units, surcharges)
        now = now or datetime.now(timezone.utc)
        today = now.date()

        async with self.store.lock(subscription_id):
            async with transaction():
                subscription = await self.store.get(subscription_id)
                cap = (
                    daily_cap
                    if daily_cap is not None
                    else self.catalog.daily_cap_for(subscription.tier)
                )
                used_today = await self.store.daily_units(subscription_id, today)

                if self.enforcement_enabled:
                    if used_today + units > cap:
                        raise DailyCapExceededError(units, used_today, cap)

                    remaining = subscription.tokens_remaining
                    if remaining < required:
                        raise InsufficientBalanceError(required, remaining)

                    if not await self.store.add_usage(subscription_id, required):
                        raise InsufficientBalanceError(required, remaining)

                    remaining -= required
                    tokens_charged = required
                else:
                    remaining = subscription.tokens_remaining
                    tokens_charged = 0

                used_today = await self.store.increment_daily_units(
                    subscription_id, today, units
                )

        await self._invalidate(subscription_id)

        logger.info(
            f"Debited {tokens_charged} tokens for {units} units",
            extra={
                "subscription_id": subscription_id,
                "units": units,
                "tokens_charged": tokens_charged,
                "remaining": remaining,
                "enforced": self.enforcement_enabled,
            },
        )

        return DebitResult(
            subscription_id=subscription_id,
            units=units,
            tokens_charged=tokens_charged,
            remaining=remaining,
            daily_remaining=max(0, cap - used_today),
            enforced=self.enforcement_enabled,
        )

    @trace_span
    async def credit(self, subscription_id: int, tokens: int, reason: str) -> int:
        """
        Add tokens on top of the current grant.

        Returns:
            Ledger entry id of the TOKEN_GRANT record
        """
        if tokens <= 0:
            raise ValidationError("tokens must be positive")

        async with self.store.lock(subscription_id):
            async with transaction():
                await self.store.add_tokens(subscription_id, tokens)
                entry = await self.store.record_entry(
                    subscription_id,
                    LedgerEntryKind.TOKEN_GRANT,
                    LedgerEntryStatus.COMPLETED,
                    token_delta=tokens,
                    description=reason,
                )

        await self._invalidate(subscription_id)
        logger.info(
            f"Credited {tokens} tokens: {reason}",
            extra={"subscription_id": subscription_id, "tokens": tokens},
        )
        return entry.id

    @trace_span
    async def reset_for_new_period(self, subscription_id: int, grant: int) -> None:
        """Replace the balance with a fresh grant. Only called after a paid period is won."""
        async with self.store.lock(subscription_id):
            async with transaction():
                await self.store.reset_balance(subscription_id, grant)

        await self._invalidate(subscription_id)
        logger.info(
            f"Reset balance to {grant} tokens",
            extra={"subscription_id": subscription_id, "grant": grant},
        )

    @trace_span
    async def get_balance(
        self, subscription_id: int, now: Optional[datetime] = None
    ) -> BalanceSnapshot:
        """
        Balance snapshot, served from cache when fresh.

        Snapshots are keyed by UTC day so daily usage rolls over at midnight.
        A miss is rebuilt under the subscription lock, so a snapshot read
        before a concurrent write cannot be stored after that write's
        invalidation.
        """
        now = now or datetime.now(timezone.utc)
        key = balance_key(subscription_id, now.date())
        cached = await self.cache.get(key)
        if cached is not None:
            return BalanceSnapshot.model_validate(cached)

        async with self.store.lock(subscription_id):
            cached = await self.cache.get(key)
            if cached is not None:
                return BalanceSnapshot.model_validate(cached)

            subscription = await self.store.get(subscription_id)
            daily_used = await self.store.daily_units(subscription_id, now.date())
            balance = subscription.tokens_remaining
            estimated_units = int(
                (Decimal(balance) / UNIT_COST).to_integral_value(rounding=ROUND_FLOOR)
            )

            snapshot = BalanceSnapshot(
                subscription_id=subscription_id,
                tier=subscription.tier,
                balance=balance,
                used=subscription.tokens_used,
                total=subscription.tokens_total,
                daily_used=daily_used,
                daily_limit=self.catalog.daily_cap_for(subscription.tier),
                estimated_units_remaining=estimated_units,
                is_low=estimated_units < LOW_BALANCE_UNITS,
                period_end=subscription.period_end,
                cancel_at_period_end=subscription.cancel_at_period_end,
            )
            await self.cache.set(
                key, snapshot.model_dump(mode="json"), self.balance_cache_ttl
            )
        return snapshot

    async def invalidate_balance(self, subscription_id: int) -> None:
        """Drop the cached snapshot after a write made outside this ledger."""
        await self._invalidate(subscription_id)
