"""
Charge service: one charge attempt against a bound credential.

Shared by the renewal scheduler, the credential authorizer and token
purchases. A charge is
always written as a PENDING ledger entry before the gateway is called, so a
crash or timeout leaves a record the event reconciler can settle later.
No lock is held while the gateway call is in flight.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from common.core.exceptions import ValidationError
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.scoped import transaction
from packages.billing.exceptions import (
    CredentialNotBoundError,
    GatewayError,
    GatewayTimeoutError,
    user_message_for,
)
from packages.billing.models.domain.enums import (
    ChargeReason,
    LedgerEntryKind,
    LedgerEntryStatus,
    SubscriptionTier,
)
from packages.billing.models.domain.ledger import LedgerEntry
from packages.billing.models.domain.results import ChargeOutcome
from packages.billing.models.domain.subscription import Subscription
from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.services.plan_catalog import PlanCatalog
from packages.billing.services.subscription_store import SubscriptionStore
from packages.billing.services.token_ledger import TokenLedger

logger = get_logger(__name__)


def new_charge_ref(reason: ChargeReason, subscription_id: int, now: datetime) -> str:
    """Unique charge reference, e.g. renewal_42_1717171717_9f2c1a3b."""
    return f"{reason.value}_{subscription_id}_{int(now.timestamp())}_{uuid.uuid4().hex[:8]}"


class ChargeService:
    """Creates, sends and resolves charges; applies paid periods exactly once."""

    def __init__(
        self,
        store: SubscriptionStore,
        ledger: TokenLedger,
        catalog: PlanCatalog,
        gateway: PaymentGatewayInterface,
        charge_timeout_seconds: float = 20.0,
        failure_window_days: int = 30,
        auto_cancel_threshold: int = 3,
        pending_grace: timedelta = timedelta(hours=24),
    ):
        self.store = store
        self.ledger = ledger
        self.catalog = catalog
        self.gateway = gateway
        self.charge_timeout_seconds = charge_timeout_seconds
        self.failure_window_days = failure_window_days
        self.auto_cancel_threshold = auto_cancel_threshold
        self.pending_grace = pending_grace

    # =========================================================================
    # Paid periods
    # =========================================================================

    @trace_span
    async def apply_paid_period(
        self, subscription_id: int, tier: SubscriptionTier, now: datetime
    ) -> None:
        """
        Start a new period on tier and reset the balance to its grant.

        Callers must have just won the PENDING -> COMPLETED transition for the
        charge that paid for this period.
        """
        async with self.store.lock(subscription_id):
            async with transaction():
                await self.store.renew_period(
                    subscription_id,
                    now,
                    now + timedelta(days=self.catalog.billing_period_days),
                    tier,
                )
                await self.ledger.reset_for_new_period(
                    subscription_id, self.catalog.token_grant_for(tier)
                )
        logger.info(
            f"Applied paid {tier.value} period",
            extra={"subscription_id": subscription_id, "tier": tier.value},
        )

    @trace_span
    async def complete_charge(
        self,
        entry: LedgerEntry,
        now: datetime,
        gateway_payment_ref: Optional[str] = None,
    ) -> bool:
        """
        Move a PENDING charge to COMPLETED and, if this call won, apply what it
        paid for: the plan period, or the purchased tokens for a charge with no
        plan tier.

        Returns:
            True if this call performed the transition
        """
        async with self.store.lock(entry.subscription_id):
            async with transaction():
                won = await self.store.resolve_entry(
                    entry.id,
                    LedgerEntryStatus.PENDING,
                    LedgerEntryStatus.COMPLETED,
                    gateway_payment_ref=gateway_payment_ref,
                )
                if won and entry.plan_tier is not None:
                    await self.apply_paid_period(
                        entry.subscription_id, entry.plan_tier, now
                    )
                elif won and entry.token_delta > 0:
                    await self.ledger.credit(
                        entry.subscription_id,
                        entry.token_delta,
                        f"Token purchase {entry.external_charge_ref}",
                    )
        if won:
            await self.ledger.invalidate_balance(entry.subscription_id)
        return won

    @trace_span
    async def fail_charge(
        self,
        entry: LedgerEntry,
        failure_code: Optional[str],
        now: datetime,
        gateway_payment_ref: Optional[str] = None,
    ) -> tuple[bool, bool]:
        """
        Move a PENDING charge to FAILED and run the failure policy.

        Returns:
            (won, auto_cancelled)
        """
        async with self.store.lock(entry.subscription_id):
            won = await self.store.resolve_entry(
                entry.id,
                LedgerEntryStatus.PENDING,
                LedgerEntryStatus.FAILED,
                failure_code=failure_code,
                gateway_payment_ref=gateway_payment_ref,
            )
        auto_cancelled = False
        if won:
            auto_cancelled = await self.apply_failure_policy(entry.subscription_id, now)
        return won, auto_cancelled

    async def apply_failure_policy(self, subscription_id: int, now: datetime) -> bool:
        return await self.store.apply_failure_policy(
            subscription_id,
            now,
            window_days=self.failure_window_days,
            threshold=self.auto_cancel_threshold,
            pending_grace=self.pending_grace,
        )

    # =========================================================================
    # Charging
    # =========================================================================

    @trace_span
    async def charge(
        self,
        subscription: Subscription,
        tier: Optional[SubscriptionTier],
        reason: ChargeReason,
        amount_minor_units: Optional[int] = None,
        now: Optional[datetime] = None,
        token_delta: int = 0,
    ) -> ChargeOutcome:
        """
        Charge the subscription's credential for one period of tier.

        With no tier the charge buys token_delta tokens instead of a period,
        and amount_minor_units is required.

        Gateway declines are recorded and returned, not raised; the outcome
        carries the failure code and a subscriber-facing message.

        Raises:
            CredentialNotBoundError: If no credential is bound
            ValidationError: If a token purchase has no positive amount or tokens
        """
        now = now or datetime.now(timezone.utc)
        if tier is None and ((amount_minor_units or 0) <= 0 or token_delta <= 0):
            raise ValidationError("A token purchase needs a positive amount and tokens")
        amount = (
            amount_minor_units
            if amount_minor_units is not None
            else self.catalog.price_for(tier)
        )
        charge_ref = new_charge_ref(reason, subscription.id, now)

        if amount == 0 and tier is not None:
            return await self._complete_free_period(subscription, tier, reason, charge_ref, now)

        if not subscription.billing_credential_ref:
            raise CredentialNotBoundError(
                f"Subscription {subscription.id} has no billing credential"
            )

        entry = await self.store.record_entry(
            subscription.id,
            LedgerEntryKind.CHARGE,
            LedgerEntryStatus.PENDING,
            amount_minor_units=amount,
            external_charge_ref=charge_ref,
            plan_tier=tier,
            token_delta=token_delta,
            description=(
                f"{reason.value} charge for {tier.value}"
                if tier is not None
                else f"{reason.value} charge for {token_delta} tokens"
            ),
            now=now,
        )

        log_extra = {
            "subscription_id": subscription.id,
            "charge_ref": charge_ref,
            "amount_minor_units": amount,
            "tier": tier.value if tier is not None else None,
        }

        try:
            receipt = await asyncio.wait_for(
                self.gateway.charge(
                    credential_ref=subscription.billing_credential_ref,
                    customer_ref=subscription.gateway_customer_ref,
                    amount_minor_units=amount,
                    charge_ref=charge_ref,
                    plan_tier=tier,
                ),
                timeout=self.charge_timeout_seconds,
            )
        except asyncio.TimeoutError:
            timeout = GatewayTimeoutError()
            await self.store.set_entry_failure_code(entry.id, timeout.code)
            logger.warning(
                f"Charge {charge_ref} timed out; leaving it pending for reconciliation",
                extra=log_extra,
            )
            return ChargeOutcome(
                subscription_id=subscription.id,
                reason=reason,
                charge_ref=charge_ref,
                status=LedgerEntryStatus.PENDING,
                amount_minor_units=amount,
                failure_code=timeout.code,
                message=timeout.user_message,
            )
        except GatewayError as e:
            _, auto_cancelled = await self.fail_charge(entry, e.code, now)
            logger.warning(
                f"Charge {charge_ref} declined: {e.code}",
                extra={**log_extra, "failure_code": e.code, "auto_cancelled": auto_cancelled},
            )
            return ChargeOutcome(
                subscription_id=subscription.id,
                reason=reason,
                charge_ref=charge_ref,
                status=LedgerEntryStatus.FAILED,
                amount_minor_units=amount,
                failure_code=e.code,
                message=user_message_for(e.code),
                auto_cancelled=auto_cancelled,
            )

        if not receipt.settled:
            logger.info(
                f"Charge {charge_ref} accepted but not settled yet",
                extra={**log_extra, "payment_ref": receipt.payment_ref},
            )
            return ChargeOutcome(
                subscription_id=subscription.id,
                reason=reason,
                charge_ref=charge_ref,
                status=LedgerEntryStatus.PENDING,
                amount_minor_units=amount,
            )

        won = await self.complete_charge(entry, now, gateway_payment_ref=receipt.payment_ref)
        logger.info(
            f"Charge {charge_ref} succeeded",
            extra={**log_extra, "payment_ref": receipt.payment_ref, "applied": won},
        )
        return ChargeOutcome(
            subscription_id=subscription.id,
            reason=reason,
            charge_ref=charge_ref,
            status=LedgerEntryStatus.COMPLETED,
            amount_minor_units=amount,
        )

    async def _complete_free_period(
        self,
        subscription: Subscription,
        tier: SubscriptionTier,
        reason: ChargeReason,
        charge_ref: str,
        now: datetime,
    ) -> ChargeOutcome:
        """Zero-price periods are recorded as completed charges with no gateway call."""
        async with self.store.lock(subscription.id):
            async with transaction():
                await self.store.record_entry(
                    subscription.id,
                    LedgerEntryKind.CHARGE,
                    LedgerEntryStatus.COMPLETED,
                    amount_minor_units=0,
                    external_charge_ref=charge_ref,
                    plan_tier=tier,
                    description=f"{reason.value} charge for {tier.value}",
                    now=now,
                )
                await self.apply_paid_period(subscription.id, tier, now)
        await self.ledger.invalidate_balance(subscription.id)

        return ChargeOutcome(
            subscription_id=subscription.id,
            reason=reason,
            charge_ref=charge_ref,
            status=LedgerEntryStatus.COMPLETED,
            amount_minor_units=0,
        )
