"""Operator-triggered refunds of completed charges."""

from typing import Optional

from common.core.exceptions import ValidationError
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.scoped import transaction
from packages.billing.exceptions import InvalidLedgerTransitionError
from packages.billing.models.domain.enums import LedgerEntryKind, LedgerEntryStatus
from packages.billing.models.domain.ledger import LedgerEntry
from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.services.subscription_store import SubscriptionStore

logger = get_logger(__name__)


class RefundService:
    def __init__(self, store: SubscriptionStore, gateway: PaymentGatewayInterface):
        self.store = store
        self.gateway = gateway

    @trace_span
    async def refund(
        self,
        entry_id: int,
        amount_minor_units: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Refund a completed charge, fully or partially.

        The gateway is called first with an idempotency key derived from the
        charge, so retrying a refund whose ledger write failed is safe.

        Returns:
            The REFUND ledger entry

        Raises:
            InvalidLedgerTransitionError: If the entry is not a completed charge
            ValidationError: If the amount is out of range
        """
        entry = await self.store.get_entry(entry_id)
        if entry.kind != LedgerEntryKind.CHARGE or entry.status != LedgerEntryStatus.COMPLETED:
            raise InvalidLedgerTransitionError(
                f"Only completed charges can be refunded (entry {entry_id} is "
                f"{entry.kind.value}/{entry.status.value})"
            )

        amount = entry.amount_minor_units if amount_minor_units is None else amount_minor_units
        if amount <= 0 or amount > entry.amount_minor_units:
            raise ValidationError(
                f"Refund amount must be between 1 and {entry.amount_minor_units}"
            )
        if not entry.gateway_payment_ref:
            raise InvalidLedgerTransitionError(
                f"Entry {entry_id} has no gateway payment to refund"
            )

        refund_ref = f"{entry.external_charge_ref or entry.id}:refund"
        await self.gateway.refund(
            entry.gateway_payment_ref,
            amount_minor_units=amount,
            idempotency_key=refund_ref,
            reason=reason,
        )

        async with self.store.lock(entry.subscription_id):
            async with transaction():
                won = await self.store.resolve_entry(
                    entry.id, LedgerEntryStatus.COMPLETED, LedgerEntryStatus.REFUNDED
                )
                if not won:
                    raise InvalidLedgerTransitionError(
                        f"Entry {entry_id} changed status during refund"
                    )
                refund_entry = await self.store.record_entry(
                    entry.subscription_id,
                    LedgerEntryKind.REFUND,
                    LedgerEntryStatus.COMPLETED,
                    amount_minor_units=-amount,
                    external_charge_ref=refund_ref,
                    gateway_payment_ref=entry.gateway_payment_ref,
                    description=reason or "Refund",
                )

        logger.info(
            f"Refunded {amount} for ledger entry {entry_id}",
            extra={
                "subscription_id": entry.subscription_id,
                "ledger_entry_id": entry_id,
                "amount_minor_units": amount,
            },
        )
        return refund_entry
