"""Token package purchases charged to the bound billing credential."""

from datetime import datetime
from typing import Optional

from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.billing.models.domain.enums import ChargeReason, LedgerEntryStatus
from packages.billing.models.domain.results import TokenPurchaseResult
from packages.billing.models.domain.subscription import Subscription
from packages.billing.services.charge_service import ChargeService
from packages.billing.services.plan_catalog import PlanCatalog

logger = get_logger(__name__)


class TokenPurchaseService:
    def __init__(self, catalog: PlanCatalog, charges: ChargeService):
        self.catalog = catalog
        self.charges = charges

    @trace_span
    async def purchase(
        self,
        subscription: Subscription,
        package_id: str,
        now: Optional[datetime] = None,
    ) -> TokenPurchaseResult:
        """
        Charge for a token package and credit its tokens once the charge completes.

        The tokens are credited by the same transition that completes the
        charge, so a purchase left pending by the gateway is credited when
        the settlement event is reconciled, and never twice.

        Raises:
            ValidationError: If the package does not exist
            CredentialNotBoundError: If no credential is bound
        """
        package = self.catalog.get_token_package(package_id)

        outcome = await self.charges.charge(
            subscription,
            None,
            ChargeReason.TOKEN_PURCHASE,
            amount_minor_units=package.price_minor_units,
            now=now,
            token_delta=package.tokens,
        )
        completed = outcome.status == LedgerEntryStatus.COMPLETED
        balance = await self.charges.ledger.get_balance(subscription.id, now=now)

        logger.info(
            f"Token purchase of {package.package_id} is {outcome.status.value}",
            extra={
                "subscription_id": subscription.id,
                "package_id": package.package_id,
                "charge_ref": outcome.charge_ref,
                "tokens": package.tokens,
            },
        )
        return TokenPurchaseResult(
            package_id=package.package_id,
            charge_ref=outcome.charge_ref,
            status=outcome.status,
            amount_minor_units=outcome.amount_minor_units,
            tokens_added=package.tokens if completed else 0,
            balance=balance.balance,
            failure_code=outcome.failure_code,
            message=outcome.message,
        )
