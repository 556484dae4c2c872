"""
Billing credential authorizer.

Runs the one-time credential binding flow:

    none -> authorization_requested -> credential_issued | authorization_failed

The gateway reports success twice: through the subscriber's redirect back to
the success URL and through a credential_issued webhook. Either can arrive
first, or only one may arrive, so on_credential_issued is idempotent.
"""

from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

from common.core.exceptions import ValidationError
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.scoped import transaction
from packages.billing.exceptions import SubscriptionNotFoundError
from packages.billing.models.domain.enums import (
    ChargeReason,
    LedgerEntryKind,
    LedgerEntryStatus,
    SubscriptionTier,
)
from packages.billing.models.domain.results import AuthorizationRequest, ChargeOutcome
from packages.billing.models.domain.subscription import Subscription
from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.services.charge_service import ChargeService
from packages.billing.services.plan_catalog import PlanCatalog
from packages.billing.services.subscription_store import SubscriptionStore

logger = get_logger(__name__)

CUSTOMER_KEY_PREFIX = "customer_"


def customer_key_for(subscriber_id: str) -> str:
    """Deterministic gateway customer key, e.g. customer_u123."""
    return f"{CUSTOMER_KEY_PREFIX}{subscriber_id}"


def subscriber_id_from_customer_key(customer_key: str) -> str:
    if not customer_key.startswith(CUSTOMER_KEY_PREFIX):
        raise ValidationError(f"Unrecognized customer key {customer_key}")
    return customer_key[len(CUSTOMER_KEY_PREFIX):]


class CredentialAuthorizer:
    """Binds billing credentials to subscriptions."""

    def __init__(
        self,
        store: SubscriptionStore,
        catalog: PlanCatalog,
        gateway: PaymentGatewayInterface,
        charges: ChargeService,
        app_base_url: str,
        api_prefix: str = "/api/v1",
    ):
        self.store = store
        self.catalog = catalog
        self.gateway = gateway
        self.charges = charges
        self.callback_base = f"{app_base_url.rstrip('/')}{api_prefix}/billing/authorization"

    def _callback_urls(self, customer_key: str) -> tuple[str, str]:
        query = urlencode({"customer_key": customer_key})
        # Stripe substitutes the session id into the success URL
        success_url = f"{self.callback_base}/success?{query}&session_id={{CHECKOUT_SESSION_ID}}"
        failure_url = f"{self.callback_base}/fail?{query}&code=user_cancelled"
        return success_url, failure_url

    async def _subscription_for_key(self, customer_key: str) -> Subscription:
        subscriber_id = subscriber_id_from_customer_key(customer_key)
        subscription = await self.store.get_by_subscriber(subscriber_id)
        if not subscription:
            raise SubscriptionNotFoundError(f"No subscription for {customer_key}")
        return subscription

    @trace_span
    async def request_authorization(
        self,
        subscriber_id: str,
        tier: SubscriptionTier,
        amount_override: Optional[int] = None,
    ) -> AuthorizationRequest:
        """
        Start credential authorization for a tier.

        Records the requested tier and amount on the subscription; they are
        consumed by the initial charge once the credential is issued.
        """
        tier = SubscriptionTier(tier)
        if amount_override is not None and amount_override < 0:
            raise ValidationError("amount_override must not be negative")

        subscription = await self.store.get_or_create_for_subscriber(subscriber_id)
        customer_key = customer_key_for(subscriber_id)
        amount = (
            amount_override
            if amount_override is not None
            else self.catalog.price_for(tier)
        )

        customer_ref = subscription.gateway_customer_ref
        if not customer_ref:
            customer_ref = await self.gateway.find_or_create_customer(customer_key)

        success_url, failure_url = self._callback_urls(customer_key)
        session = await self.gateway.create_authorization_session(
            customer_key=customer_key,
            customer_ref=customer_ref,
            tier=tier,
            success_url=success_url,
            cancel_url=failure_url,
        )

        async with self.store.lock(subscription.id):
            await self.store.mark_authorization_requested(
                subscription.id, tier, amount, customer_ref
            )

        logger.info(
            f"Authorization requested for {tier.value}",
            extra={
                "subscription_id": subscription.id,
                "customer_key": customer_key,
                "amount_minor_units": amount,
            },
        )
        return AuthorizationRequest(
            subscription_id=subscription.id,
            customer_key=customer_key,
            tier=tier,
            amount_minor_units=amount,
            redirect_url=session.redirect_url,
            session_ref=session.session_ref,
        )

    @trace_span
    async def complete_authorization(
        self, customer_key: str, session_ref: str
    ) -> Optional[ChargeOutcome]:
        """Success redirect: fetch the issued credential and bind it."""
        credential = await self.gateway.retrieve_issued_credential(session_ref)
        return await self.on_credential_issued(
            customer_key, credential.credential_ref, credential.customer_ref
        )

    @trace_span
    async def on_credential_issued(
        self,
        customer_key: str,
        credential_ref: str,
        customer_ref: Optional[str],
        now: Optional[datetime] = None,
    ) -> Optional[ChargeOutcome]:
        """
        Bind an issued credential and run the initial charge for a paid tier.

        Binding the credential that is already bound is a no-op, so whichever
        of the redirect and the webhook arrives second does nothing.

        Returns:
            The initial charge outcome, or None if nothing was charged
        """
        subscription = await self._subscription_for_key(customer_key)

        async with self.store.lock(subscription.id):
            async with transaction():
                subscription = await self.store.get(subscription.id)
                if subscription.billing_credential_ref == credential_ref:
                    logger.info(
                        "Credential already bound",
                        extra={"subscription_id": subscription.id},
                    )
                    return None

                await self.store.bind_credential(
                    subscription.id, credential_ref, customer_ref
                )
                pending_tier = subscription.pending_tier
                pending_amount = subscription.pending_amount_minor_units
                if pending_tier is not None:
                    await self.store.clear_pending_tier(subscription.id)

            subscription = await self.store.get(subscription.id)

        logger.info(
            "Bound billing credential",
            extra={
                "subscription_id": subscription.id,
                "pending_tier": pending_tier.value if pending_tier else None,
            },
        )

        if pending_tier is None or not pending_tier.is_paid():
            return None

        return await self.charges.charge(
            subscription,
            pending_tier,
            ChargeReason.INITIAL,
            amount_minor_units=pending_amount,
            now=now,
        )

    @trace_span
    async def on_authorization_failed(
        self, customer_key: str, code: Optional[str], message: Optional[str] = None
    ) -> None:
        """Failure redirect: record the failure; the subscriber may retry."""
        subscription = await self._subscription_for_key(customer_key)

        async with self.store.lock(subscription.id):
            async with transaction():
                await self.store.mark_authorization_failed(subscription.id)
                await self.store.record_entry(
                    subscription.id,
                    LedgerEntryKind.FAILURE_RECORD,
                    LedgerEntryStatus.FAILED,
                    failure_code=code,
                    description=message or "Credential authorization failed",
                )

        logger.warning(
            f"Credential authorization failed: {code}",
            extra={"subscription_id": subscription.id, "failure_code": code},
        )
