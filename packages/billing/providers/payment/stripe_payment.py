"""
Stripe implementation of the payment gateway.

Credentials are card PaymentMethods saved through Checkout in setup mode and
charged with off-session PaymentIntents. The stripe SDK is synchronous, so
every call runs in a worker thread.
"""

import asyncio
import json
from typing import Any, Optional

import stripe

from common.core.config import Settings
from common.core.exceptions import ValidationError
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.billing.exceptions import GatewayError, SignatureVerificationError
from packages.billing.models.domain.enums import SubscriptionTier
from packages.billing.models.domain.events import (
    ChargeCanceled,
    ChargeFailed,
    ChargeSucceeded,
    CredentialIssued,
    GatewayEvent,
    UnknownEvent,
)
from packages.billing.providers.payment.interface import (
    AuthorizationSession,
    ChargeReceipt,
    IssuedCredential,
    PaymentGatewayInterface,
)

logger = get_logger(__name__)

# Seconds a signed webhook stays valid
WEBHOOK_TOLERANCE_SECONDS = 300


def _gateway_error(e: stripe.StripeError) -> GatewayError:
    code = getattr(e, "code", None)
    if isinstance(e, stripe.CardError):
        code = code or "card_declined"
    elif isinstance(e, stripe.RateLimitError):
        code = "rate_limit"
    elif isinstance(e, stripe.AuthenticationError):
        code = "authentication_error"
    elif isinstance(e, stripe.InvalidRequestError):
        code = code or "invalid_request_error"
    else:
        code = code or "processing_error"
    return GatewayError(code, getattr(e, "user_message", None) or str(e))


class StripePaymentGateway(PaymentGatewayInterface):
    """Stripe-based payment gateway."""

    def __init__(self, settings: Settings):
        """Initialize Stripe with API credentials."""
        stripe.api_key = settings.stripe_secret_key
        self.currency = settings.billing_currency
        self.webhook_secret = settings.stripe_webhook_secret
        self.require_signature = settings.is_production_like

    async def _call(self, fn, *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except stripe.StripeError as e:
            logger.error(
                f"Stripe call {getattr(fn, '__qualname__', fn)} failed: {str(e)}",
                extra={"error": str(e), "stripe_code": getattr(e, "code", None)},
            )
            raise _gateway_error(e) from e

    @trace_span
    async def find_or_create_customer(self, customer_key: str) -> str:
        """Reuse the customer tagged with customer_key, or create one."""
        result = await self._call(
            stripe.Customer.search,
            query=f"metadata['customer_key']:'{customer_key}'",
            limit=1,
        )
        if result.data:
            customer_id = result.data[0].id
            logger.info(
                "Reusing existing Stripe customer",
                extra={"customer_key": customer_key, "customer_id": customer_id},
            )
            return customer_id

        customer = await self._call(
            stripe.Customer.create,
            metadata={"customer_key": customer_key},
            idempotency_key=f"customer-{customer_key}",
        )
        logger.info(
            "Created new Stripe customer",
            extra={"customer_key": customer_key, "customer_id": customer.id},
        )
        return customer.id

    @trace_span
    async def create_authorization_session(
        self,
        customer_key: str,
        customer_ref: str,
        tier: SubscriptionTier,
        success_url: str,
        cancel_url: str,
    ) -> AuthorizationSession:
        """Create a Checkout session in setup mode to save a card."""
        session = await self._call(
            stripe.checkout.Session.create,
            mode="setup",
            customer=customer_ref,
            payment_method_types=["card"],
            success_url=success_url,
            cancel_url=cancel_url,
            setup_intent_data={
                "metadata": {"customer_key": customer_key, "tier": tier.value}
            },
            metadata={"customer_key": customer_key, "tier": tier.value},
        )
        logger.info(
            "Created Stripe setup session",
            extra={
                "customer_key": customer_key,
                "tier": tier.value,
                "session_id": session.id,
            },
        )
        return AuthorizationSession(
            session_ref=session.id, redirect_url=session.url, customer_ref=customer_ref
        )

    @trace_span
    async def retrieve_issued_credential(self, session_ref: str) -> IssuedCredential:
        session = await self._call(
            stripe.checkout.Session.retrieve, session_ref, expand=["setup_intent"]
        )
        setup_intent = session.setup_intent
        if not setup_intent or setup_intent.status != "succeeded":
            raise GatewayError(
                "credential_missing", f"Setup session {session_ref} has no credential"
            )
        return IssuedCredential(
            credential_ref=setup_intent.payment_method,
            customer_ref=session.customer,
        )

    @trace_span
    async def charge(
        self,
        credential_ref: str,
        customer_ref: Optional[str],
        amount_minor_units: int,
        charge_ref: str,
        plan_tier: Optional[SubscriptionTier] = None,
    ) -> ChargeReceipt:
        """Charge a saved card off-session, keyed by charge_ref."""
        metadata = {"charge_ref": charge_ref}
        if plan_tier is not None:
            metadata["tier"] = plan_tier.value

        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=amount_minor_units,
            currency=self.currency,
            customer=customer_ref,
            payment_method=credential_ref,
            off_session=True,
            confirm=True,
            metadata=metadata,
            idempotency_key=charge_ref,
        )
        logger.info(
            f"Stripe charge {charge_ref} returned {intent.status}",
            extra={"charge_ref": charge_ref, "payment_intent": intent.id},
        )
        if intent.status in ("requires_payment_method", "canceled"):
            error = intent.last_payment_error
            raise GatewayError(
                (error.code if error else None) or "card_declined",
                (error.message if error else None) or "",
            )
        return ChargeReceipt(payment_ref=intent.id, settled=intent.status == "succeeded")

    @trace_span
    async def refund(
        self,
        payment_ref: str,
        amount_minor_units: Optional[int],
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> str:
        params = {"payment_intent": payment_ref, "idempotency_key": idempotency_key}
        if amount_minor_units is not None:
            params["amount"] = amount_minor_units
        if reason:
            params["metadata"] = {"reason": reason}
        refund = await self._call(stripe.Refund.create, **params)
        logger.info(
            "Created Stripe refund",
            extra={"payment_intent": payment_ref, "refund_id": refund.id},
        )
        return refund.id

    # =========================================================================
    # Webhooks
    # =========================================================================

    def parse_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        try:
            payload_text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"Webhook payload is not valid UTF-8: {e}") from e

        if self.webhook_secret:
            if not signature:
                raise SignatureVerificationError("Missing stripe-signature header")
            try:
                stripe.WebhookSignature.verify_header(
                    payload_text,
                    signature,
                    self.webhook_secret,
                    WEBHOOK_TOLERANCE_SECONDS,
                )
            except stripe.SignatureVerificationError as e:
                logger.error(f"Stripe webhook signature verification failed: {str(e)}")
                raise SignatureVerificationError("Invalid signature") from e
        elif self.require_signature:
            logger.error("Stripe webhook secret is not configured")
            raise SignatureVerificationError("Webhook secret is not configured")

        try:
            event = json.loads(payload_text)
            return _normalize_event(event)
        except (ValueError, KeyError, TypeError) as e:
            raise ValidationError(f"Invalid webhook payload: {e}") from e

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(stripe.Balance.retrieve)
            return True
        except stripe.StripeError as e:
            logger.warning(f"Stripe health check failed: {str(e)}")
            return False


def _normalize_event(event: dict) -> GatewayEvent:
    """Map a Stripe event onto the gateway event union."""
    event_id = event["id"]
    event_type = event["type"]
    obj = event["data"]["object"]
    metadata = obj.get("metadata") or {}

    if event_type == "setup_intent.succeeded":
        return CredentialIssued(
            event_id=event_id,
            customer_key=metadata.get("customer_key"),
            customer_ref=obj.get("customer"),
            credential_ref=obj["payment_method"],
        )

    if event_type == "payment_intent.succeeded":
        return ChargeSucceeded(
            event_id=event_id,
            charge_ref=metadata.get("charge_ref"),
            payment_ref=obj["id"],
            customer_ref=obj.get("customer"),
            amount_minor_units=obj.get("amount_received") or obj.get("amount") or 0,
            plan_tier=metadata.get("tier"),
        )

    if event_type == "payment_intent.payment_failed":
        error = obj.get("last_payment_error") or {}
        return ChargeFailed(
            event_id=event_id,
            charge_ref=metadata.get("charge_ref"),
            payment_ref=obj["id"],
            customer_ref=obj.get("customer"),
            amount_minor_units=obj.get("amount") or 0,
            failure_code=error.get("decline_code") or error.get("code"),
            failure_message=error.get("message"),
        )

    if event_type == "charge.refunded":
        return ChargeCanceled(
            event_id=event_id,
            charge_ref=metadata.get("charge_ref"),
            payment_ref=obj["payment_intent"],
            customer_ref=obj.get("customer"),
            amount_minor_units=obj.get("amount_refunded") or obj.get("amount") or 0,
        )

    return UnknownEvent(event_id=event_id, event_type=event_type)
