"""
Billing API routes.

Subscriber endpoints identify the caller by the X-Subscriber-Id header set by
the upstream gateway. The authorization callbacks are browser redirects from
the payment gateway and carry no subscriber header.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from common.providers.rate_limiter.limiter import limiter
from packages.billing.container import BillingServices
from packages.billing.dependencies import (
    get_billing_services,
    get_current_subscriber_id,
    get_current_subscription,
)
from packages.billing.exceptions import user_message_for
from packages.billing.models.domain.enums import LedgerEntryStatus
from packages.billing.models.domain.plans import TokenPackagesResponse
from packages.billing.models.domain.results import (
    ChargeOutcome,
    ReferralResult,
    TokenPurchaseResult,
)
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.usage import BalanceSnapshot
from packages.billing.models.schemas.billing import (
    AuthorizationCallbackResponse,
    AuthorizationRequestBody,
    AuthorizationResponse,
    CancelSubscriptionResponse,
    DebitRequest,
    DebitResponse,
    PaymentHistoryEntry,
    PaymentHistoryResponse,
    ReferralRequest,
    SubscriptionResponse,
    TokenPurchaseRequest,
)

router = APIRouter()


# ============================================================================
# Balance & Debit
# ============================================================================


@router.get("/balance", response_model=BalanceSnapshot)
async def get_balance(
    subscription: Subscription = Depends(get_current_subscription),
    services: BillingServices = Depends(get_billing_services),
):
    """Get the current token balance and today's usage."""
    return await services.ledger.get_balance(subscription.id)


@router.post("/debit", response_model=DebitResponse)
async def debit_tokens(
    body: DebitRequest,
    subscription: Subscription = Depends(get_current_subscription),
    services: BillingServices = Depends(get_billing_services),
):
    """
    Consume tokens for units of work.

    Returns 402 INSUFFICIENT_BALANCE or 429 DAILY_CAP_EXCEEDED when the
    debit is refused; nothing is consumed in that case.
    """
    result = await services.ledger.debit(
        subscription.id, body.units, surcharges=body.surcharges
    )
    return DebitResponse(
        ok=True,
        remaining=result.remaining,
        daily_remaining=result.daily_remaining,
        tokens_charged=result.tokens_charged,
    )


# ============================================================================
# Subscription
# ============================================================================


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    subscription: Subscription = Depends(get_current_subscription),
    services: BillingServices = Depends(get_billing_services),
):
    """Get the subscriber's plan, period and credential status."""
    plan = services.catalog.get_plan(subscription.tier)
    return SubscriptionResponse(
        subscriber_id=subscription.subscriber_id,
        tier=subscription.tier,
        tokens_total=subscription.tokens_total,
        tokens_used=subscription.tokens_used,
        tokens_remaining=subscription.tokens_remaining,
        period_start=subscription.period_start,
        period_end=subscription.period_end,
        cancel_at_period_end=subscription.cancel_at_period_end,
        authorization_status=subscription.authorization_status,
        has_credential=subscription.has_credential(),
        max_character_slots=plan.max_character_slots,
        max_project_slots=plan.max_project_slots,
        daily_token_cap=plan.daily_token_cap,
    )


@router.post("/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    subscription: Subscription = Depends(get_current_subscription),
    services: BillingServices = Depends(get_billing_services),
):
    """
    Cancel at the end of the current period.

    The subscriber keeps their balance until period_end; no further renewal
    is attempted.
    """
    async with services.store.lock(subscription.id):
        updated = await services.store.set_cancel_at_period_end(subscription.id, True)
    await services.ledger.invalidate_balance(subscription.id)
    return CancelSubscriptionResponse(
        message="Subscription will end at the close of the current period",
        cancel_at_period_end=updated.cancel_at_period_end,
        period_end=updated.period_end,
    )


@router.get("/history", response_model=PaymentHistoryResponse)
async def get_payment_history(
    subscription: Subscription = Depends(get_current_subscription),
    services: BillingServices = Depends(get_billing_services),
):
    """Get the ten most recent ledger entries, newest first."""
    entries = await services.store.payment_history(subscription.id, limit=10)
    return PaymentHistoryResponse(
        entries=[
            PaymentHistoryEntry(
                id=entry.id,
                kind=entry.kind.value,
                status=entry.status.value,
                amount_minor_units=entry.amount_minor_units,
                token_delta=entry.token_delta,
                plan_tier=entry.plan_tier.value if entry.plan_tier else None,
                failure_code=entry.failure_code,
                message=user_message_for(entry.failure_code)
                if entry.failure_code
                else None,
                description=entry.description,
                created_at=entry.created_at,
            )
            for entry in entries
        ]
    )


@router.post("/referrals", response_model=ReferralResult)
async def claim_referral(
    body: ReferralRequest,
    subscriber_id: str = Depends(get_current_subscriber_id),
    services: BillingServices = Depends(get_billing_services),
):
    """Credit the referral reward to the caller and their referrer."""
    return await services.referrals.grant_referral_reward(
        body.referrer_subscriber_id, subscriber_id
    )


# ============================================================================
# Token Purchases
# ============================================================================


@router.get("/tokens/packages", response_model=TokenPackagesResponse)
async def get_token_packages(services: BillingServices = Depends(get_billing_services)):
    """Get the token packs on sale. Public, like the plan list."""
    return services.catalog.get_token_packages()


@router.post("/tokens/purchase", response_model=TokenPurchaseResult)
@limiter.limit("10/minute")
async def purchase_tokens(
    request: Request,
    body: TokenPurchaseRequest,
    subscription: Subscription = Depends(get_current_subscription),
    services: BillingServices = Depends(get_billing_services),
):
    """
    Buy a token pack with the bound billing credential.

    Tokens are added when the charge completes; a declined charge is
    reported in the body with status "failed". Returns 400 for an unknown
    package and 409 CREDENTIAL_NOT_BOUND without a credential.
    """
    return await services.purchases.purchase(subscription, body.package_id)


# ============================================================================
# Credential Authorization
# ============================================================================


@router.post("/authorization", response_model=AuthorizationResponse)
@limiter.limit("10/minute")
async def request_authorization(
    request: Request,
    body: AuthorizationRequestBody,
    subscriber_id: str = Depends(get_current_subscriber_id),
    services: BillingServices = Depends(get_billing_services),
):
    """
    Start billing credential authorization for a tier.

    Redirect the subscriber to authorization_url. The gateway sends them
    back to /authorization/success or /authorization/fail.
    """
    auth_request = await services.authorizer.request_authorization(
        subscriber_id, body.tier, amount_override=body.amount_override
    )
    return AuthorizationResponse(
        customer_key=auth_request.customer_key,
        tier=auth_request.tier,
        amount_minor_units=auth_request.amount_minor_units,
        authorization_url=auth_request.redirect_url,
    )


def _callback_response(outcome: Optional[ChargeOutcome]) -> AuthorizationCallbackResponse:
    if outcome is None:
        return AuthorizationCallbackResponse(status="bound")
    if outcome.status == LedgerEntryStatus.COMPLETED:
        return AuthorizationCallbackResponse(
            status="charged", charge_status=outcome.status.value
        )
    if outcome.status == LedgerEntryStatus.FAILED:
        return AuthorizationCallbackResponse(
            status="failed",
            charge_status=outcome.status.value,
            message=outcome.message,
        )
    return AuthorizationCallbackResponse(
        status="pending", charge_status=outcome.status.value, message=outcome.message
    )


@router.get("/authorization/success", response_model=AuthorizationCallbackResponse)
async def authorization_success(
    customer_key: str,
    session_id: str,
    services: BillingServices = Depends(get_billing_services),
):
    """Gateway redirect after the subscriber authorized a credential."""
    outcome = await services.authorizer.complete_authorization(customer_key, session_id)
    return _callback_response(outcome)


@router.get("/authorization/fail", response_model=AuthorizationCallbackResponse)
async def authorization_fail(
    customer_key: str,
    code: Optional[str] = None,
    message: Optional[str] = None,
    services: BillingServices = Depends(get_billing_services),
):
    """Gateway redirect after authorization was declined or abandoned."""
    await services.authorizer.on_authorization_failed(customer_key, code, message)
    return AuthorizationCallbackResponse(
        status="failed", message=user_message_for(code)
    )
