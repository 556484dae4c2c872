"""
Webhook endpoints for billing events.

Public endpoints (no auth required) for payment gateway webhooks.
"""

from fastapi import APIRouter, Depends, Request

from packages.billing.container import BillingServices
from packages.billing.dependencies import get_billing_services
from packages.billing.webhooks.gateway_webhook import handle_gateway_webhook

router = APIRouter()


@router.post("/webhooks/gateway")
async def gateway_webhook(
    request: Request,
    services: BillingServices = Depends(get_billing_services),
) -> dict[str, str]:
    """
    Receive webhook events from the payment gateway.

    No authentication required - webhook signature validated internally.
    """
    return await handle_gateway_webhook(request, services)
