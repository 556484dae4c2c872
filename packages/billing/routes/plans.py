"""
Plans API routes.

Public endpoint for retrieving available subscription plans.
"""

from fastapi import APIRouter, Depends

from packages.billing.container import BillingServices
from packages.billing.dependencies import get_billing_services
from packages.billing.models.domain.plans import PlansResponse

router = APIRouter()


@router.get("", response_model=PlansResponse)
async def get_plans(services: BillingServices = Depends(get_billing_services)):
    """
    Get all available subscription plans.

    Returns pricing, token grants and limits for each tier.
    This endpoint is public (no auth required) for pricing pages.
    """
    return services.catalog.get_all_plans()
