"""
Scheduled and operator billing endpoints.

/jobs/* is called by the external scheduler with the cron secret; /admin/*
is for operators and uses a separate admin key.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from common.core.otel_axiom_exporter import get_logger
from packages.billing.container import BillingServices
from packages.billing.dependencies import (
    get_billing_services,
    require_admin_key,
    require_cron_secret,
)
from packages.billing.models.domain.results import RenewalRunSummary
from packages.billing.models.schemas.billing import RefundRequest, RefundResponse

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/jobs/renewals",
    response_model=RenewalRunSummary,
    dependencies=[Depends(require_cron_secret)],
)
async def run_scheduled_renewals(
    services: BillingServices = Depends(get_billing_services),
):
    """Run one renewal pass. Called by the external scheduler."""
    return await services.scheduler.run()


@router.post(
    "/admin/renewals",
    response_model=RenewalRunSummary,
    dependencies=[Depends(require_admin_key)],
)
async def run_renewals_now(
    services: BillingServices = Depends(get_billing_services),
):
    """Run one renewal pass on demand."""
    logger.info("Renewal run triggered by operator")
    return await services.scheduler.run()


@router.post(
    "/admin/refunds",
    response_model=RefundResponse,
    dependencies=[Depends(require_admin_key)],
)
async def refund_charge(
    body: RefundRequest,
    services: BillingServices = Depends(get_billing_services),
):
    """Refund a completed charge, fully or partially."""
    refund_entry = await services.refunds.refund(
        body.ledger_entry_id,
        amount_minor_units=body.amount_minor_units,
        reason=body.reason,
    )
    return RefundResponse(
        refund_entry_id=refund_entry.id,
        amount_minor_units=-refund_entry.amount_minor_units,
    )
