from fastapi import APIRouter, Depends, Request
from sqlalchemy import text

from common.core.otel_axiom_exporter import get_logger
from common.db.scoped import get_session
from common.providers.rate_limiter.limiter import limiter
from packages.billing.container import BillingServices
from packages.billing.dependencies import get_billing_services

logger = get_logger(__name__)

router = APIRouter()


@router.get("/")
async def health_check(request: Request):
    # No rate limiting or logging - probes hit this every few seconds
    return {"status": "healthy", "service": "billing-service"}


@router.get("/dependencies")
@limiter.limit("30/minute")
async def dependencies_check(
    request: Request,
    services: BillingServices = Depends(get_billing_services),
):
    """Check the database and the payment gateway."""
    database = "connected"
    try:
        async with get_session(readonly=True) as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database = "disconnected"

    gateway = "reachable" if await services.gateway.health_check() else "unreachable"
    healthy = database == "connected" and gateway == "reachable"
    return {
        "status": "healthy" if healthy else "unhealthy",
        "database": database,
        "gateway": gateway,
    }
