import hmac
from typing import Annotated, Optional

from fastapi import Depends, Header, Request

from common.core.config import settings
from common.core.exceptions import UnauthorizedError
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.billing.container import BillingServices
from packages.billing.models.domain.subscription import Subscription

logger = get_logger(__name__)


def get_billing_services(request: Request) -> BillingServices:
    """Billing services built by the application lifespan."""
    return request.app.state.billing


def _secret_matches(provided: Optional[str], expected: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


@trace_span
async def get_current_subscriber_id(
    x_subscriber_id: Annotated[Optional[str], Header()] = None,
) -> str:
    """Subscriber id set by the upstream gateway after authentication."""
    if not x_subscriber_id or not x_subscriber_id.strip():
        raise UnauthorizedError("X-Subscriber-Id header missing")
    return x_subscriber_id.strip()


async def require_cron_secret(
    authorization: Annotated[Optional[str], Header()] = None,
) -> None:
    """Scheduled trigger auth: Authorization: Bearer <cron_secret>."""
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1]
    if not _secret_matches(token, settings.cron_secret):
        logger.warning("Rejected scheduled job call with bad credentials")
        raise UnauthorizedError("Invalid cron credentials")


async def require_admin_key(
    x_admin_key: Annotated[Optional[str], Header()] = None,
) -> None:
    if not _secret_matches(x_admin_key, settings.admin_secret):
        logger.warning("Rejected admin call with bad credentials")
        raise UnauthorizedError("Invalid admin key")


async def get_current_subscription(
    subscriber_id: str = Depends(get_current_subscriber_id),
    services: BillingServices = Depends(get_billing_services),
) -> Subscription:
    """Current subscriber's subscription, created on FREE the first time."""
    return await services.store.get_or_create_for_subscriber(subscriber_id)
