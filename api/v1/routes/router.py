from fastapi import APIRouter

from api.v1.routes import (
    health,
)
from packages.billing.routes import billing, jobs, plans, webhooks

api_router = APIRouter()

# Health check (no auth required)
api_router.include_router(health.router, prefix="/health", tags=["health"])

# Webhooks (no auth - signature verified internally)
api_router.include_router(webhooks.router, tags=["webhooks"])

# Plans (no auth - public pricing info)
api_router.include_router(plans.router, prefix="/billing/plans", tags=["billing"])

# Scheduled jobs and admin (cron secret / admin key checked per route)
api_router.include_router(jobs.router, prefix="/billing", tags=["billing-jobs"])

# Billing routes (X-Subscriber-Id checked per route; callbacks are public)
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
