"""
Domain models for token usage and balances.
"""

from datetime import date, datetime
from pydantic import BaseModel, ConfigDict

from packages.billing.models.domain.enums import SubscriptionTier

# A balance worth fewer than this many work units is flagged as low
LOW_BALANCE_UNITS = 5


class DailyUsage(BaseModel):
    """Work units consumed by a subscription on one UTC day."""

    id: int
    subscription_id: int
    usage_date: date
    units_consumed: int

    model_config = ConfigDict(from_attributes=True)


class DebitResult(BaseModel):
    """Result of a successful debit."""

    subscription_id: int
    units: int
    tokens_charged: int
    remaining: int
    daily_remaining: int
    enforced: bool = True


class BalanceSnapshot(BaseModel):
    """
    Point-in-time view of a subscription's balance.

    Served from cache, so it may trail a concurrent debit until the next
    write invalidates it; debits themselves never read it.
    """

    subscription_id: int
    tier: SubscriptionTier
    balance: int
    used: int
    total: int
    daily_used: int
    daily_limit: int
    estimated_units_remaining: int
    is_low: bool
    period_end: datetime
    cancel_at_period_end: bool
