"""
Domain models for subscriptions.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from packages.billing.models.domain.enums import (
    AuthorizationStatus,
    SubscriptionTier,
)


class Subscription(BaseModel):
    """
    Subscriber subscription domain model.

    Represents a subscriber's plan including:
    - Tier (Free/Pro/Premium)
    - Token balance for the current period
    - Billing period and cancel-at-period-end flag
    - Bound billing credential and gateway customer reference
    """

    id: int
    subscriber_id: str

    tier: SubscriptionTier

    # Balance
    tokens_total: int
    tokens_used: int

    # Billing cycle
    period_start: datetime
    period_end: datetime
    cancel_at_period_end: bool = False

    # Gateway references
    billing_credential_ref: Optional[str] = None
    gateway_customer_ref: Optional[str] = None
    authorization_status: AuthorizationStatus = AuthorizationStatus.NONE

    # Requested tier awaiting its initial charge
    pending_tier: Optional[SubscriptionTier] = None
    pending_amount_minor_units: Optional[int] = None

    # Metadata
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def tokens_remaining(self) -> int:
        return self.tokens_total - self.tokens_used

    def has_credential(self) -> bool:
        """Check if a billing credential is bound."""
        return self.billing_credential_ref is not None

    def is_renewable(self) -> bool:
        """Check if the subscription should be charged at period end."""
        return (
            self.tier.is_paid()
            and self.has_credential()
            and not self.cancel_at_period_end
        )

    def days_until_renewal(self, now: datetime) -> int:
        """Get number of days until next billing period."""
        delta = self.period_end - now
        return max(0, delta.days)


class SubscriptionCreateModel(BaseModel):
    """Model for creating a new subscription."""

    model_config = ConfigDict(use_enum_values=True)

    subscriber_id: str
    tier: SubscriptionTier
    tokens_total: int
    tokens_used: int = 0
    period_start: datetime
    period_end: datetime
    cancel_at_period_end: bool = False
    authorization_status: AuthorizationStatus = AuthorizationStatus.NONE
    created_at: datetime
    updated_at: datetime
