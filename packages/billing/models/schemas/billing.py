"""
API schemas for billing operations.

Request and response models for billing endpoints.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from packages.billing.models.domain.enums import (
    AuthorizationStatus,
    Surcharge,
    SubscriptionTier,
)


# ============================================================================
# Debit Schemas
# ============================================================================


class DebitRequest(BaseModel):
    """Request to consume tokens for units of work."""

    units: int = Field(..., gt=0, description="Work units to debit")
    surcharges: list[Surcharge] = Field(default_factory=list)


class DebitResponse(BaseModel):
    ok: bool = True
    remaining: int
    daily_remaining: int
    tokens_charged: int


# ============================================================================
# Subscription Schemas
# ============================================================================


class SubscriptionResponse(BaseModel):
    """Current subscription for the calling subscriber."""

    subscriber_id: str
    tier: SubscriptionTier
    tokens_total: int
    tokens_used: int
    tokens_remaining: int
    period_start: datetime
    period_end: datetime
    cancel_at_period_end: bool
    authorization_status: AuthorizationStatus
    has_credential: bool
    max_character_slots: int
    max_project_slots: int
    daily_token_cap: int


class CancelSubscriptionResponse(BaseModel):
    """Response after scheduling cancellation."""

    message: str
    cancel_at_period_end: bool
    period_end: datetime


# ============================================================================
# Authorization Schemas
# ============================================================================


class AuthorizationRequestBody(BaseModel):
    """Request to authorize a billing credential for a paid tier."""

    tier: SubscriptionTier
    amount_override: Optional[int] = Field(default=None, ge=0)


class AuthorizationResponse(BaseModel):
    customer_key: str
    tier: SubscriptionTier
    amount_minor_units: int
    authorization_url: str


class AuthorizationCallbackResponse(BaseModel):
    """Result of the gateway redirect back to us."""

    status: str  # bound, charged, failed, pending
    charge_status: Optional[str] = None
    message: Optional[str] = None


# ============================================================================
# History Schemas
# ============================================================================


class PaymentHistoryEntry(BaseModel):
    id: int
    kind: str
    status: str
    amount_minor_units: int
    token_delta: int
    plan_tier: Optional[str] = None
    failure_code: Optional[str] = None
    message: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime


class PaymentHistoryResponse(BaseModel):
    entries: list[PaymentHistoryEntry]


# ============================================================================
# Referral Schemas
# ============================================================================


class ReferralRequest(BaseModel):
    referrer_subscriber_id: str = Field(..., min_length=1)


# ============================================================================
# Token Purchase Schemas
# ============================================================================


class TokenPurchaseRequest(BaseModel):
    package_id: str = Field(..., min_length=1)


# ============================================================================
# Admin Schemas
# ============================================================================


class RefundRequest(BaseModel):
    """Operator refund of a completed charge."""

    ledger_entry_id: int
    amount_minor_units: Optional[int] = Field(default=None, gt=0)
    reason: Optional[str] = Field(default=None, max_length=500)


class RefundResponse(BaseModel):
    refund_entry_id: int
    amount_minor_units: int
