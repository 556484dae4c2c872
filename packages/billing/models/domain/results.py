"""
Result models returned by billing operations.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from packages.billing.models.domain.enums import (
    ChargeReason,
    LedgerEntryStatus,
    SubscriptionTier,
)


class AuthorizationRequest(BaseModel):
    """Where to send the subscriber to authorize a billing credential."""

    subscription_id: int
    customer_key: str
    tier: SubscriptionTier
    amount_minor_units: int
    redirect_url: str
    session_ref: str


class ChargeOutcome(BaseModel):
    """Outcome of a single charge attempt."""

    subscription_id: int
    reason: ChargeReason
    charge_ref: str
    status: LedgerEntryStatus
    amount_minor_units: int
    failure_code: Optional[str] = None
    message: Optional[str] = None
    auto_cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == LedgerEntryStatus.COMPLETED


class RenewalResult(BaseModel):
    """Per-subscription entry in a renewal run."""

    subscription_id: int
    status: str  # completed, failed, pending, skipped, error
    charge_ref: Optional[str] = None
    detail: Optional[str] = None


class RenewalRunSummary(BaseModel):
    """Totals for one pass of the recurring billing scheduler."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[RenewalResult] = Field(default_factory=list)


class ReconcileOutcome(str, Enum):
    """What reconciling an event did."""

    APPLIED = "applied"  # Moved an existing entry
    DUPLICATE = "duplicate"  # Already in the target state
    CREATED = "created"  # Entry did not exist and was created terminal
    IGNORED = "ignored"  # Not an event we act on


class ReconcileResult(BaseModel):
    event_id: str
    kind: str
    outcome: ReconcileOutcome
    ledger_entry_id: Optional[int] = None


class ReferralResult(BaseModel):
    referrer_subscriber_id: str
    referred_subscriber_id: str
    referrer_tokens: int
    referred_tokens: int


class TokenPurchaseResult(BaseModel):
    """Outcome of buying a token package."""

    package_id: str
    charge_ref: str
    status: LedgerEntryStatus
    amount_minor_units: int
    tokens_added: int  # 0 until the charge completes
    balance: int
    failure_code: Optional[str] = None
    message: Optional[str] = None
