"""
Domain models for ledger entries.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from packages.billing.models.domain.enums import (
    LedgerEntryKind,
    LedgerEntryStatus,
    SubscriptionTier,
)


class LedgerEntry(BaseModel):
    """
    A single ledger record.

    Charges move pending -> completed | failed and completed -> cancelled |
    refunded. Token grants, refunds and failure records are written in
    their final state.
    """

    id: int
    subscription_id: int

    kind: LedgerEntryKind
    status: LedgerEntryStatus

    amount_minor_units: int = 0
    token_delta: int = 0

    external_charge_ref: Optional[str] = None
    gateway_payment_ref: Optional[str] = None
    failure_code: Optional[str] = None
    plan_tier: Optional[SubscriptionTier] = None
    description: Optional[str] = None

    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_pending(self) -> bool:
        return self.status == LedgerEntryStatus.PENDING


class LedgerEntryCreateModel(BaseModel):
    """Model for appending a ledger entry."""

    model_config = ConfigDict(use_enum_values=True)

    subscription_id: int
    kind: LedgerEntryKind
    status: LedgerEntryStatus
    amount_minor_units: int = 0
    token_delta: int = 0
    external_charge_ref: Optional[str] = None
    gateway_payment_ref: Optional[str] = None
    failure_code: Optional[str] = None
    plan_tier: Optional[SubscriptionTier] = None
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PaymentHistoryItem(BaseModel):
    """Ledger entry as shown in a subscriber's payment history."""

    id: int
    kind: LedgerEntryKind
    status: LedgerEntryStatus
    amount_minor_units: int
    token_delta: int
    plan_tier: Optional[SubscriptionTier] = None
    failure_code: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
