"""
Billing enums - strongly typed enumerations for subscription and ledger states.
"""

from decimal import Decimal
from enum import Enum


class SubscriptionTier(str, Enum):
    """Subscription plan tiers."""

    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"

    def is_paid(self) -> bool:
        return self != SubscriptionTier.FREE


class AuthorizationStatus(str, Enum):
    """
    Billing credential authorization lifecycle.

    Flow: none -> authorization_requested -> credential_issued | authorization_failed
    """

    NONE = "none"
    AUTHORIZATION_REQUESTED = "authorization_requested"
    CREDENTIAL_ISSUED = "credential_issued"  # Bound, chargeable
    AUTHORIZATION_FAILED = "authorization_failed"  # Unbound, retriable


class LedgerEntryKind(str, Enum):
    """Kinds of ledger entries."""

    CHARGE = "charge"
    TOKEN_GRANT = "token_grant"
    REFUND = "refund"
    FAILURE_RECORD = "failure_record"


class LedgerEntryStatus(str, Enum):
    """
    Ledger entry status.

    Allowed transitions: pending -> completed | failed,
    completed -> cancelled | refunded. Everything else is terminal.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    def can_transition_to(self, target: "LedgerEntryStatus") -> bool:
        """Check if moving from this status to target is allowed."""
        return target in _ALLOWED_TRANSITIONS.get(self, frozenset())

    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS.get(self)


_ALLOWED_TRANSITIONS = {
    LedgerEntryStatus.PENDING: frozenset(
        {LedgerEntryStatus.COMPLETED, LedgerEntryStatus.FAILED}
    ),
    LedgerEntryStatus.COMPLETED: frozenset(
        {LedgerEntryStatus.CANCELLED, LedgerEntryStatus.REFUNDED}
    ),
}


class Surcharge(str, Enum):
    """Optional add-ons that cost extra tokens on a debit."""

    HIGH_RESOLUTION = "high_resolution"  # +0.5 tokens per unit
    CHARACTER_SAVE = "character_save"  # +0.2 tokens flat

    def cost(self, units: int) -> Decimal:
        """Token cost of this surcharge for a debit of `units` work units."""
        if self == Surcharge.HIGH_RESOLUTION:
            return Decimal("0.5") * units
        return Decimal("0.2")


class ChargeReason(str, Enum):
    """Why a charge was initiated; used as the charge reference prefix."""

    INITIAL = "initial"
    RENEWAL = "renewal"
    TOKEN_PURCHASE = "tokens"  # One-off token package, no plan period
