"""Domain models for billing."""

from packages.billing.models.domain.enums import (
    AuthorizationStatus,
    ChargeReason,
    LedgerEntryKind,
    LedgerEntryStatus,
    Surcharge,
    SubscriptionTier,
)
from packages.billing.models.domain.plans import Plan, PlanInfo, PlansResponse
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
)
from packages.billing.models.domain.ledger import (
    LedgerEntry,
    LedgerEntryCreateModel,
    PaymentHistoryItem,
)
from packages.billing.models.domain.usage import (
    BalanceSnapshot,
    DailyUsage,
    DebitResult,
)
from packages.billing.models.domain.events import (
    ChargeCanceled,
    ChargeFailed,
    ChargeSucceeded,
    CredentialIssued,
    GatewayEvent,
    UnknownEvent,
)
from packages.billing.models.domain.results import (
    AuthorizationRequest,
    ChargeOutcome,
    ReconcileOutcome,
    ReconcileResult,
    ReferralResult,
    RenewalResult,
    RenewalRunSummary,
)
from packages.billing.models.domain.referral import (
    ReferralReward,
    ReferralRewardCreateModel,
)

__all__ = [
    # Enums
    "AuthorizationStatus",
    "ChargeReason",
    "LedgerEntryKind",
    "LedgerEntryStatus",
    "Surcharge",
    "SubscriptionTier",
    # Plans
    "Plan",
    "PlanInfo",
    "PlansResponse",
    # Subscription
    "Subscription",
    "SubscriptionCreateModel",
    # Ledger
    "LedgerEntry",
    "LedgerEntryCreateModel",
    "PaymentHistoryItem",
    # Usage
    "BalanceSnapshot",
    "DailyUsage",
    "DebitResult",
    # Events
    "ChargeCanceled",
    "ChargeFailed",
    "ChargeSucceeded",
    "CredentialIssued",
    "GatewayEvent",
    "UnknownEvent",
    # Results
    "AuthorizationRequest",
    "ChargeOutcome",
    "ReconcileOutcome",
    "ReconcileResult",
    "ReferralResult",
    "RenewalResult",
    "RenewalRunSummary",
    # Referrals
    "ReferralReward",
    "ReferralRewardCreateModel",
]
