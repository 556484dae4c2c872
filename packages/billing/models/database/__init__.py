"""Database models for billing."""

from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.database.ledger_entry import LedgerEntryEntity
from packages.billing.models.database.daily_usage import DailyUsageCounterEntity
from packages.billing.models.database.referral import ReferralRewardEntity

__all__ = [
    "SubscriptionEntity",
    "LedgerEntryEntity",
    "DailyUsageCounterEntity",
    "ReferralRewardEntity",
]
