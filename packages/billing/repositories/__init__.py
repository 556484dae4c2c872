"""Billing repositories."""

from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.ledger_entry_repository import LedgerEntryRepository
from packages.billing.repositories.daily_usage_repository import DailyUsageRepository
from packages.billing.repositories.referral_repository import ReferralRepository

__all__ = [
    "SubscriptionRepository",
    "LedgerEntryRepository",
    "DailyUsageRepository",
    "ReferralRepository",
]
