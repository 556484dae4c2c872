"""Billing services."""

from packages.billing.services.plan_catalog import PlanCatalog
from packages.billing.services.subscription_store import SubscriptionStore
from packages.billing.services.token_ledger import TokenLedger
from packages.billing.services.charge_service import ChargeService
from packages.billing.services.credential_authorizer import CredentialAuthorizer
from packages.billing.services.renewal_scheduler import RenewalScheduler
from packages.billing.services.event_reconciler import EventReconciler
from packages.billing.services.refund_service import RefundService
from packages.billing.services.referral_service import ReferralService

__all__ = [
    "PlanCatalog",
    "SubscriptionStore",
    "TokenLedger",
    "ChargeService",
    "CredentialAuthorizer",
    "RenewalScheduler",
    "EventReconciler",
    "RefundService",
    "ReferralService",
]
