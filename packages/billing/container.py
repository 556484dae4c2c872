"""
Billing service wiring.

build_billing_services() constructs every billing service once, with its
collaborators passed in explicitly. The API lifespan and the renewal worker
each build one container; tests build their own with fakes.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from common.core.config import Settings
from common.providers.caching.factory import build_cache_provider
from common.providers.caching.interface import CacheInterface
from common.providers.locking.factory import build_lock_provider
from common.providers.locking.interface import DistributedLockInterface
from packages.billing.providers.payment.factory import build_payment_gateway
from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.services.charge_service import ChargeService
from packages.billing.services.credential_authorizer import CredentialAuthorizer
from packages.billing.services.event_reconciler import EventReconciler
from packages.billing.services.plan_catalog import PlanCatalog
from packages.billing.services.referral_service import ReferralService
from packages.billing.services.refund_service import RefundService
from packages.billing.services.renewal_scheduler import RenewalScheduler
from packages.billing.services.subscription_store import SubscriptionStore
from packages.billing.services.token_ledger import TokenLedger
from packages.billing.services.token_purchase_service import TokenPurchaseService


@dataclass
class BillingServices:
    catalog: PlanCatalog
    store: SubscriptionStore
    ledger: TokenLedger
    charges: ChargeService
    authorizer: CredentialAuthorizer
    scheduler: RenewalScheduler
    reconciler: EventReconciler
    refunds: RefundService
    referrals: ReferralService
    purchases: TokenPurchaseService
    gateway: PaymentGatewayInterface
    cache: CacheInterface
    lock_provider: DistributedLockInterface

    async def start(self) -> None:
        await self.cache.start()

    async def stop(self) -> None:
        await self.cache.stop()
        await self.lock_provider.close()


def build_billing_services(
    settings: Settings,
    gateway: Optional[PaymentGatewayInterface] = None,
    cache: Optional[CacheInterface] = None,
    lock_provider: Optional[DistributedLockInterface] = None,
) -> BillingServices:
    """Build the billing services from settings, with optional overrides."""
    gateway = gateway or build_payment_gateway(settings)
    cache = cache or build_cache_provider(settings)
    lock_provider = lock_provider or build_lock_provider(settings)

    catalog = PlanCatalog(
        currency=settings.billing_currency,
        billing_period_days=settings.billing_period_days,
    )
    store = SubscriptionStore(
        catalog,
        lock_provider,
        lock_ttl_seconds=settings.lock_ttl_seconds,
        lock_acquire_timeout_seconds=settings.lock_acquire_timeout_seconds,
    )
    ledger = TokenLedger(
        store,
        catalog,
        cache,
        enforcement_enabled=settings.billing_enforcement_enabled,
        balance_cache_ttl=settings.cache_ttl_seconds,
    )
    charges = ChargeService(
        store,
        ledger,
        catalog,
        gateway,
        charge_timeout_seconds=settings.gateway_charge_timeout_seconds,
        failure_window_days=settings.failure_window_days,
        auto_cancel_threshold=settings.auto_cancel_failure_threshold,
        pending_grace=timedelta(hours=settings.pending_charge_grace_hours),
    )
    authorizer = CredentialAuthorizer(
        store, catalog, gateway, charges, app_base_url=settings.app_base_url
    )
    scheduler = RenewalScheduler(
        store,
        charges,
        lookahead=timedelta(hours=settings.renewal_lookahead_hours),
        pending_grace=timedelta(hours=settings.pending_charge_grace_hours),
    )

    return BillingServices(
        catalog=catalog,
        store=store,
        ledger=ledger,
        charges=charges,
        authorizer=authorizer,
        scheduler=scheduler,
        reconciler=EventReconciler(store, charges, authorizer),
        refunds=RefundService(store, gateway),
        referrals=ReferralService(store, ledger),
        purchases=TokenPurchaseService(catalog, charges),
        gateway=gateway,
        cache=cache,
        lock_provider=lock_provider,
    )
