# Shared pytest configuration and fixtures for all test types
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from pydantic import TypeAdapter, ValidationError as PydanticValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

# Create test limiter with no limits and in-memory storage
test_limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri="memory://",
)

# Patch the limiter before importing the app so decorators use test limiter
with patch("common.providers.rate_limiter.limiter.limiter", test_limiter):
    from api.main import app

from common.core.config import settings
from common.core.exceptions import ValidationError
from common.db.base import Base
from common.providers.caching.memory_cache import MemoryCache
from common.providers.locking.local_lock import LocalLock
from packages.billing.container import build_billing_services
from packages.billing.dependencies import get_billing_services
from packages.billing.exceptions import GatewayError, SignatureVerificationError
from packages.billing.models.database import (  # noqa: F401
    DailyUsageCounterEntity,
    LedgerEntryEntity,
    ReferralRewardEntity,
    SubscriptionEntity,
)
from packages.billing.models.domain.enums import SubscriptionTier
from packages.billing.models.domain.events import GatewayEvent
from packages.billing.providers.payment.interface import (
    AuthorizationSession,
    ChargeReceipt,
    IssuedCredential,
    PaymentGatewayInterface,
)

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Signature accepted by FakePaymentGateway.parse_event
VALID_SIGNATURE = "t=1,v1=valid"


class FakePaymentGateway(PaymentGatewayInterface):
    """In-memory gateway that records every call."""

    def __init__(self):
        self.decline_code: Optional[str] = None
        self.charge_delay_seconds: float = 0.0
        self.settled = True
        self.healthy = True
        self.customers: dict[str, str] = {}
        self.sessions: dict[str, IssuedCredential] = {}
        self.charges: list[dict] = []
        self.refunds: list[dict] = []

    async def find_or_create_customer(self, customer_key: str) -> str:
        if customer_key not in self.customers:
            self.customers[customer_key] = f"cus_{len(self.customers) + 1}"
        return self.customers[customer_key]

    async def create_authorization_session(
        self,
        customer_key: str,
        customer_ref: str,
        tier: SubscriptionTier,
        success_url: str,
        cancel_url: str,
    ) -> AuthorizationSession:
        session_ref = f"cs_{customer_key}"
        self.sessions[session_ref] = IssuedCredential(
            credential_ref=f"pm_{customer_key}", customer_ref=customer_ref
        )
        return AuthorizationSession(
            session_ref=session_ref,
            redirect_url=f"https://checkout.test/{session_ref}",
            customer_ref=customer_ref,
        )

    async def retrieve_issued_credential(self, session_ref: str) -> IssuedCredential:
        if session_ref not in self.sessions:
            raise GatewayError("credential_missing")
        return self.sessions[session_ref]

    async def charge(
        self,
        credential_ref: str,
        customer_ref: Optional[str],
        amount_minor_units: int,
        charge_ref: str,
        plan_tier: Optional[SubscriptionTier] = None,
    ) -> ChargeReceipt:
        self.charges.append(
            {
                "credential_ref": credential_ref,
                "customer_ref": customer_ref,
                "amount_minor_units": amount_minor_units,
                "charge_ref": charge_ref,
                "plan_tier": plan_tier,
            }
        )
        if self.charge_delay_seconds:
            await asyncio.sleep(self.charge_delay_seconds)
        if self.decline_code:
            raise GatewayError(self.decline_code)
        return ChargeReceipt(payment_ref=f"pi_{len(self.charges)}", settled=self.settled)

    async def refund(
        self,
        payment_ref: str,
        amount_minor_units: Optional[int],
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> str:
        self.refunds.append(
            {
                "payment_ref": payment_ref,
                "amount_minor_units": amount_minor_units,
                "idempotency_key": idempotency_key,
                "reason": reason,
            }
        )
        return f"re_{len(self.refunds)}"

    def parse_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        if signature != VALID_SIGNATURE:
            raise SignatureVerificationError("Invalid signature")
        try:
            return TypeAdapter(GatewayEvent).validate_json(payload)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid webhook payload: {e}") from e

    async def health_check(self) -> bool:
        return self.healthy


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine and initialize schema."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_connection(test_engine):
    """Create test connection with outer transaction for rollback isolation."""
    async with test_engine.connect() as connection:
        trans = await connection.begin()
        yield connection
        await trans.rollback()


@pytest_asyncio.fixture(scope="function")
async def test_session_factory(test_connection):
    """Create session factory bound to test connection.

    Using join_transaction_mode="create_savepoint" so transaction() and
    get_session() commits release savepoints instead of the outer transaction.
    """
    return async_sessionmaker(
        bind=test_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest_asyncio.fixture(scope="function")
async def test_db(test_session_factory):
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_lazy_sessions(test_session_factory, monkeypatch):
    """
    Patch session factories to use test database.

    This allows real transaction() and get_session() to run with proper
    commit/rollback/ContextVar semantics while using the test database.
    """
    monkeypatch.setattr("common.db.scoped.AsyncSessionLocal", test_session_factory)
    monkeypatch.setattr(
        "common.db.scoped.AsyncSessionLocalReadonly", test_session_factory
    )


@pytest.fixture
def now():
    """Fixed clock for tests that pass an explicit now."""
    return datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def webhook_signature():
    return VALID_SIGNATURE


@pytest.fixture
def job_secrets(monkeypatch):
    """Configure the cron secret and admin key for job endpoints."""
    monkeypatch.setattr(settings, "cron_secret", "cron-test-secret")
    monkeypatch.setattr(settings, "admin_secret", "admin-test-key")
    return {"cron": "cron-test-secret", "admin": "admin-test-key"}


@pytest.fixture
def services(gateway):
    """Billing services wired to the fake gateway, an in-memory cache and local locks."""
    return build_billing_services(
        settings,
        gateway=gateway,
        cache=MemoryCache(max_entries=100, default_ttl=60),
        lock_provider=LocalLock(),
    )


@pytest_asyncio.fixture(scope="function")
async def client(services):
    """Create a test client."""

    def override_get_billing_services():
        return services

    # ASGITransport does not run the lifespan
    app.state.billing = services
    app.dependency_overrides[get_billing_services] = override_get_billing_services

    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def free_subscription(services, now):
    """A FREE subscription with no credential."""
    return await services.store.create("sub_free", SubscriptionTier.FREE, now=now)


@pytest_asyncio.fixture(scope="function")
async def pro_subscription(services, now):
    """A PRO subscription with a bound credential, due for renewal in one hour."""
    period_start = now + timedelta(hours=1) - timedelta(
        days=services.catalog.billing_period_days
    )
    subscription = await services.store.create(
        "sub_pro", SubscriptionTier.PRO, now=period_start
    )
    await services.store.bind_credential(subscription.id, "pm_pro", "cus_pro")
    return await services.store.get(subscription.id)
