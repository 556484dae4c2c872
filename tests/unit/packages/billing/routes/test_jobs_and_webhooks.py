"""
Unit tests for scheduled job, admin, webhook and health endpoints.
"""

import json

from httpx import AsyncClient

from common.core.config import settings
from packages.billing.models.domain.enums import ChargeReason, SubscriptionTier


class TestScheduledRenewals:
    """Test the cron-triggered renewal endpoint."""

    async def test_requires_cron_secret(self, client: AsyncClient, job_secrets):
        """Test that calls without the bearer secret are rejected."""
        response = await client.post("/api/v1/billing/jobs/renewals")

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    async def test_wrong_secret_rejected(self, client: AsyncClient, job_secrets):
        """Test that a bearer token other than the cron secret is rejected."""
        response = await client.post(
            "/api/v1/billing/jobs/renewals",
            headers={"Authorization": "Bearer nope"},
        )

        assert response.status_code == 401

    async def test_unconfigured_secret_rejects_everything(
        self, client: AsyncClient, monkeypatch
    ):
        """Test that an empty cron secret never authenticates."""
        monkeypatch.setattr(settings, "cron_secret", "")

        response = await client.post(
            "/api/v1/billing/jobs/renewals",
            headers={"Authorization": "Bearer "},
        )

        assert response.status_code == 401

    async def test_runs_renewals(
        self, client: AsyncClient, job_secrets, pro_subscription, gateway
    ):
        """Test that an authorized call renews due subscriptions."""
        response = await client.post(
            "/api/v1/billing/jobs/renewals",
            headers={"Authorization": f"Bearer {job_secrets['cron']}"},
        )

        assert response.status_code == 200
        summary = response.json()
        assert summary["processed"] == 1
        assert summary["succeeded"] == 1
        assert summary["results"][0]["subscription_id"] == pro_subscription.id
        assert gateway.charges[0]["credential_ref"] == "pm_pro"


class TestAdminEndpoints:
    """Test operator endpoints guarded by the admin key."""

    async def test_admin_renewals_require_key(self, client: AsyncClient, job_secrets):
        """Test that the cron secret does not open admin endpoints."""
        response = await client.post(
            "/api/v1/billing/admin/renewals",
            headers={"X-Admin-Key": job_secrets["cron"]},
        )

        assert response.status_code == 401

    async def test_admin_renewals_empty_run(self, client: AsyncClient, job_secrets):
        """Test an on-demand run with nothing due."""
        response = await client.post(
            "/api/v1/billing/admin/renewals",
            headers={"X-Admin-Key": job_secrets["admin"]},
        )

        assert response.status_code == 200
        assert response.json()["processed"] == 0

    async def test_admin_refund(
        self, client: AsyncClient, job_secrets, services, pro_subscription, gateway
    ):
        """Test refunding a completed charge through the admin endpoint."""
        outcome = await services.charges.charge(
            pro_subscription, SubscriptionTier.PRO, ChargeReason.RENEWAL
        )
        entry = await services.store.find_entry_by_charge_ref(outcome.charge_ref)

        response = await client.post(
            "/api/v1/billing/admin/refunds",
            json={"ledger_entry_id": entry.id, "amount_minor_units": 10000},
            headers={"X-Admin-Key": job_secrets["admin"]},
        )

        assert response.status_code == 200
        assert response.json()["amount_minor_units"] == 10000
        assert gateway.refunds[0]["amount_minor_units"] == 10000

    async def test_refund_unknown_entry_is_404(self, client: AsyncClient, job_secrets):
        """Test that refunding a missing ledger entry returns 404."""
        response = await client.post(
            "/api/v1/billing/admin/refunds",
            json={"ledger_entry_id": 424242},
            headers={"X-Admin-Key": job_secrets["admin"]},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "LEDGER_ENTRY_NOT_FOUND"


class TestGatewayWebhook:
    """Test the payment gateway webhook endpoint."""

    async def test_unknown_event_acknowledged(
        self, client: AsyncClient, webhook_signature
    ):
        """Test that events we do not act on are still acknowledged."""
        payload = json.dumps({"kind": "unknown", "event_id": "evt_1", "event_type": "x"})

        response = await client.post(
            "/api/v1/webhooks/gateway",
            content=payload,
            headers={"stripe-signature": webhook_signature},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "success", "outcome": "ignored"}

    async def test_bad_signature_is_401(self, client: AsyncClient):
        """Test that an unverifiable delivery is rejected."""
        payload = json.dumps({"kind": "unknown", "event_id": "evt_1", "event_type": "x"})

        response = await client.post(
            "/api/v1/webhooks/gateway",
            content=payload,
            headers={"stripe-signature": "t=1,v1=forged"},
        )

        assert response.status_code == 401
        assert response.json()["error"] == "SIGNATURE_VERIFICATION_FAILED"

    async def test_malformed_payload_is_400(
        self, client: AsyncClient, webhook_signature
    ):
        """Test that a signed body that is not a gateway event returns 400."""
        response = await client.post(
            "/api/v1/webhooks/gateway",
            content=b'{"kind": "charge_succeeded"}',
            headers={"stripe-signature": webhook_signature},
        )

        assert response.status_code == 400

    async def test_charge_succeeded_applies_pending_charge(
        self, client: AsyncClient, webhook_signature, services, pro_subscription, gateway
    ):
        """Test that a success event settles a pending renewal."""
        gateway.settled = False
        outcome = await services.charges.charge(
            pro_subscription, SubscriptionTier.PRO, ChargeReason.RENEWAL
        )
        payload = json.dumps(
            {
                "kind": "charge_succeeded",
                "event_id": "evt_2",
                "charge_ref": outcome.charge_ref,
                "payment_ref": "pi_1",
                "amount_minor_units": 30000,
            }
        )

        response = await client.post(
            "/api/v1/webhooks/gateway",
            content=payload,
            headers={"stripe-signature": webhook_signature},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"

        replay = await client.post(
            "/api/v1/webhooks/gateway",
            content=payload,
            headers={"stripe-signature": webhook_signature},
        )
        assert replay.json()["outcome"] == "duplicate"


class TestHealth:
    async def test_health(self, client: AsyncClient):
        """Test the liveness endpoint."""
        response = await client.get("/api/v1/health/")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_dependencies_healthy(self, client: AsyncClient):
        """Test the dependency check with a reachable database and gateway."""
        response = await client.get("/api/v1/health/dependencies")

        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "gateway": "reachable",
        }

    async def test_dependencies_gateway_down(self, client: AsyncClient, gateway):
        """Test that an unreachable gateway marks the service unhealthy."""
        gateway.healthy = False

        response = await client.get("/api/v1/health/dependencies")

        assert response.json()["status"] == "unhealthy"
        assert response.json()["gateway"] == "unreachable"

    async def test_healthz(self, client: AsyncClient):
        """Test the internal health check endpoint."""
        response = await client.get("/healthz")

        assert response.json() == {"status": "ok"}
