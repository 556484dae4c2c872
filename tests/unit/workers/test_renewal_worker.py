import asyncio

import pytest
from unittest.mock import AsyncMock

from packages.billing.workers.renewal_worker import RenewalWorker


class TestRenewalWorker:
    """Tests for the interval renewal worker."""

    @pytest.fixture
    async def started_services(self, services):
        yield services
        await services.stop()

    async def test_run_once_renews_due_subscriptions(
        self, started_services, pro_subscription, gateway
    ):
        """Test that a single pass charges the due subscription and exits."""
        worker = RenewalWorker(run_once=True, services=started_services)

        await worker.start()

        assert worker.running is False
        assert len(gateway.charges) == 1
        assert gateway.charges[0]["credential_ref"] == "pm_pro"

    async def test_run_once_propagates_errors(self, started_services, monkeypatch):
        """Test that a failing pass surfaces in run-once mode."""
        monkeypatch.setattr(
            started_services.scheduler,
            "run",
            AsyncMock(side_effect=RuntimeError("database down")),
        )
        worker = RenewalWorker(run_once=True, services=started_services)

        with pytest.raises(RuntimeError):
            await worker.start()

    async def test_loop_survives_failed_iteration(self, started_services, monkeypatch):
        """Test that the interval loop keeps going after an error."""
        calls = []

        async def flaky_run():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("transient")
            worker.running = False
            return await original_run()

        original_run = started_services.scheduler.run
        monkeypatch.setattr(started_services.scheduler, "run", flaky_run)
        worker = RenewalWorker(interval_seconds=1, services=started_services)

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        worker.wake()
        await asyncio.wait_for(task, timeout=2)

        assert len(calls) == 2

    async def test_stop_keeps_injected_services(self, started_services, monkeypatch):
        """Test that stop() leaves services it did not build running."""
        stop = AsyncMock()
        monkeypatch.setattr(started_services, "stop", stop)
        worker = RenewalWorker(run_once=True, services=started_services)

        await worker.stop()

        stop.assert_not_called()
        assert worker.running is False


class TestRenewalSchedulerCli:
    def test_once_flag(self):
        """Test that --once builds a single-pass worker."""
        from workers.run_renewal_scheduler import parse_args

        args, factory_args, factory_kwargs = parse_args(["--once"])

        assert args.once is True
        assert factory_args == ()
        assert factory_kwargs == {"interval_seconds": None, "run_once": True}

    def test_rejects_non_positive_interval(self):
        """Test that a zero interval is a usage error."""
        from workers.run_renewal_scheduler import parse_args

        with pytest.raises(SystemExit):
            parse_args(["--interval", "0"])
