"""
Renewal worker: runs the recurring billing scheduler on an interval.

For deployments without an external scheduler calling
POST /billing/jobs/renewals. Run one process per deployment; the
per-subscription locks make an accidental second process safe but wasteful.
"""

import asyncio
from typing import Optional

from common.core.config import Settings, settings as default_settings
from common.core.otel_axiom_exporter import get_logger
from common.db.session import dispose_engine
from packages.billing.container import BillingServices, build_billing_services

logger = get_logger(__name__)


class RenewalWorker:
    """Loop around RenewalScheduler.run()."""

    def __init__(
        self,
        interval_seconds: Optional[int] = None,
        run_once: bool = False,
        settings: Optional[Settings] = None,
        services: Optional[BillingServices] = None,
    ):
        self.settings = settings or default_settings
        self.interval_seconds = interval_seconds or self.settings.renewal_interval_seconds
        self.run_once = run_once
        self.services = services
        self._owns_services = services is None
        self.running = False
        self._wake = asyncio.Event()

    def wake(self) -> None:
        """Interrupt the sleep between runs."""
        self._wake.set()

    async def run_iteration(self):
        summary = await self.services.scheduler.run()
        logger.info(
            "Renewal iteration complete",
            extra={
                "processed": summary.processed,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "skipped": summary.skipped,
            },
        )
        return summary

    async def start(self):
        if self.running:
            logger.warning("Renewal worker is already running")
            return

        if self.services is None:
            self.services = build_billing_services(self.settings)
        await self.services.start()
        self.running = True
        logger.info(
            "Renewal worker started",
            extra={"interval_seconds": self.interval_seconds, "run_once": self.run_once},
        )

        while self.running:
            try:
                await self.run_iteration()
            except Exception as e:
                logger.error(f"Renewal iteration failed: {e}", exc_info=True)
                if self.run_once:
                    raise

            if self.run_once:
                break

            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        self.running = False

    async def stop(self):
        self.running = False
        self.wake()
        if self.services is not None and self._owns_services:
            await self.services.stop()
            await dispose_engine()
        logger.info("Renewal worker stopped")
