"""
Recurring billing scheduler.

One run charges every subscription that is due within the lookahead window.
Subscriptions are processed one at a time and independently: a failure on
one is recorded and the run moves on. There are no retries within a run;
the next run picks up whatever is still due, bounded by the auto-cancel
failure policy. A charge left pending by a gateway timeout counts as a
failure once it is older than the pending grace period.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from common.core.otel_axiom_exporter import trace_span, get_logger, log_span_event
from packages.billing.models.domain.enums import ChargeReason, LedgerEntryStatus
from packages.billing.models.domain.results import RenewalResult, RenewalRunSummary
from packages.billing.models.domain.subscription import Subscription
from packages.billing.services.charge_service import ChargeService
from packages.billing.services.subscription_store import SubscriptionStore

logger = get_logger(__name__)


class RenewalScheduler:
    """Periodic renewal job."""

    def __init__(
        self,
        store: SubscriptionStore,
        charges: ChargeService,
        lookahead: timedelta = timedelta(hours=24),
        pending_grace: timedelta = timedelta(hours=24),
    ):
        self.store = store
        self.charges = charges
        self.lookahead = lookahead
        self.pending_grace = pending_grace

    async def _renew_one(
        self, subscription: Subscription, now: datetime
    ) -> RenewalResult:
        if await self.store.has_pending_charge_since(
            subscription.id, now - self.pending_grace
        ):
            return RenewalResult(
                subscription_id=subscription.id,
                status="skipped",
                detail="charge awaiting reconciliation",
            )

        # Stale gateway timeouts count toward auto-cancel before we retry
        if await self.charges.apply_failure_policy(subscription.id, now):
            return RenewalResult(
                subscription_id=subscription.id,
                status="skipped",
                detail="auto-cancelled after repeated failures",
            )

        outcome = await self.charges.charge(
            subscription, subscription.tier, ChargeReason.RENEWAL, now=now
        )
        return RenewalResult(
            subscription_id=subscription.id,
            status=outcome.status.value,
            charge_ref=outcome.charge_ref,
            detail=outcome.failure_code,
        )

    @trace_span
    async def run(self, now: Optional[datetime] = None) -> RenewalRunSummary:
        """
        Charge every due subscription once.

        Returns:
            Totals plus one result per subscription. Timed-out charges stay
            pending and are counted as failed.
        """
        now = now or datetime.now(timezone.utc)
        due = await self.store.list_due_for_renewal(now, self.lookahead)
        summary = RenewalRunSummary()

        logger.info(
            f"Renewal run starting with {len(due)} due subscriptions",
            extra={"due": len(due), "as_of": now.isoformat()},
        )

        for subscription in due:
            summary.processed += 1
            try:
                result = await self._renew_one(subscription, now)
            except Exception as e:
                logger.exception(
                    f"Renewal failed for subscription {subscription.id}: {e}",
                    extra={"subscription_id": subscription.id},
                )
                result = RenewalResult(
                    subscription_id=subscription.id, status="error", detail=str(e)
                )

            if result.status == LedgerEntryStatus.COMPLETED.value:
                summary.succeeded += 1
            elif result.status == "skipped":
                summary.skipped += 1
            else:
                summary.failed += 1
            summary.results.append(result)

        log_span_event(
            "Renewal run finished",
            {
                "processed": summary.processed,
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "skipped": summary.skipped,
            },
        )
        return summary
