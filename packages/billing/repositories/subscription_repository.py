"""
Repository for subscription management.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update

from common.repositories.base import BaseRepository
from common.core.otel_axiom_exporter import trace_span
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.enums import (
    AuthorizationStatus,
    SubscriptionTier,
)


class SubscriptionRepository(BaseRepository[SubscriptionEntity, Subscription]):
    """
    Repository for subscriber subscriptions.

    Balance mutations are single UPDATE statements so the database enforces
    the arithmetic; callers that need read-check-write sequences hold the
    subscription lock around them.
    """

    def __init__(self, db_session=None):
        super().__init__(SubscriptionEntity, Subscription, db_session)

    async def _update_fields(self, subscription_id: int, **values) -> bool:
        values["updated_at"] = datetime.now(timezone.utc)
        async with self._get_session() as session:
            result = await session.execute(
                update(SubscriptionEntity)
                .where(SubscriptionEntity.id == subscription_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.flush()
            return result.rowcount > 0

    @trace_span
    async def get_by_subscriber_id(self, subscriber_id: str) -> Optional[Subscription]:
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity)
                .where(SubscriptionEntity.subscriber_id == subscriber_id)
                .execution_options(populate_existing=True)
            )
            db_subscription = result.scalar_one_or_none()
            return self._entity_to_domain(db_subscription) if db_subscription else None

    @trace_span
    async def get_by_customer_ref(self, customer_ref: str) -> Optional[Subscription]:
        """Get the subscription bound to a gateway customer."""
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity)
                .where(SubscriptionEntity.gateway_customer_ref == customer_ref)
                .order_by(SubscriptionEntity.id)
                .limit(1)
                .execution_options(populate_existing=True)
            )
            db_subscription = result.scalar_one_or_none()
            return self._entity_to_domain(db_subscription) if db_subscription else None

    @trace_span
    async def get_by_tier(self, tier: SubscriptionTier) -> list[Subscription]:
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity)
                .where(SubscriptionEntity.tier == tier.value)
                .order_by(SubscriptionEntity.id)
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def list_due_for_renewal(self, cutoff: datetime) -> list[Subscription]:
        """Get renewable subscriptions whose period ends on or before cutoff."""
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity)
                .where(
                    SubscriptionEntity.cancel_at_period_end.is_(False),
                    SubscriptionEntity.period_end <= cutoff,
                    SubscriptionEntity.billing_credential_ref.is_not(None),
                )
                .order_by(SubscriptionEntity.period_end, SubscriptionEntity.id)
                .execution_options(populate_existing=True)
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def add_usage(self, subscription_id: int, tokens: int) -> bool:
        """
        Consume tokens if the balance covers them.

        Returns:
            True if the row was updated, False if the balance was too low
        """
        async with self._get_session() as session:
            result = await session.execute(
                update(SubscriptionEntity)
                .where(
                    SubscriptionEntity.id == subscription_id,
                    SubscriptionEntity.tokens_total - SubscriptionEntity.tokens_used
                    >= tokens,
                )
                .values(
                    tokens_used=SubscriptionEntity.tokens_used + tokens,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            await session.flush()
            return result.rowcount == 1

    @trace_span
    async def add_tokens(self, subscription_id: int, tokens: int) -> bool:
        async with self._get_session() as session:
            result = await session.execute(
                update(SubscriptionEntity)
                .where(SubscriptionEntity.id == subscription_id)
                .values(
                    tokens_total=SubscriptionEntity.tokens_total + tokens,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            await session.flush()
            return result.rowcount > 0

    @trace_span
    async def reset_balance(self, subscription_id: int, grant: int) -> bool:
        return await self._update_fields(
            subscription_id, tokens_total=grant, tokens_used=0
        )

    @trace_span
    async def renew_period(
        self,
        subscription_id: int,
        new_start: datetime,
        new_end: datetime,
        tier: Optional[SubscriptionTier] = None,
    ) -> bool:
        values = {"period_start": new_start, "period_end": new_end}
        if tier is not None:
            values["tier"] = tier.value
        return await self._update_fields(subscription_id, **values)

    @trace_span
    async def set_cancel_at_period_end(self, subscription_id: int, value: bool) -> bool:
        return await self._update_fields(subscription_id, cancel_at_period_end=value)

    @trace_span
    async def bind_credential(
        self,
        subscription_id: int,
        credential_ref: str,
        customer_ref: Optional[str],
    ) -> bool:
        """Bind a credential; re-authorizing also lifts a pending cancel."""
        values = {
            "billing_credential_ref": credential_ref,
            "authorization_status": AuthorizationStatus.CREDENTIAL_ISSUED.value,
            "cancel_at_period_end": False,
        }
        if customer_ref:
            values["gateway_customer_ref"] = customer_ref
        return await self._update_fields(subscription_id, **values)

    @trace_span
    async def set_authorization_requested(
        self,
        subscription_id: int,
        pending_tier: SubscriptionTier,
        pending_amount_minor_units: int,
        customer_ref: Optional[str] = None,
    ) -> bool:
        values = {
            "authorization_status": AuthorizationStatus.AUTHORIZATION_REQUESTED.value,
            "pending_tier": pending_tier.value,
            "pending_amount_minor_units": pending_amount_minor_units,
        }
        if customer_ref:
            values["gateway_customer_ref"] = customer_ref
        return await self._update_fields(subscription_id, **values)

    @trace_span
    async def set_authorization_status(
        self, subscription_id: int, status: AuthorizationStatus
    ) -> bool:
        return await self._update_fields(
            subscription_id, authorization_status=status.value
        )

    @trace_span
    async def clear_pending_tier(self, subscription_id: int) -> bool:
        return await self._update_fields(
            subscription_id, pending_tier=None, pending_amount_minor_units=None
        )
