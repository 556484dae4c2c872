"""
Repository for daily usage counters.
"""

from datetime import date
from typing import Optional

from sqlalchemy import select, update

from common.repositories.base import BaseRepository
from common.core.otel_axiom_exporter import trace_span
from packages.billing.models.database.daily_usage import DailyUsageCounterEntity
from packages.billing.models.domain.usage import DailyUsage


class DailyUsageRepository(BaseRepository[DailyUsageCounterEntity, DailyUsage]):
    """Per-day work unit counters. Writers hold the subscription lock."""

    def __init__(self, db_session=None):
        super().__init__(DailyUsageCounterEntity, DailyUsage, db_session)

    @trace_span
    async def get_for_date(
        self, subscription_id: int, usage_date: date
    ) -> Optional[DailyUsage]:
        async with self._get_session() as session:
            result = await session.execute(
                select(DailyUsageCounterEntity)
                .where(
                    DailyUsageCounterEntity.subscription_id == subscription_id,
                    DailyUsageCounterEntity.usage_date == usage_date,
                )
                .execution_options(populate_existing=True)
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def units_for_date(self, subscription_id: int, usage_date: date) -> int:
        counter = await self.get_for_date(subscription_id, usage_date)
        return counter.units_consumed if counter else 0

    @trace_span
    async def increment(self, subscription_id: int, usage_date: date, units: int) -> int:
        """
        Add units to the day's counter, creating it on first use.

        Returns:
            Units consumed for the day after the increment
        """
        async with self._get_session() as session:
            result = await session.execute(
                update(DailyUsageCounterEntity)
                .where(
                    DailyUsageCounterEntity.subscription_id == subscription_id,
                    DailyUsageCounterEntity.usage_date == usage_date,
                )
                .values(
                    units_consumed=DailyUsageCounterEntity.units_consumed + units
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(
                    DailyUsageCounterEntity(
                        subscription_id=subscription_id,
                        usage_date=usage_date,
                        units_consumed=units,
                    )
                )
            await session.flush()

        return await self.units_for_date(subscription_id, usage_date)
