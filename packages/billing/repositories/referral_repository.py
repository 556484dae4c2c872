"""
Repository for referral rewards.
"""

from typing import Optional

from sqlalchemy import select

from common.repositories.base import BaseRepository
from common.core.otel_axiom_exporter import trace_span
from packages.billing.models.database.referral import ReferralRewardEntity
from packages.billing.models.domain.referral import ReferralReward


class ReferralRepository(BaseRepository[ReferralRewardEntity, ReferralReward]):
    def __init__(self, db_session=None):
        super().__init__(ReferralRewardEntity, ReferralReward, db_session)

    @trace_span
    async def get_by_pair(
        self, referrer_subscriber_id: str, referred_subscriber_id: str
    ) -> Optional[ReferralReward]:
        async with self._get_session() as session:
            result = await session.execute(
                select(ReferralRewardEntity).where(
                    ReferralRewardEntity.referrer_subscriber_id
                    == referrer_subscriber_id,
                    ReferralRewardEntity.referred_subscriber_id
                    == referred_subscriber_id,
                )
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None
