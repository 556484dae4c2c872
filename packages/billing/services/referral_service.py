"""One-time token rewards for referrals."""

from datetime import datetime, timezone

from common.core.exceptions import ValidationError
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.scoped import transaction
from common.providers.locking.scoped import hold_lock
from packages.billing.models.domain.referral import (
    ReferralReward,
    ReferralRewardCreateModel,
)
from packages.billing.models.domain.results import ReferralResult
from packages.billing.repositories.referral_repository import ReferralRepository
from packages.billing.services.subscription_store import SubscriptionStore
from packages.billing.services.token_ledger import TokenLedger

logger = get_logger(__name__)

REFERRER_REWARD_TOKENS = 20
REFERRED_REWARD_TOKENS = 10


def _to_result(reward: ReferralReward) -> ReferralResult:
    return ReferralResult(
        referrer_subscriber_id=reward.referrer_subscriber_id,
        referred_subscriber_id=reward.referred_subscriber_id,
        referrer_tokens=reward.referrer_tokens,
        referred_tokens=reward.referred_tokens,
    )


class ReferralService:
    def __init__(
        self,
        store: SubscriptionStore,
        ledger: TokenLedger,
        referral_repo: ReferralRepository | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.referral_repo = referral_repo or ReferralRepository()

    @trace_span
    async def grant_referral_reward(
        self, referrer_subscriber_id: str, referred_subscriber_id: str
    ) -> ReferralResult:
        """
        Credit both sides of a referral once per pair.

        The reward row and both credits commit together. A repeat for the
        same pair returns the existing reward without crediting again.
        """
        if referrer_subscriber_id == referred_subscriber_id:
            raise ValidationError("Subscribers cannot refer themselves")

        pair_key = f"referral:{referrer_subscriber_id}:{referred_subscriber_id}"
        async with hold_lock(self.store.lock_provider, pair_key):
            existing = await self.referral_repo.get_by_pair(
                referrer_subscriber_id, referred_subscriber_id
            )
            if existing:
                logger.info(
                    "Referral reward already granted",
                    extra={
                        "referrer_subscriber_id": referrer_subscriber_id,
                        "referred_subscriber_id": referred_subscriber_id,
                    },
                )
                return _to_result(existing)

            referrer = await self.store.get_or_create_for_subscriber(
                referrer_subscriber_id
            )
            referred = await self.store.get_or_create_for_subscriber(
                referred_subscriber_id
            )

            async with transaction():
                reward = await self.referral_repo.create(
                    ReferralRewardCreateModel(
                        referrer_subscriber_id=referrer_subscriber_id,
                        referred_subscriber_id=referred_subscriber_id,
                        referrer_tokens=REFERRER_REWARD_TOKENS,
                        referred_tokens=REFERRED_REWARD_TOKENS,
                        created_at=datetime.now(timezone.utc),
                    )
                )
                await self.ledger.credit(
                    referrer.id,
                    REFERRER_REWARD_TOKENS,
                    f"Referral reward for inviting {referred_subscriber_id}",
                )
                await self.ledger.credit(
                    referred.id,
                    REFERRED_REWARD_TOKENS,
                    f"Referral reward for joining via {referrer_subscriber_id}",
                )

        await self.ledger.invalidate_balance(referrer.id)
        await self.ledger.invalidate_balance(referred.id)

        logger.info(
            "Granted referral reward",
            extra={
                "referrer_subscriber_id": referrer_subscriber_id,
                "referred_subscriber_id": referred_subscriber_id,
            },
        )
        return _to_result(reward)
