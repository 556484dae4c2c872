"""
Database entity for referral rewards.
"""

from sqlalchemy import Column, String, Integer, UniqueConstraint

from common.db.base import Base, BigIntegerType, UTCDateTime


class ReferralRewardEntity(Base):
    """One row per (referrer, referred) pair; the unique pair makes rewards one-shot."""

    __tablename__ = "referral_rewards"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    referrer_subscriber_id = Column(String(255), nullable=False, index=True)
    referred_subscriber_id = Column(String(255), nullable=False)
    referrer_tokens = Column(Integer, nullable=False)
    referred_tokens = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "referrer_subscriber_id",
            "referred_subscriber_id",
            name="uq_referral_rewards_pair",
        ),
    )
