"""
Database entity for daily usage counters.
"""

from sqlalchemy import Column, Date, ForeignKey, Integer, UniqueConstraint

from common.db.base import Base, BigIntegerType


class DailyUsageCounterEntity(Base):
    """
    Work units consumed per subscription per UTC day.

    Used only for the daily cap. Counters are keyed by date, so a new day
    starts from zero without any reset job.
    """

    __tablename__ = "daily_usage_counters"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    subscription_id = Column(
        BigIntegerType,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    )
    usage_date = Column(Date, nullable=False)
    units_consumed = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "usage_date", name="uq_daily_usage_subscription_date"
        ),
    )
