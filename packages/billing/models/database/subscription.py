"""
Database entity for subscriptions.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Index,
    Integer,
    String,
    BigInteger,
)

from common.db.base import Base, BigIntegerType, UTCDateTime


class SubscriptionEntity(Base):
    """
    Subscriber subscription database entity.

    Holds the plan tier, token balance, billing period and the bound
    billing credential. One row per subscriber.
    """

    __tablename__ = "subscriptions"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    subscriber_id = Column(String(255), nullable=False, unique=True, index=True)

    # Plan
    tier = Column(String(50), nullable=False, index=True)  # free, pro, premium

    # Token balance for the current period
    tokens_total = Column(BigInteger, nullable=False, default=0)
    tokens_used = Column(BigInteger, nullable=False, default=0)

    # Billing cycle
    period_start = Column(UTCDateTime, nullable=False)
    period_end = Column(UTCDateTime, nullable=False)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)

    # Gateway references (NULL until a credential is authorized)
    billing_credential_ref = Column(String(255), nullable=True)
    gateway_customer_ref = Column(String(255), nullable=True, index=True)
    authorization_status = Column(String(50), nullable=False, default="none")

    # Requested by an authorization, consumed by the initial charge
    pending_tier = Column(String(50), nullable=True)
    pending_amount_minor_units = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "tokens_used >= 0 AND tokens_used <= tokens_total",
            name="ck_subscriptions_tokens_used_within_total",
        ),
        CheckConstraint(
            "period_start < period_end", name="ck_subscriptions_period_order"
        ),
        Index(
            "idx_subscriptions_renewal",
            "cancel_at_period_end",
            "period_end",
        ),
    )
