"""
Database entity for ledger entries.
"""

from sqlalchemy import Column, String, ForeignKey, Index, Integer, BigInteger

from common.db.base import Base, BigIntegerType, UTCDateTime


class LedgerEntryEntity(Base):
    """
    Append-only record of charges, token grants, refunds and failures.

    Rows are never updated except for status transitions (and the gateway
    fields written alongside them). external_charge_ref is the idempotency
    key shared by the scheduler and the webhook reconciler.
    """

    __tablename__ = "ledger_entries"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    subscription_id = Column(
        BigIntegerType,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    kind = Column(String(50), nullable=False)  # charge, token_grant, refund, failure_record
    status = Column(String(50), nullable=False)

    amount_minor_units = Column(Integer, nullable=False, default=0)
    token_delta = Column(BigInteger, nullable=False, default=0)

    external_charge_ref = Column(String(255), nullable=True, unique=True)
    gateway_payment_ref = Column(String(255), nullable=True, index=True)
    failure_code = Column(String(100), nullable=True)

    # Tier whose billing period this charge pays for (NULL for non-period charges)
    plan_tier = Column(String(50), nullable=True)

    description = Column(String(500), nullable=True)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index(
            "idx_ledger_entries_subscription_kind_status_date",
            "subscription_id",
            "kind",
            "status",
            "created_at",
        ),
    )
