"""
Repository for ledger entries.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, func, or_, select, update

from common.repositories.base import BaseRepository
from common.core.otel_axiom_exporter import trace_span
from packages.billing.exceptions import GatewayTimeoutError
from packages.billing.models.database.ledger_entry import LedgerEntryEntity
from packages.billing.models.domain.ledger import LedgerEntry
from packages.billing.models.domain.enums import LedgerEntryKind, LedgerEntryStatus


class LedgerEntryRepository(BaseRepository[LedgerEntryEntity, LedgerEntry]):
    """Append-only ledger with conditional status transitions."""

    def __init__(self, db_session=None):
        super().__init__(LedgerEntryEntity, LedgerEntry, db_session)

    @trace_span
    async def resolve(
        self,
        entry_id: int,
        expected: LedgerEntryStatus,
        new: LedgerEntryStatus,
        **fields,
    ) -> bool:
        """
        Move an entry from expected to new status.

        The WHERE clause on the current status makes this a compare-and-set:
        of several concurrent callers only one sees rowcount == 1.

        Returns:
            True if this call performed the transition
        """
        values = {
            "status": new.value,
            "updated_at": datetime.now(timezone.utc),
        }
        values.update({k: v for k, v in fields.items() if v is not None})

        async with self._get_session() as session:
            result = await session.execute(
                update(LedgerEntryEntity)
                .where(
                    LedgerEntryEntity.id == entry_id,
                    LedgerEntryEntity.status == expected.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.flush()
            return result.rowcount == 1

    @trace_span
    async def set_failure_code(self, entry_id: int, failure_code: str) -> None:
        async with self._get_session() as session:
            await session.execute(
                update(LedgerEntryEntity)
                .where(LedgerEntryEntity.id == entry_id)
                .values(
                    failure_code=failure_code,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            await session.flush()

    async def _find_one(self, *conditions) -> Optional[LedgerEntry]:
        async with self._get_session() as session:
            result = await session.execute(
                select(LedgerEntryEntity)
                .where(*conditions)
                .order_by(LedgerEntryEntity.id)
                .limit(1)
                .execution_options(populate_existing=True)
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def find_by_charge_ref(self, charge_ref: str) -> Optional[LedgerEntry]:
        return await self._find_one(LedgerEntryEntity.external_charge_ref == charge_ref)

    @trace_span
    async def find_by_payment_ref(self, payment_ref: str) -> Optional[LedgerEntry]:
        """Find the charge a gateway payment belongs to (refund rows excluded)."""
        return await self._find_one(
            LedgerEntryEntity.gateway_payment_ref == payment_ref,
            LedgerEntryEntity.kind == LedgerEntryKind.CHARGE.value,
        )

    @trace_span
    async def count_failed_charges_since(
        self,
        subscription_id: int,
        since: datetime,
        timed_out_before: Optional[datetime] = None,
    ) -> int:
        """
        Count failed charges created on or after since.

        With timed_out_before, pending charges that timed out at the gateway
        before that instant count as failures too.
        """
        failed = LedgerEntryEntity.status == LedgerEntryStatus.FAILED.value
        if timed_out_before is not None:
            failed = or_(
                failed,
                and_(
                    LedgerEntryEntity.status == LedgerEntryStatus.PENDING.value,
                    LedgerEntryEntity.failure_code == GatewayTimeoutError.error_code,
                    LedgerEntryEntity.created_at < timed_out_before,
                ),
            )
        async with self._get_session() as session:
            result = await session.execute(
                select(func.count(LedgerEntryEntity.id)).where(
                    LedgerEntryEntity.subscription_id == subscription_id,
                    LedgerEntryEntity.kind == LedgerEntryKind.CHARGE.value,
                    failed,
                    LedgerEntryEntity.created_at >= since,
                )
            )
            return result.scalar_one()

    @trace_span
    async def has_pending_charge_since(
        self, subscription_id: int, since: datetime
    ) -> bool:
        async with self._get_session() as session:
            result = await session.execute(
                select(func.count(LedgerEntryEntity.id)).where(
                    LedgerEntryEntity.subscription_id == subscription_id,
                    LedgerEntryEntity.kind == LedgerEntryKind.CHARGE.value,
                    LedgerEntryEntity.status == LedgerEntryStatus.PENDING.value,
                    LedgerEntryEntity.created_at >= since,
                )
            )
            return result.scalar_one() > 0

    @trace_span
    async def list_for_subscription(
        self,
        subscription_id: int,
        limit: int = 10,
        kind: Optional[LedgerEntryKind] = None,
    ) -> list[LedgerEntry]:
        """Newest first."""
        query = select(LedgerEntryEntity).where(
            LedgerEntryEntity.subscription_id == subscription_id
        )
        if kind is not None:
            query = query.where(LedgerEntryEntity.kind == kind.value)
        query = query.order_by(
            LedgerEntryEntity.created_at.desc(), LedgerEntryEntity.id.desc()
        ).limit(limit)

        async with self._get_session() as session:
            result = await session.execute(query)
            return self._entities_to_domain(result.scalars().all())
