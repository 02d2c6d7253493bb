from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, select

from quality_hold.db.models.procurement import DeliveryOutcome, Supplier, SupplierDeliveryRecord
from quality_hold.db.models.shipment import Shipment
from .base import BaseRepository


class ShipmentRepository(BaseRepository):
    """Repository for shipments (read access plus row locking for hold mutations)."""

    async def get_shipment(
        self, shipment_id: UUID, *, for_update: bool = False, include_deleted: bool = False
    ) -> Optional[Shipment]:
        stmt = select(Shipment).where(Shipment.id == shipment_id)
        if not include_deleted:
            stmt = stmt.where(Shipment.is_deleted.is_(False))
        if for_update:
            # Row lock serializes concurrent hold mutations (ignored by SQLite).
            stmt = stmt.with_for_update(of=Shipment)
        stmt = stmt.execution_options(populate_existing=True)
        return await self.scalar_one_or_none(stmt)


class SupplierDeliveryRepository(BaseRepository):
    """Repository for supplier delivery scorecard rows."""

    async def get_supplier(self, supplier_id: UUID) -> Optional[Supplier]:
        stmt = select(Supplier).where(Supplier.id == supplier_id)
        return await self.scalar_one_or_none(stmt)

    async def get_by_shipment(self, shipment_id: UUID) -> Optional[SupplierDeliveryRecord]:
        stmt = (
            select(SupplierDeliveryRecord)
            .where(SupplierDeliveryRecord.shipment_id == shipment_id)
            .with_for_update()
        )
        return await self.scalar_one_or_none(stmt)

    async def supplier_stats(self, supplier_id: UUID) -> dict:
        def _count(outcome: DeliveryOutcome):
            return func.coalesce(
                func.sum(case((SupplierDeliveryRecord.final_outcome == outcome.value, 1), else_=0)), 0
            )

        stmt = select(
            func.max(SupplierDeliveryRecord.supplier_name),
            func.count(SupplierDeliveryRecord.id),
            _count(DeliveryOutcome.SUCCESSFUL),
            _count(DeliveryOutcome.PARTIAL_ISSUE),
            _count(DeliveryOutcome.MAJOR_ISSUE),
            _count(DeliveryOutcome.REJECTED),
        ).where(SupplierDeliveryRecord.supplier_id == supplier_id)
        name, total, successful, partial, major, rejected = (await self.execute(stmt)).one()
        return {
            "supplier_name": name,
            "total_deliveries": int(total or 0),
            "successful": int(successful),
            "partial_issues": int(partial),
            "major_issues": int(major),
            "rejected": int(rejected),
        }
