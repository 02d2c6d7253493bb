from __future__ import annotations

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.core.errors import NotFound
from quality_hold.db.models.procurement import DeliveryOutcome, SupplierDeliveryRecord
from quality_hold.repositories.shipments import SupplierDeliveryRepository
from quality_hold.services.base import BaseService

logger = logging.getLogger(__name__)

# Average defect percentage above which a delivery counts as a major issue.
MAJOR_ISSUE_THRESHOLD_PCT = 5.0


# PUBLIC_INTERFACE
def classify_outcome(avg_defect_pct: Optional[float]) -> DeliveryOutcome:
    """`major_issue` strictly above the threshold, `partial_issue` otherwise (5.0 is partial)."""
    if (avg_defect_pct or 0.0) > MAJOR_ISSUE_THRESHOLD_PCT:
        return DeliveryOutcome.MAJOR_ISSUE
    return DeliveryOutcome.PARTIAL_ISSUE


class OutcomeClassifier(BaseService):
    """Derives delivery verdicts and maintains the supplier delivery scorecard."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)
        self.repo = SupplierDeliveryRepository(session)

    async def upsert_record(
        self,
        shipment_id: UUID,
        *,
        supplier_id: Optional[UUID],
        supplier_name: Optional[str],
        has_quality_issues: bool,
        final_outcome: DeliveryOutcome,
        confirmed_by_user_id: Optional[str] = None,
    ) -> SupplierDeliveryRecord:
        """Insert-or-update the scorecard row of a shipment. Runs inside the caller's transaction."""
        record = await self.repo.get_by_shipment(shipment_id)
        if record is None:
            record = SupplierDeliveryRecord(
                shipment_id=shipment_id,
                supplier_id=supplier_id,
                supplier_name=supplier_name,
                delivery_date=date.today(),
                has_quality_issues=has_quality_issues,
                final_outcome=final_outcome.value,
                confirmed_by_user_id=confirmed_by_user_id,
            )
            await self.repo.add(record)
        else:
            record.has_quality_issues = has_quality_issues
            record.final_outcome = final_outcome.value
            if supplier_id is not None:
                record.supplier_id = supplier_id
                record.supplier_name = supplier_name
            if confirmed_by_user_id is not None:
                record.confirmed_by_user_id = confirmed_by_user_id
        await self.repo.flush()
        return record

    # PUBLIC_INTERFACE
    async def classify(
        self,
        shipment_id: UUID,
        supplier_id: Optional[UUID],
        supplier_name: Optional[str],
        avg_defect_pct: Optional[float],
    ) -> SupplierDeliveryRecord:
        """
        Record the final verdict of a closed incident on the supplier scorecard.

        Runs inside the caller's transaction. A missing scorecard row (delivery
        never confirmed) is created with today's date.
        """
        outcome = classify_outcome(avg_defect_pct)
        record = await self.upsert_record(
            shipment_id,
            supplier_id=supplier_id,
            supplier_name=supplier_name,
            has_quality_issues=True,
            final_outcome=outcome,
        )
        logger.info(
            "Shipment %s classified %s (avg defect %s%%)", shipment_id, outcome.value, avg_defect_pct
        )
        return record

    # PUBLIC_INTERFACE
    async def supplier_stats(self, supplier_id: UUID) -> dict:
        """Delivery totals per outcome and success rate for one supplier."""
        supplier = await self.repo.get_supplier(supplier_id)
        if supplier is None:
            raise NotFound(f"Supplier {supplier_id} not found")
        stats = await self.repo.supplier_stats(supplier_id)
        total = stats["total_deliveries"]
        stats["supplier_id"] = supplier_id
        stats["supplier_name"] = stats["supplier_name"] or supplier.name
        stats["success_rate"] = round(stats["successful"] / total * 100, 1) if total else None
        return stats
