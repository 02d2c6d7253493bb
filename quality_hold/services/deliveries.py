from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.core.errors import NotFound
from quality_hold.core.security import Actor
from quality_hold.db.models.procurement import DeliveryOutcome, SupplierDeliveryRecord
from quality_hold.repositories.shipments import ShipmentRepository
from quality_hold.services.base import BaseService
from quality_hold.services.hold_controller import DELIVERY_HOLD_SOURCE, HoldController
from quality_hold.services.outcome_classifier import OutcomeClassifier

logger = logging.getLogger(__name__)

DELIVERED_STATUS = "delivered"
DELIVERY_HOLD_REASON = "Quality issues reported at delivery confirmation"


class DeliveryService(BaseService):
    """Final delivery confirmation of a shipment by the receiving warehouse."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)
        self.shipments = ShipmentRepository(session)
        self.holds = HoldController(session)
        self.classifier = OutcomeClassifier(session)

    # PUBLIC_INTERFACE
    async def confirm_delivery(
        self, shipment_id: UUID, has_issues: bool, actor: Actor, notes: Optional[str] = None
    ) -> SupplierDeliveryRecord:
        """
        Mark the shipment delivered and record the supplier outcome.

        With `has_issues` the outcome is `partial_issue` and the shipment goes
        on hold until a quality review clears it.

        Raises:
            NotFound: shipment absent or soft-deleted.
        """
        async with self.transaction():
            shipment = await self.shipments.get_shipment(shipment_id, for_update=True)
            if shipment is None:
                raise NotFound(f"Shipment {shipment_id} not found")
            shipment.status = DELIVERED_STATUS
            supplier = shipment.supplier
            record = await self.classifier.upsert_record(
                shipment.id,
                supplier_id=supplier.id if supplier else None,
                supplier_name=supplier.name if supplier else None,
                has_quality_issues=has_issues,
                final_outcome=DeliveryOutcome.PARTIAL_ISSUE if has_issues else DeliveryOutcome.SUCCESSFUL,
                confirmed_by_user_id=actor.user_id,
            )
            if has_issues:
                reason = f"{DELIVERY_HOLD_REASON}: {notes}" if notes else DELIVERY_HOLD_REASON
                await self.holds.apply(shipment.id, reason, DELIVERY_HOLD_SOURCE)
            await self.shipments.flush()

        logger.info(
            "Delivery confirmed for shipment %s by %s: %s",
            shipment.sn, actor.user_id, "WITH ISSUES" if has_issues else "OK",
        )
        return record
