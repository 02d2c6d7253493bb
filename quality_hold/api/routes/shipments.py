from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.core.deps import get_current_actor, get_session
from quality_hold.core.security import Actor
from quality_hold.schemas.procurement import SupplierDeliveryRecordRead
from quality_hold.schemas.shipments import DeliveryConfirm
from quality_hold.services.deliveries import DeliveryService

router = APIRouter(prefix="/shipments", tags=["Shipments"])


# PUBLIC_INTERFACE
@router.post(
    "/{shipment_id}/delivered",
    response_model=SupplierDeliveryRecordRead,
    summary="Confirm delivery",
    description="Marks the shipment delivered and records the supplier outcome; issues put it on hold.",
)
async def confirm_delivery(
    shipment_id: UUID,
    payload: DeliveryConfirm,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> SupplierDeliveryRecordRead:
    record = await DeliveryService(session).confirm_delivery(
        shipment_id, payload.has_issues, actor, notes=payload.notes
    )
    return SupplierDeliveryRecordRead.model_validate(record)
