from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.core.deps import get_current_actor, get_session
from quality_hold.core.security import Actor
from quality_hold.schemas.procurement import SupplierDeliveryStats
from quality_hold.services.outcome_classifier import OutcomeClassifier

router = APIRouter(prefix="/suppliers", tags=["Suppliers"])


# PUBLIC_INTERFACE
@router.get(
    "/{supplier_id}/delivery-stats",
    response_model=SupplierDeliveryStats,
    summary="Supplier delivery scorecard",
    description="Deliveries per outcome and success rate for one supplier.",
)
async def supplier_delivery_stats(
    supplier_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> SupplierDeliveryStats:
    stats = await OutcomeClassifier(session).supplier_stats(supplier_id)
    return SupplierDeliveryStats(**stats)
