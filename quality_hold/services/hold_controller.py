from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.core.errors import NotFound
from quality_hold.db.models.shipment import Shipment
from quality_hold.repositories.shipments import ShipmentRepository
from quality_hold.services.base import BaseService

logger = logging.getLogger(__name__)

INCIDENT_HOLD_REASON = "Quality issue reported - pending incident submission"
DELIVERY_HOLD_SOURCE = "delivery_confirmation"


def incident_hold_source(incident_id: UUID) -> str:
    """Hold tag used by the quality incident workflow."""
    return f"quality_incident:{incident_id}"


class HoldController(BaseService):
    """
    Sole writer of a shipment's hold flag.

    Methods run inside the caller's transaction and never commit. Every
    mutation locks the shipment row first, so concurrent hold writes on the
    same shipment are serialized by the store, and records a source tag
    naming the workflow that owns the current hold.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)
        self.repo = ShipmentRepository(session)

    async def _locked(self, shipment_id: UUID, *, include_deleted: bool = False) -> Shipment:
        shipment = await self.repo.get_shipment(shipment_id, for_update=True, include_deleted=include_deleted)
        if shipment is None:
            raise NotFound(f"Shipment {shipment_id} not found")
        return shipment

    # PUBLIC_INTERFACE
    async def apply(self, shipment_id: UUID, reason: str, source: str) -> Shipment:
        """Put the shipment on hold, overwriting any previous hold."""
        shipment = await self._locked(shipment_id)
        if shipment.hold_status and shipment.hold_source and shipment.hold_source != source:
            logger.info(
                "Shipment %s hold taken over by %s (was %s)", shipment.sn, source, shipment.hold_source
            )
        shipment.hold_status = True
        shipment.hold_reason = reason
        shipment.hold_source = source
        await self.repo.flush()
        logger.info("Hold applied to shipment %s by %s: %s", shipment.sn, source, reason)
        return shipment

    # PUBLIC_INTERFACE
    async def release(self, shipment_id: UUID, source: str) -> Shipment:
        """
        Release the shipment hold.

        The release always clears the flag; a source tag that does not match the
        current holder is logged so overlapping workflows remain traceable.
        """
        shipment = await self._locked(shipment_id, include_deleted=True)
        if shipment.hold_status and shipment.hold_source not in (None, source):
            logger.warning(
                "Shipment %s hold owned by %s released by %s", shipment.sn, shipment.hold_source, source
            )
        shipment.hold_status = False
        shipment.hold_reason = None
        shipment.hold_source = None
        await self.repo.flush()
        logger.info("Hold released on shipment %s by %s", shipment.sn, source)
        return shipment
