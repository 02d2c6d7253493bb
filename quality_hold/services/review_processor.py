from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.core.errors import Conflict, Forbidden, InvalidArgument, NotFound
from quality_hold.core.security import Actor
from quality_hold.core.settings import AppSettings, get_app_settings
from quality_hold.db.base import utcnow
from quality_hold.db.models.quality import (
    IncidentStatus,
    QualityIncident,
    ReviewAction,
    ReviewActionType,
)
from quality_hold.repositories.quality import QualityIncidentRepository
from quality_hold.repositories.shipments import ShipmentRepository
from quality_hold.services.base import BaseService
from quality_hold.services.hold_controller import HoldController, incident_hold_source
from quality_hold.services.incident_lifecycle import incident_event
from quality_hold.services.outcome_classifier import OutcomeClassifier
from quality_hold.services.realtime import notify_incident
from quality_hold.services.sample_grid import SampleGrid, mean_defect_pct

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def parse_action_type(value: str) -> ReviewActionType:
    try:
        return ReviewActionType(value)
    except ValueError:
        raise InvalidArgument(
            f"Invalid action_type. Must be one of: {', '.join(a.value for a in ReviewActionType)}"
        )


class ReviewActionProcessor(BaseService):
    """
    Role-gated entry point for supervisory decisions.

    Each review appends an audit record and applies the action's effects on the
    incident, the shipment hold and the supplier scorecard in one transaction.
    """

    def __init__(self, session: AsyncSession, settings: Optional[AppSettings] = None) -> None:
        super().__init__(session)
        self.settings = settings or get_app_settings()
        self.repo = QualityIncidentRepository(session)
        self.shipments = ShipmentRepository(session)
        self.holds = HoldController(session)
        self.grid = SampleGrid(session)
        self.classifier = OutcomeClassifier(session)
        self._handlers: Dict[ReviewActionType, Callable[[QualityIncident, List[str]], Awaitable[None]]] = {
            ReviewActionType.CLEAR_HOLD: self._clear_hold,
            ReviewActionType.KEEP_HOLD: self._keep_hold,
            ReviewActionType.CLOSE: self._close,
            ReviewActionType.REQUEST_RESAMPLE: self._request_resample,
            ReviewActionType.ADD_NOTE: self._add_note,
        }
        missing = set(ReviewActionType) - set(self._handlers)
        assert not missing, f"Review actions without handler: {missing}"

    # PUBLIC_INTERFACE
    async def review(
        self,
        incident_id: UUID,
        actor: Actor,
        action_type: str,
        notes: Optional[str] = None,
        target_sample_ids: Optional[List[str]] = None,
    ) -> QualityIncident:
        """
        Apply a review action.

        Raises:
            Forbidden: actor's role is not a reviewer role (checked before anything else).
            InvalidArgument: unknown action type or target sample id.
            NotFound: incident absent or soft-deleted.
            Conflict: incident already closed (only add_note is accepted).
        """
        if not actor.has_role(self.settings.REVIEWER_ROLES):
            raise Forbidden("Only supervisors and HQ can perform review actions")
        action = parse_action_type(action_type)
        targets = list(target_sample_ids or [])

        async with self.transaction():
            incident = await self.repo.get_incident(incident_id)
            if incident is None:
                raise NotFound(f"Incident {incident_id} not found")
            if incident.status == IncidentStatus.CLOSED.value and action is not ReviewActionType.ADD_NOTE:
                raise Conflict("Incident is closed; only notes can be added")

            await self.repo.add(
                ReviewAction(
                    incident_id=incident.id,
                    by_user_id=actor.user_id,
                    by_role=actor.role,
                    action_type=action.value,
                    notes=notes,
                    target_sample_ids=targets or None,
                    created_at=utcnow(),
                )
            )
            await self._handlers[action](incident, targets)
            await self.repo.flush()

        logger.info("Review %s on incident %s by %s (%s)", action.value, incident_id, actor.user_id, actor.role)
        reviewed = await self.repo.get_incident(incident_id)
        assert reviewed is not None
        await notify_incident(
            incident_event(reviewed, "incident.reviewed", actor, action_type=action.value)
        )
        return reviewed

    def _set_status(self, incident: QualityIncident, status: IncidentStatus) -> None:
        incident.status = status.value
        incident.updated_at = utcnow()

    async def _clear_hold(self, incident: QualityIncident, targets: List[str]) -> None:
        await self.holds.release(incident.shipment_id, incident_hold_source(incident.id))
        self._set_status(incident, IncidentStatus.ACTION_SET)

    async def _keep_hold(self, incident: QualityIncident, targets: List[str]) -> None:
        self._set_status(incident, IncidentStatus.ACTION_SET)

    async def _close(self, incident: QualityIncident, targets: List[str]) -> None:
        self._set_status(incident, IncidentStatus.CLOSED)
        incident.closed_at = incident.updated_at
        shipment = await self.shipments.get_shipment(incident.shipment_id, include_deleted=True)
        if shipment is None:
            raise NotFound(f"Shipment {incident.shipment_id} not found")
        supplier = shipment.supplier
        # Classify on the unrounded mean; the stored average is rounded for display.
        cards = await self.repo.list_cards(incident.id)
        await self.classifier.classify(
            shipment.id,
            supplier.id if supplier else None,
            supplier.name if supplier else None,
            mean_defect_pct(cards),
        )

    async def _request_resample(self, incident: QualityIncident, targets: List[str]) -> None:
        if targets:
            await self.grid.mark_incomplete(incident, targets)
        self._set_status(incident, IncidentStatus.UNDER_REVIEW)

    async def _add_note(self, incident: QualityIncident, targets: List[str]) -> None:
        return None
