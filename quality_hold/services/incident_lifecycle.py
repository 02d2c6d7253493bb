from __future__ import annotations

import logging
import uuid
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.core.errors import Conflict, InvalidArgument, NotFound
from quality_hold.core.security import Actor
from quality_hold.core.settings import AppSettings, get_app_settings
from quality_hold.db.base import utcnow
from quality_hold.db.models.quality import IncidentStatus, IssueType, QualityIncident
from quality_hold.repositories.quality import QualityIncidentRepository
from quality_hold.schemas.quality import IncidentCreate, IncidentUpdate
from quality_hold.schemas.realtime import IncidentEvent
from quality_hold.services.base import BaseService
from quality_hold.services.hold_controller import (
    INCIDENT_HOLD_REASON,
    HoldController,
    incident_hold_source,
)
from quality_hold.services.realtime import notify_incident
from quality_hold.services.sample_grid import build_sample_cards, weighing_required

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = frozenset({IncidentStatus.DRAFT.value, IncidentStatus.SUBMITTED.value})


# PUBLIC_INTERFACE
def validate_issue_types(issue_types: Optional[Iterable[str]]) -> List[str]:
    """
    Return the issue types as a de-duplicated list in input order.

    Raises:
        InvalidArgument: empty, or containing values outside the fixed enumeration.
    """
    types = [t.strip() for t in (issue_types or []) if t and t.strip()]
    if not types:
        raise InvalidArgument("At least one issue type is required")
    valid = {t.value for t in IssueType}
    invalid = [t for t in types if t not in valid]
    if invalid:
        raise InvalidArgument(
            f"Invalid issue_type(s): {', '.join(invalid)}. Valid types: {', '.join(t.value for t in IssueType)}"
        )
    return list(dict.fromkeys(types))


# PUBLIC_INTERFACE
def branch_scope_for(actor: Actor, settings: AppSettings) -> Optional[frozenset[UUID]]:
    """Branches an actor is limited to; None means unrestricted (HQ roles or no branch assignment)."""
    if actor.has_role(settings.HQ_ROLES) or not actor.branch_ids:
        return None
    return actor.branch_ids


def incident_event(incident: QualityIncident, event: str, actor: Actor, **details) -> IncidentEvent:
    return IncidentEvent(
        event=event,
        incident_id=incident.id,
        shipment_id=incident.shipment_id,
        branch_id=incident.branch_id,
        status=incident.status,
        details=details,
        user_id=actor.user_id,
    )


class IncidentLifecycleManager(BaseService):
    """
    Owns the incident entity and its draft -> submitted part of the state machine.

    Review-driven transitions live in ReviewActionProcessor.
    """

    def __init__(self, session: AsyncSession, settings: Optional[AppSettings] = None) -> None:
        super().__init__(session)
        self.settings = settings or get_app_settings()
        self.repo = QualityIncidentRepository(session)
        self.holds = HoldController(session)

    async def _require(self, incident_id: UUID) -> QualityIncident:
        incident = await self.repo.get_incident(incident_id)
        if incident is None:
            raise NotFound(f"Incident {incident_id} not found")
        return incident

    # PUBLIC_INTERFACE
    async def create(self, payload: IncidentCreate, actor: Actor) -> QualityIncident:
        """
        Create a draft incident together with its nine sample cards and put the
        shipment on hold, as one transaction.

        Raises:
            InvalidArgument: issue types missing or unknown.
            NotFound: shipment does not exist or is soft-deleted.
        """
        issue_types = validate_issue_types(payload.issue_types)
        requires_weighing = weighing_required(issue_types, payload.issue_subtype)
        incident_id = uuid.uuid4()

        async with self.transaction():
            incident = QualityIncident(
                id=incident_id,
                shipment_id=payload.shipment_id,
                branch_id=payload.branch_id,
                created_by_user_id=actor.user_id,
                issue_types=issue_types,
                issue_subtype=payload.issue_subtype,
                description_short=payload.description_short,
                status=IncidentStatus.DRAFT.value,
            )
            # Locks the shipment row and fails with NotFound before anything is written.
            await self.holds.apply(
                payload.shipment_id, INCIDENT_HOLD_REASON, incident_hold_source(incident_id)
            )
            await self.repo.add(incident)
            await self.repo.flush()
            await self.repo.add_all(build_sample_cards(incident_id, requires_weighing))
            await self.repo.flush()

        logger.info(
            "Incident %s created for shipment %s (types=%s, weighing_required=%s)",
            incident_id, payload.shipment_id, ",".join(issue_types), requires_weighing,
        )
        created = await self._require(incident_id)
        await notify_incident(incident_event(created, "incident.created", actor))
        return created

    # PUBLIC_INTERFACE
    async def update(self, incident_id: UUID, payload: IncidentUpdate) -> QualityIncident:
        """
        Merge the provided fields into the incident (sparse update).

        Raises:
            NotFound: incident absent.
            Conflict: incident no longer editable (status beyond submitted).
            InvalidArgument: invalid issue types or inverted estimate range.
        """
        changes = payload.model_dump(exclude_unset=True)
        if "issue_types" in changes:
            changes["issue_types"] = validate_issue_types(changes["issue_types"])

        async with self.transaction():
            incident = await self._require(incident_id)
            if incident.status not in EDITABLE_STATUSES:
                raise Conflict(f"Incident in status '{incident.status}' can no longer be edited")

            low = changes.get("affected_estimate_min", incident.affected_estimate_min)
            high = changes.get("affected_estimate_max", incident.affected_estimate_max)
            if low is not None and high is not None and low > high:
                raise InvalidArgument("affected_estimate_min cannot exceed affected_estimate_max")

            for name, value in changes.items():
                setattr(incident, name, value)
            incident.updated_at = utcnow()
            await self.repo.flush()

        if changes:
            logger.info("Incident %s updated: %s", incident_id, ", ".join(sorted(changes)))
        return await self._require(incident_id)

    # PUBLIC_INTERFACE
    async def submit(self, incident_id: UUID, actor: Actor) -> QualityIncident:
        """
        Move a draft incident to `submitted`.

        Raises:
            NotFound: incident absent.
            Conflict: incident is not a draft.
            InvalidArgument: no completed sample card and no media attached.
        """
        async with self.transaction():
            incident = await self._require(incident_id)
            if incident.status != IncidentStatus.DRAFT.value:
                raise Conflict("Incident can only be submitted from draft status")

            completed = await self.repo.count_complete_cards(incident_id)
            media = await self.repo.count_media(incident_id)
            if completed < 1 and media < 1:
                raise InvalidArgument("At least one sample must be completed or media must be uploaded")

            now = utcnow()
            incident.status = IncidentStatus.SUBMITTED.value
            incident.submitted_at = now
            incident.updated_at = now
            await self.repo.flush()

        logger.info("Incident %s submitted (%d samples complete, %d media)", incident_id, completed, media)
        submitted = await self._require(incident_id)
        await notify_incident(
            incident_event(submitted, "incident.submitted", actor, completed_samples=completed, media_count=media)
        )
        return submitted

    # PUBLIC_INTERFACE
    async def get(self, incident_id: UUID) -> QualityIncident:
        """Return the incident with its cards, media and review history."""
        return await self._require(incident_id)

    # PUBLIC_INTERFACE
    async def list_incidents(
        self,
        actor: Actor,
        *,
        status: Optional[str] = None,
        branch_id: Optional[UUID] = None,
        shipment_id: Optional[UUID] = None,
        created_by: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[QualityIncident]:
        """List incidents newest first, limited to the actor's branches unless HQ."""
        return await self.repo.list_incidents(
            status=status,
            branch_id=branch_id,
            shipment_id=shipment_id,
            created_by=created_by,
            branch_scope=branch_scope_for(actor, self.settings),
            limit=limit,
            offset=offset,
        )

    # PUBLIC_INTERFACE
    async def summary(self, actor: Actor, branch_id: Optional[UUID] = None) -> dict:
        """Counts per status, total and overall average defect percentage."""
        scope = None if branch_id else branch_scope_for(actor, self.settings)
        return await self.repo.summary(branch_id=branch_id, branch_scope=scope)
