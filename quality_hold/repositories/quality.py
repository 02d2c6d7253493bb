from __future__ import annotations

from typing import Collection, List, Optional
from uuid import UUID

from sqlalchemy import case, func, select

from quality_hold.db.models.quality import (
    IncidentStatus,
    QualityIncident,
    QualityMedia,
    ReviewAction,
    SampleCard,
)
from .base import BaseRepository


class QualityIncidentRepository(BaseRepository):
    """Repository for quality incidents, their sample cards, media and review actions."""

    async def get_incident(
        self, incident_id: UUID, *, include_deleted: bool = False
    ) -> Optional[QualityIncident]:
        stmt = select(QualityIncident).where(QualityIncident.id == incident_id)
        if not include_deleted:
            stmt = stmt.where(QualityIncident.is_deleted.is_(False))
        # Reload children so callers always see the post-mutation state.
        stmt = stmt.execution_options(populate_existing=True)
        return await self.scalar_one_or_none(stmt)

    async def list_incidents(
        self,
        *,
        status: Optional[str],
        branch_id: Optional[UUID],
        shipment_id: Optional[UUID],
        created_by: Optional[str],
        branch_scope: Optional[Collection[UUID]],
        limit: int,
        offset: int,
    ) -> List[QualityIncident]:
        stmt = select(QualityIncident).where(QualityIncident.is_deleted.is_(False))
        if status:
            stmt = stmt.where(QualityIncident.status == status)
        if branch_id:
            stmt = stmt.where(QualityIncident.branch_id == branch_id)
        if shipment_id:
            stmt = stmt.where(QualityIncident.shipment_id == shipment_id)
        if created_by:
            stmt = stmt.where(QualityIncident.created_by_user_id == created_by)
        if branch_scope is not None:
            stmt = stmt.where(QualityIncident.branch_id.in_(list(branch_scope)))
        stmt = stmt.order_by(QualityIncident.created_at.desc()).offset(offset).limit(limit)
        res = await self.scalars(stmt)
        return list(res)

    async def get_card(self, incident_id: UUID, sample_id: str) -> Optional[SampleCard]:
        stmt = select(SampleCard).where(
            SampleCard.incident_id == incident_id, SampleCard.sample_id == sample_id
        )
        return await self.scalar_one_or_none(stmt)

    async def list_cards(self, incident_id: UUID) -> List[SampleCard]:
        stmt = (
            select(SampleCard)
            .where(SampleCard.incident_id == incident_id)
            .order_by(SampleCard.position)
        )
        res = await self.scalars(stmt)
        return list(res)

    async def count_complete_cards(self, incident_id: UUID) -> int:
        stmt = select(func.count(SampleCard.id)).where(
            SampleCard.incident_id == incident_id, SampleCard.is_complete.is_(True)
        )
        return int((await self.execute(stmt)).scalar_one())

    async def count_media(self, incident_id: UUID) -> int:
        stmt = select(func.count(QualityMedia.id)).where(QualityMedia.incident_id == incident_id)
        return int((await self.execute(stmt)).scalar_one())

    async def get_media(self, incident_id: UUID, media_id: UUID) -> Optional[QualityMedia]:
        stmt = select(QualityMedia).where(
            QualityMedia.id == media_id, QualityMedia.incident_id == incident_id
        )
        return await self.scalar_one_or_none(stmt)

    async def list_review_actions(self, incident_id: UUID) -> List[ReviewAction]:
        stmt = (
            select(ReviewAction)
            .where(ReviewAction.incident_id == incident_id)
            .order_by(ReviewAction.created_at)
        )
        res = await self.scalars(stmt)
        return list(res)

    async def summary(
        self, *, branch_id: Optional[UUID], branch_scope: Optional[Collection[UUID]]
    ) -> dict:
        counts = [
            func.coalesce(func.sum(case((QualityIncident.status == s.value, 1), else_=0)), 0).label(s.value)
            for s in IncidentStatus
        ]
        stmt = select(
            *counts,
            func.count(QualityIncident.id).label("total"),
            func.avg(QualityIncident.avg_defect_pct).label("overall_avg_defect_pct"),
        ).where(QualityIncident.is_deleted.is_(False))
        if branch_id:
            stmt = stmt.where(QualityIncident.branch_id == branch_id)
        elif branch_scope is not None:
            stmt = stmt.where(QualityIncident.branch_id.in_(list(branch_scope)))
        row = (await self.execute(stmt)).one()
        data = {s.value: int(getattr(row, s.value)) for s in IncidentStatus}
        data["total"] = int(row.total)
        avg = row.overall_avg_defect_pct
        data["overall_avg_defect_pct"] = float(avg) if avg is not None else None
        return data
