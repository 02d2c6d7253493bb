"""
Nine-point sample grid: card creation, validated measurement updates and the
incident aggregates derived from them.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.core.errors import InvalidArgument, NotFound
from quality_hold.db.models.quality import (
    IssueType,
    QualityIncident,
    SampleCard,
    SampleId,
)
from quality_hold.repositories.quality import QualityIncidentRepository
from quality_hold.services.base import BaseService

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_WEIGHT_G = 1000.0

# Damage subtypes that still call for weighing (the damage reached the goods).
WEIGHED_DAMAGE_SUBTYPES = frozenset({"wet_external", "dirty", "torn_bag"})


# PUBLIC_INTERFACE
def weighing_required(issue_types: Iterable[str], issue_subtype: Optional[str]) -> bool:
    """
    Weighing applies unless the incident is purely `damaged` packaging with a
    subtype that does not affect the goods.
    """
    types = [IssueType(t).value for t in issue_types]
    only_damaged = all(t == IssueType.DAMAGED.value for t in types)
    return (not only_damaged) or (issue_subtype in WEIGHED_DAMAGE_SUBTYPES)


# PUBLIC_INTERFACE
def build_sample_cards(incident_id: UUID, requires_weighing: bool) -> list[SampleCard]:
    """Build the fixed set of nine cards (F1..B3) for a new incident."""
    return [
        SampleCard(
            incident_id=incident_id,
            sample_id=sample.value,
            sample_group=sample.group.value,
            position=position,
            sample_weight_g=DEFAULT_SAMPLE_WEIGHT_G,
            broken_g=0.0,
            mold_g=0.0,
            foreign_g=0.0,
            other_g=0.0,
            weighing_required=requires_weighing,
            is_complete=False,
        )
        for position, sample in enumerate(SampleId)
    ]


def parse_sample_id(value: str) -> SampleId:
    try:
        return SampleId(value)
    except ValueError:
        raise NotFound(f"Unknown sample_id '{value}'. Valid: {', '.join(s.value for s in SampleId)}")


# PUBLIC_INTERFACE
def mean_defect_pct(cards: list[SampleCard]) -> Optional[float]:
    """Unrounded mean of per-card defect percentages over completed cards; None when none is complete."""
    pcts = [c.defect_pct for c in cards if c.is_complete and c.defect_pct is not None]
    return sum(pcts) / len(pcts) if pcts else None


# PUBLIC_INTERFACE
def apply_aggregates(incident: QualityIncident, cards: list[SampleCard]) -> None:
    """
    Recompute incident aggregates from its cards.

    Gram totals are summed across all cards of the grid. The average defect
    percentage only considers completed cards and is None when none is complete.
    """
    if not cards:
        incident.sample_weight_g = None
        incident.broken_g = None
        incident.mold_g = None
        incident.foreign_g = None
        incident.other_g = None
        incident.avg_defect_pct = None
        return

    incident.sample_weight_g = sum(c.sample_weight_g for c in cards)
    incident.broken_g = sum(c.broken_g for c in cards)
    incident.mold_g = sum(c.mold_g for c in cards)
    incident.foreign_g = sum(c.foreign_g for c in cards)
    incident.other_g = sum(c.other_g for c in cards)
    mean = mean_defect_pct(cards)
    incident.avg_defect_pct = round(mean, 3) if mean is not None else None


class SampleGrid(BaseService):
    """The only entry point allowed to mutate sample cards."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)
        self.repo = QualityIncidentRepository(session)

    # PUBLIC_INTERFACE
    async def record_sample(
        self,
        incident_id: UUID,
        sample_id: str,
        *,
        sample_weight_g: Optional[float] = None,
        broken_g: Optional[float] = None,
        mold_g: Optional[float] = None,
        foreign_g: Optional[float] = None,
        other_g: Optional[float] = None,
        is_complete: Optional[bool] = None,
        notes: Optional[str] = None,
    ) -> QualityIncident:
        """
        Record measurements for one card and refresh the incident aggregates.

        Raises:
            NotFound: incident or sample slot does not exist.
            InvalidArgument: defect grams exceed the sample weight (nothing is written).
        """
        sample = parse_sample_id(sample_id)
        weight = DEFAULT_SAMPLE_WEIGHT_G if sample_weight_g is None else float(sample_weight_g)
        grams = {
            "broken_g": float(broken_g or 0),
            "mold_g": float(mold_g or 0),
            "foreign_g": float(foreign_g or 0),
            "other_g": float(other_g or 0),
        }
        if weight <= 0:
            raise InvalidArgument("sample_weight_g must be greater than zero")
        if any(v < 0 for v in grams.values()):
            raise InvalidArgument("Defect weights cannot be negative")
        total_defects = sum(grams.values())
        if total_defects > weight:
            raise InvalidArgument(
                "Total defects cannot exceed sample weight",
                details={"total_defects_g": total_defects, "sample_weight_g": weight},
            )

        async with self.transaction():
            incident = await self.repo.get_incident(incident_id)
            if incident is None:
                raise NotFound(f"Incident {incident_id} not found")
            card = await self.repo.get_card(incident_id, sample.value)
            if card is None:
                raise NotFound(f"Sample {sample.value} not found for incident {incident_id}")

            card.sample_weight_g = weight
            card.broken_g = grams["broken_g"]
            card.mold_g = grams["mold_g"]
            card.foreign_g = grams["foreign_g"]
            card.other_g = grams["other_g"]
            card.is_complete = bool(is_complete)
            card.notes = notes
            await self.repo.flush()
            await self.refresh_aggregates(incident)

        logger.info(
            "Sample %s recorded for incident %s (complete=%s, defects=%.1fg/%.1fg)",
            sample.value, incident_id, card.is_complete, total_defects, weight,
        )
        return await self.repo.get_incident(incident_id)  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def mark_incomplete(self, incident: QualityIncident, sample_ids: Iterable[str]) -> list[str]:
        """
        Flag the given cards for resampling. Runs inside the caller's transaction.

        Raises:
            InvalidArgument: one of the ids is not a grid slot.
        """
        targets: list[str] = []
        for raw in sample_ids:
            try:
                targets.append(SampleId(raw).value)
            except ValueError:
                raise InvalidArgument(f"Unknown target sample id '{raw}'")
        cards = await self.repo.list_cards(incident.id)
        for card in cards:
            if card.sample_id in targets:
                card.is_complete = False
        await self.repo.flush()
        await self.refresh_aggregates(incident, cards)
        return targets

    async def refresh_aggregates(
        self, incident: QualityIncident, cards: Optional[list[SampleCard]] = None
    ) -> None:
        if cards is None:
            cards = await self.repo.list_cards(incident.id)
        apply_aggregates(incident, cards)
        await self.repo.flush()
