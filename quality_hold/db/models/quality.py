from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quality_hold.db.base import (
    Base,
    JSONType,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDPkMixin,
    utcnow,
)

# Grams and percentages come back as float, not Decimal.
Grams = Numeric(12, 3, asdecimal=False)
Percent = Numeric(7, 3, asdecimal=False)


class IssueType(str, Enum):
    BROKEN = "broken"
    MOLD = "mold"
    MOISTURE = "moisture"
    FOREIGN_MATTER = "foreign_matter"
    WRONG_SPEC = "wrong_spec"
    DAMAGED = "damaged"


class IncidentStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ACTION_SET = "action_set"
    CLOSED = "closed"


class SampleGroup(str, Enum):
    FRONT = "front"
    MIDDLE = "middle"
    BACK = "back"


class SampleId(str, Enum):
    """The nine fixed sampling points of a container or lot."""
    F1 = "F1"
    F2 = "F2"
    F3 = "F3"
    M1 = "M1"
    M2 = "M2"
    M3 = "M3"
    B1 = "B1"
    B2 = "B2"
    B3 = "B3"

    @property
    def group(self) -> SampleGroup:
        return SAMPLE_GROUPS[self]


SAMPLE_GROUPS: dict[SampleId, SampleGroup] = {
    SampleId.F1: SampleGroup.FRONT,
    SampleId.F2: SampleGroup.FRONT,
    SampleId.F3: SampleGroup.FRONT,
    SampleId.M1: SampleGroup.MIDDLE,
    SampleId.M2: SampleGroup.MIDDLE,
    SampleId.M3: SampleGroup.MIDDLE,
    SampleId.B1: SampleGroup.BACK,
    SampleId.B2: SampleGroup.BACK,
    SampleId.B3: SampleGroup.BACK,
}


class ReviewActionType(str, Enum):
    REQUEST_RESAMPLE = "request_resample"
    KEEP_HOLD = "keep_hold"
    CLEAR_HOLD = "clear_hold"
    CLOSE = "close"
    ADD_NOTE = "add_note"


class MediaType(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"


class QualityIncident(UUIDPkMixin, SoftDeleteMixin, TimestampMixin, Base):
    """Quality incident raised against a received shipment."""
    __tablename__ = "quality_incidents"

    shipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("shipments.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    created_by_user_id: Mapped[str] = mapped_column(Text, nullable=False)

    issue_types: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    issue_subtype: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description_short: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    container_moisture_seen: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    container_bad_smell: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    container_torn_bags: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    container_torn_bags_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    container_condensation: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    # Operator's rough impact estimate, independent of the sample grid.
    affected_estimate_min: Mapped[Optional[float]] = mapped_column(Percent, nullable=True)
    affected_estimate_max: Mapped[Optional[float]] = mapped_column(Percent, nullable=True)
    affected_estimate_mode: Mapped[Optional[float]] = mapped_column(Percent, nullable=True)

    # Aggregates over the completed sample cards.
    sample_weight_g: Mapped[Optional[float]] = mapped_column(Grams, nullable=True)
    broken_g: Mapped[Optional[float]] = mapped_column(Grams, nullable=True)
    mold_g: Mapped[Optional[float]] = mapped_column(Grams, nullable=True)
    foreign_g: Mapped[Optional[float]] = mapped_column(Grams, nullable=True)
    other_g: Mapped[Optional[float]] = mapped_column(Grams, nullable=True)
    moisture_pct: Mapped[Optional[float]] = mapped_column(Percent, nullable=True)
    avg_defect_pct: Mapped[Optional[float]] = mapped_column(Percent, nullable=True)

    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=IncidentStatus.DRAFT.value, index=True
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    sample_cards: Mapped[list["SampleCard"]] = relationship(
        "SampleCard",
        back_populates="incident",
        order_by="SampleCard.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    media: Mapped[list["QualityMedia"]] = relationship(
        "QualityMedia",
        back_populates="incident",
        order_by="QualityMedia.created_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    review_actions: Mapped[list["ReviewAction"]] = relationship(
        "ReviewAction",
        back_populates="incident",
        order_by="ReviewAction.created_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class SampleCard(UUIDPkMixin, TimestampMixin, Base):
    """One of the nine fixed sampling points of an incident."""
    __tablename__ = "quality_sample_cards"
    __table_args__ = (
        UniqueConstraint("incident_id", "sample_id", name="uq_quality_sample_cards_incident_sample"),
        CheckConstraint(
            "broken_g + mold_g + foreign_g + other_g <= sample_weight_g",
            name="defects_within_weight",
        ),
    )

    incident_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("quality_incidents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sample_id: Mapped[str] = mapped_column(Text, nullable=False)
    sample_group: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    sample_weight_g: Mapped[float] = mapped_column(Grams, nullable=False, default=1000.0)
    broken_g: Mapped[float] = mapped_column(Grams, nullable=False, default=0.0)
    mold_g: Mapped[float] = mapped_column(Grams, nullable=False, default=0.0)
    foreign_g: Mapped[float] = mapped_column(Grams, nullable=False, default=0.0)
    other_g: Mapped[float] = mapped_column(Grams, nullable=False, default=0.0)
    weighing_required: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    incident: Mapped[QualityIncident] = relationship("QualityIncident", back_populates="sample_cards")

    @property
    def total_defects_g(self) -> float:
        return (self.broken_g or 0) + (self.mold_g or 0) + (self.foreign_g or 0) + (self.other_g or 0)

    @property
    def defect_pct(self) -> Optional[float]:
        if not self.sample_weight_g:
            return None
        return self.total_defects_g / self.sample_weight_g * 100.0


class QualityMedia(UUIDPkMixin, Base):
    """Reference to an evidentiary photo/video held in media storage."""
    __tablename__ = "quality_media"

    incident_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("quality_incidents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sample_card_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("quality_sample_cards.id", ondelete="SET NULL"), nullable=True
    )
    sample_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    media_type: Mapped[str] = mapped_column(Text, nullable=False)
    slot: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    watermark_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_user_id: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    incident: Mapped[QualityIncident] = relationship("QualityIncident", back_populates="media")


class ReviewAction(UUIDPkMixin, Base):
    """Append-only audit record of a supervisory decision."""
    __tablename__ = "quality_review_actions"

    incident_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("quality_incidents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    by_user_id: Mapped[str] = mapped_column(Text, nullable=False)
    by_role: Mapped[str] = mapped_column(Text, nullable=False)
    action_type: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    target_sample_ids: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    incident: Mapped[QualityIncident] = relationship("QualityIncident", back_populates="review_actions")
