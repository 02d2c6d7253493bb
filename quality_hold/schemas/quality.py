from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _split_issue_types(v):
    """Accept a JSON list or the legacy comma-separated string form."""
    if v is None:
        return v
    if isinstance(v, str):
        return [p.strip() for p in v.split(",") if p.strip()]
    return v


class IncidentCreate(BaseModel):
    """Create incident payload. Issue types are validated by the service."""
    shipment_id: UUID = Field(..., description="Shipment the incident is raised against")
    issue_types: List[str] = Field(
        default_factory=list,
        description="One or more of: broken, mold, moisture, foreign_matter, wrong_spec, damaged",
    )
    issue_subtype: Optional[str] = Field(None, description="Optional subtype, e.g. wet_external")
    description_short: Optional[str] = Field(None, max_length=500)
    branch_id: Optional[UUID] = Field(None, description="Reporting branch")

    @field_validator("issue_types", mode="before")
    @classmethod
    def _split(cls, v):
        return _split_issue_types(v)


class IncidentUpdate(BaseModel):
    """Sparse update payload; only fields present in the request are applied."""
    # Aggregates are derived from the sample cards; reject them instead of dropping them.
    model_config = ConfigDict(extra="forbid")

    issue_types: Optional[List[str]] = Field(None)
    issue_subtype: Optional[str] = Field(None)
    description_short: Optional[str] = Field(None, max_length=500)
    container_moisture_seen: Optional[bool] = Field(None)
    container_bad_smell: Optional[bool] = Field(None)
    container_torn_bags: Optional[bool] = Field(None)
    container_torn_bags_count: Optional[int] = Field(None, ge=0)
    container_condensation: Optional[bool] = Field(None)
    affected_estimate_min: Optional[float] = Field(None, ge=0)
    affected_estimate_max: Optional[float] = Field(None, ge=0)
    affected_estimate_mode: Optional[float] = Field(None, ge=0)
    moisture_pct: Optional[float] = Field(None, ge=0, le=100)

    @field_validator("issue_types", mode="before")
    @classmethod
    def _split(cls, v):
        return _split_issue_types(v)


class SampleRecord(BaseModel):
    """Measurements for one sample card."""
    sample_id: str = Field(..., description="Grid slot: F1-F3, M1-M3, B1-B3")
    sample_weight_g: Optional[float] = Field(None, description="Sample weight in grams (default 1000)")
    broken_g: Optional[float] = Field(None)
    mold_g: Optional[float] = Field(None)
    foreign_g: Optional[float] = Field(None)
    other_g: Optional[float] = Field(None)
    is_complete: Optional[bool] = Field(None)
    notes: Optional[str] = Field(None)


class ReviewRequest(BaseModel):
    """
    Review action payload. `action_type` stays a plain string so role checks
    run before the action is validated.
    """
    action_type: str = Field(..., description="request_resample | keep_hold | clear_hold | close | add_note")
    notes: Optional[str] = Field(None)
    target_sample_ids: Optional[List[str]] = Field(None, description="Cards to resample")


class SampleCardRead(BaseModel):
    id: UUID = Field(..., description="Card id")
    sample_id: str = Field(..., description="Grid slot")
    sample_group: str = Field(..., description="front | middle | back")
    sample_weight_g: float = Field(...)
    broken_g: float = Field(...)
    mold_g: float = Field(...)
    foreign_g: float = Field(...)
    other_g: float = Field(...)
    weighing_required: bool = Field(...)
    is_complete: bool = Field(...)
    notes: Optional[str] = Field(None)
    updated_at: datetime = Field(..., description="Updated at")

    class Config:
        from_attributes = True


class MediaRead(BaseModel):
    id: UUID = Field(..., description="Media id")
    incident_id: UUID = Field(...)
    sample_id: Optional[str] = Field(None)
    media_type: str = Field(..., description="photo | video")
    slot: str = Field(...)
    file_path: str = Field(...)
    file_name: str = Field(...)
    file_url: str = Field(...)
    file_size: int = Field(...)
    mime_type: str = Field(...)
    watermark_text: Optional[str] = Field(None)
    created_by_user_id: str = Field(...)
    created_at: datetime = Field(...)

    class Config:
        from_attributes = True


class ReviewActionRead(BaseModel):
    id: UUID = Field(..., description="Review action id")
    by_user_id: str = Field(...)
    by_role: str = Field(...)
    action_type: str = Field(...)
    notes: Optional[str] = Field(None)
    target_sample_ids: Optional[List[str]] = Field(None)
    created_at: datetime = Field(...)

    class Config:
        from_attributes = True


class IncidentRead(BaseModel):
    """Quality incident with its sample grid, media and review history."""
    id: UUID = Field(..., description="Incident id")
    shipment_id: UUID = Field(...)
    branch_id: Optional[UUID] = Field(None)
    created_by_user_id: str = Field(...)
    issue_types: List[str] = Field(default_factory=list)
    issue_subtype: Optional[str] = Field(None)
    description_short: Optional[str] = Field(None)
    container_moisture_seen: Optional[bool] = Field(None)
    container_bad_smell: Optional[bool] = Field(None)
    container_torn_bags: Optional[bool] = Field(None)
    container_torn_bags_count: Optional[int] = Field(None)
    container_condensation: Optional[bool] = Field(None)
    affected_estimate_min: Optional[float] = Field(None)
    affected_estimate_max: Optional[float] = Field(None)
    affected_estimate_mode: Optional[float] = Field(None)
    sample_weight_g: Optional[float] = Field(None)
    broken_g: Optional[float] = Field(None)
    mold_g: Optional[float] = Field(None)
    foreign_g: Optional[float] = Field(None)
    other_g: Optional[float] = Field(None)
    moisture_pct: Optional[float] = Field(None)
    avg_defect_pct: Optional[float] = Field(None)
    status: str = Field(...)
    submitted_at: Optional[datetime] = Field(None)
    closed_at: Optional[datetime] = Field(None)
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")
    sample_cards: List[SampleCardRead] = Field(default_factory=list)
    media: List[MediaRead] = Field(default_factory=list)
    review_actions: List[ReviewActionRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class IncidentListRead(BaseModel):
    incidents: List[IncidentRead] = Field(default_factory=list)
    total: int = Field(..., description="Number of incidents returned")


class IncidentSummary(BaseModel):
    """Counts per status and overall average defect percentage."""
    draft: int = Field(0)
    submitted: int = Field(0)
    under_review: int = Field(0)
    action_set: int = Field(0)
    closed: int = Field(0)
    total: int = Field(0)
    overall_avg_defect_pct: Optional[float] = Field(None)
