from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.core.deps import get_current_actor, get_media_storage, get_session, get_settings_dep
from quality_hold.core.security import Actor
from quality_hold.core.settings import AppSettings
from quality_hold.core.storage import MediaStorage
from quality_hold.schemas.common import MessageResponse
from quality_hold.schemas.quality import (
    IncidentCreate,
    IncidentListRead,
    IncidentRead,
    IncidentSummary,
    IncidentUpdate,
    MediaRead,
    ReviewRequest,
    SampleRecord,
)
from quality_hold.services.incident_lifecycle import IncidentLifecycleManager
from quality_hold.services.media_ledger import MediaLedger
from quality_hold.services.review_processor import ReviewActionProcessor
from quality_hold.services.sample_grid import SampleGrid

router = APIRouter(prefix="/quality-incidents", tags=["Quality Incidents"])


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=IncidentListRead,
    summary="List quality incidents",
    description="List incidents newest first. Non-HQ users only see their own branches.",
)
async def list_incidents(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: AppSettings = Depends(get_settings_dep),
    status_: Optional[str] = Query(None, alias="status", description="Filter by status"),
    branch_id: Optional[UUID] = Query(None, description="Filter by branch"),
    shipment_id: Optional[UUID] = Query(None, description="Filter by shipment"),
    created_by: Optional[str] = Query(None, description="Filter by creator user id"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> IncidentListRead:
    svc = IncidentLifecycleManager(session, settings)
    rows = await svc.list_incidents(
        actor,
        status=status_,
        branch_id=branch_id,
        shipment_id=shipment_id,
        created_by=created_by,
        limit=limit,
        offset=offset,
    )
    return IncidentListRead(incidents=[IncidentRead.model_validate(x) for x in rows], total=len(rows))


# PUBLIC_INTERFACE
@router.get(
    "/stats/summary",
    response_model=IncidentSummary,
    summary="Incident summary statistics",
    description="Counts per status, total and overall average defect percentage.",
)
async def incident_summary(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: AppSettings = Depends(get_settings_dep),
    branch_id: Optional[UUID] = Query(None, description="Restrict to one branch"),
) -> IncidentSummary:
    svc = IncidentLifecycleManager(session, settings)
    return IncidentSummary(**await svc.summary(actor, branch_id=branch_id))


# PUBLIC_INTERFACE
@router.get(
    "/{incident_id}",
    response_model=IncidentRead,
    summary="Get quality incident",
    description="Incident with its sample grid, media and review history.",
)
async def get_incident(
    incident_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> IncidentRead:
    incident = await IncidentLifecycleManager(session).get(incident_id)
    return IncidentRead.model_validate(incident)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=IncidentRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create quality incident",
    description="Creates a draft incident with its 9 sample cards and puts the shipment on hold.",
)
async def create_incident(
    payload: IncidentCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: AppSettings = Depends(get_settings_dep),
) -> IncidentRead:
    incident = await IncidentLifecycleManager(session, settings).create(payload, actor)
    return IncidentRead.model_validate(incident)


# PUBLIC_INTERFACE
@router.patch(
    "/{incident_id}",
    response_model=IncidentRead,
    summary="Update quality incident",
    description="Sparse update; allowed while the incident is draft or submitted.",
)
async def update_incident(
    incident_id: UUID,
    payload: IncidentUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> IncidentRead:
    incident = await IncidentLifecycleManager(session).update(incident_id, payload)
    return IncidentRead.model_validate(incident)


# PUBLIC_INTERFACE
@router.post(
    "/{incident_id}/samples",
    response_model=IncidentRead,
    summary="Record sample measurements",
    description="Update one sample card (F1..B3) and recompute the incident aggregates.",
)
async def record_sample(
    incident_id: UUID,
    payload: SampleRecord,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> IncidentRead:
    incident = await SampleGrid(session).record_sample(
        incident_id,
        payload.sample_id,
        sample_weight_g=payload.sample_weight_g,
        broken_g=payload.broken_g,
        mold_g=payload.mold_g,
        foreign_g=payload.foreign_g,
        other_g=payload.other_g,
        is_complete=payload.is_complete,
        notes=payload.notes,
    )
    return IncidentRead.model_validate(incident)


# PUBLIC_INTERFACE
@router.post(
    "/{incident_id}/media",
    response_model=MediaRead,
    status_code=status.HTTP_201_CREATED,
    summary="Upload incident media",
    description="Multipart upload of a photo or video (jpeg, png, webp, mp4, quicktime).",
)
async def attach_media(
    incident_id: UUID,
    file: Optional[UploadFile] = File(None, description="Photo or video"),
    slot: Optional[str] = Form(None, description="Named slot, e.g. container_door"),
    sample_id: Optional[str] = Form(None, description="Optional sample card F1..B3"),
    watermark_text: Optional[str] = Form(None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: AppSettings = Depends(get_settings_dep),
    storage: MediaStorage = Depends(get_media_storage),
) -> MediaRead:
    content = await file.read() if file is not None else None
    media = await MediaLedger(session, settings).attach(
        incident_id,
        slot=slot,
        content=content,
        filename=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
        actor=actor,
        storage=storage,
        sample_id=sample_id,
        watermark_text=watermark_text,
    )
    return MediaRead.model_validate(media)


# PUBLIC_INTERFACE
@router.delete(
    "/{incident_id}/media/{media_id}",
    response_model=MessageResponse,
    summary="Delete incident media",
    description="Removes the media record and its stored file.",
)
async def remove_media(
    incident_id: UUID,
    media_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    storage: MediaStorage = Depends(get_media_storage),
) -> MessageResponse:
    await MediaLedger(session).remove(incident_id, media_id, storage)
    return MessageResponse(message="Media deleted")


# PUBLIC_INTERFACE
@router.post(
    "/{incident_id}/submit",
    response_model=IncidentRead,
    summary="Submit quality incident",
    description="Draft -> submitted; needs at least one completed sample or one media file.",
)
async def submit_incident(
    incident_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> IncidentRead:
    incident = await IncidentLifecycleManager(session).submit(incident_id, actor)
    return IncidentRead.model_validate(incident)


# PUBLIC_INTERFACE
@router.post(
    "/{incident_id}/review",
    response_model=IncidentRead,
    summary="Review quality incident",
    description="Supervisor/HQ decision: request_resample, keep_hold, clear_hold, close or add_note.",
)
async def review_incident(
    incident_id: UUID,
    payload: ReviewRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    settings: AppSettings = Depends(get_settings_dep),
) -> IncidentRead:
    incident = await ReviewActionProcessor(session, settings).review(
        incident_id,
        actor,
        payload.action_type,
        notes=payload.notes,
        target_sample_ids=payload.target_sample_ids,
    )
    return IncidentRead.model_validate(incident)
