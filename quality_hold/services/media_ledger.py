from __future__ import annotations

import logging
import os
import re
import time
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from quality_hold.core.errors import InvalidArgument, NotFound
from quality_hold.core.security import Actor
from quality_hold.core.settings import AppSettings, get_app_settings
from quality_hold.core.storage import MediaStorage
from quality_hold.db.base import utcnow
from quality_hold.db.models.quality import MediaType, QualityMedia, SampleId
from quality_hold.repositories.quality import QualityIncidentRepository
from quality_hold.services.base import BaseService

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/webp", "video/mp4", "video/quicktime"}
)

# Slots become part of the stored file name.
SLOT_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


# PUBLIC_INTERFACE
def media_type_for(mime_type: str) -> MediaType:
    return MediaType.VIDEO if mime_type.startswith("video/") else MediaType.PHOTO


# PUBLIC_INTERFACE
def stored_file_name(slot: str, sample_id: Optional[str], original_name: Optional[str]) -> str:
    """`<slot>_<sample>_<epoch millis><ext>`; the extension comes from the uploaded name."""
    ext = os.path.splitext(original_name or "")[1].lower()
    return f"{slot}_{sample_id or ''}_{int(time.time() * 1000)}{ext}"


class MediaLedger(BaseService):
    """Keeps the references to evidentiary files; the bytes live in MediaStorage."""

    def __init__(self, session: AsyncSession, settings: Optional[AppSettings] = None) -> None:
        super().__init__(session)
        self.settings = settings or get_app_settings()
        self.repo = QualityIncidentRepository(session)

    # PUBLIC_INTERFACE
    async def attach(
        self,
        incident_id: UUID,
        *,
        slot: Optional[str],
        content: Optional[bytes],
        filename: Optional[str],
        content_type: Optional[str],
        actor: Actor,
        storage: MediaStorage,
        sample_id: Optional[str] = None,
        watermark_text: Optional[str] = None,
    ) -> QualityMedia:
        """
        Store an uploaded photo/video and record it against the incident.

        Raises:
            InvalidArgument: missing slot or file, unsupported type, oversized file, unknown sample id.
            NotFound: incident absent.
        """
        slot = (slot or "").strip()
        if not content:
            raise InvalidArgument("No file uploaded")
        if not slot:
            raise InvalidArgument("slot is required")
        if not SLOT_PATTERN.match(slot):
            raise InvalidArgument(
                "slot may only contain letters, digits, '_' and '-'", details={"slot": slot}
            )
        if content_type not in ALLOWED_MIME_TYPES:
            raise InvalidArgument(
                "Invalid file type. Only images and videos allowed.",
                details={"mime_type": content_type, "allowed": sorted(ALLOWED_MIME_TYPES)},
            )
        if len(content) > self.settings.MEDIA_MAX_BYTES:
            raise InvalidArgument(
                "File too large",
                details={"file_size": len(content), "max_bytes": self.settings.MEDIA_MAX_BYTES},
            )
        sample = None
        if sample_id:
            try:
                sample = SampleId(sample_id)
            except ValueError:
                raise InvalidArgument(f"Unknown sample_id '{sample_id}'")

        incident = await self.repo.get_incident(incident_id)
        if incident is None:
            raise NotFound(f"Incident {incident_id} not found")
        card = await self.repo.get_card(incident_id, sample.value) if sample else None

        file_name = stored_file_name(slot, sample.value if sample else None, filename)
        stored = await run_in_threadpool(storage.save, str(incident_id), file_name, content)
        try:
            async with self.transaction():
                media = QualityMedia(
                    incident_id=incident_id,
                    sample_card_id=card.id if card else None,
                    sample_id=sample.value if sample else None,
                    media_type=media_type_for(content_type).value,
                    slot=slot,
                    file_path=stored.path,
                    file_name=stored.file_name,
                    file_url=stored.url,
                    file_size=len(content),
                    mime_type=content_type,
                    watermark_text=watermark_text,
                    created_by_user_id=actor.user_id,
                    created_at=utcnow(),
                )
                await self.repo.add(media)
                await self.repo.flush()
        except Exception:
            logger.warning("Media insert failed for incident %s; removing %s", incident_id, stored.path)
            await run_in_threadpool(storage.delete, stored.path)
            raise

        logger.info(
            "Media %s (%s, %d bytes) attached to incident %s slot=%s",
            media.id, media.media_type, media.file_size, incident_id, slot,
        )
        return media

    # PUBLIC_INTERFACE
    async def remove(self, incident_id: UUID, media_id: UUID, storage: MediaStorage) -> None:
        """Delete the media record, then its stored file once the delete is committed."""
        async with self.transaction():
            media = await self.repo.get_media(incident_id, media_id)
            if media is None:
                raise NotFound("Media not found")
            file_path = media.file_path
            await self.repo.delete(media)
            await self.repo.flush()

        await run_in_threadpool(storage.delete, file_path)
        logger.info("Media %s removed from incident %s", media_id, incident_id)
