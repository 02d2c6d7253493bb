"""
Tests for evidentiary media attach/remove.
"""

import os
import uuid

import pytest
from sqlalchemy import func, select

from quality_hold.core.errors import InvalidArgument, NotFound
from quality_hold.core.settings import AppSettings
from quality_hold.db.models import QualityMedia
from quality_hold.services.media_ledger import MediaLedger, stored_file_name

JPEG = b"\xff\xd8\xff\xe0 fake jpeg body"


async def _media_count(session) -> int:
    return int((await session.execute(select(func.count(QualityMedia.id)))).scalar_one())


def _attach_kwargs(actor, storage, **overrides):
    kwargs = dict(
        slot="container",
        content=JPEG,
        filename="IMG_0042.JPG",
        content_type="image/jpeg",
        actor=actor,
        storage=storage,
    )
    kwargs.update(overrides)
    return kwargs


class TestStoredFileName:
    def test_format(self):
        name = stored_file_name("container", "F1", "door.JPEG")
        slot, sample, rest = name.split("_")
        assert (slot, sample) == ("container", "F1")
        assert rest.endswith(".jpeg")
        assert rest[: -len(".jpeg")].isdigit()

    def test_without_sample_or_extension(self):
        assert stored_file_name("door", None, None).startswith("door__")


class TestAttach:
    """Uploads are validated, stored, then recorded."""

    async def test_photo_linked_to_sample_card(self, db_session, draft_incident, operator, media_storage):
        card_id = next(c.id for c in draft_incident.sample_cards if c.sample_id == "F1")
        media = await MediaLedger(db_session).attach(
            draft_incident.id, sample_id="F1", watermark_text="SN-2024-0001", **_attach_kwargs(operator, media_storage)
        )
        assert media.media_type == "photo"
        assert media.sample_id == "F1"
        assert media.sample_card_id == card_id
        assert media.mime_type == "image/jpeg"
        assert media.file_size == len(JPEG)
        assert media.created_by_user_id == "u-operator"
        assert media.file_name.startswith("container_F1_")
        assert media.file_name.endswith(".jpg")
        assert media.file_url == f"/uploads/quality/{draft_incident.id}/{media.file_name}"
        assert os.path.exists(media.file_path)

    async def test_video_is_classified_as_video(self, db_session, draft_incident, operator, media_storage):
        media = await MediaLedger(db_session).attach(
            draft_incident.id,
            **_attach_kwargs(operator, media_storage, filename="walkthrough.mp4", content_type="video/mp4"),
        )
        assert media.media_type == "video"
        assert media.sample_id is None
        assert media.sample_card_id is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"content_type": "application/pdf"},
            {"slot": ""},
            {"slot": None},
            {"content": b""},
            {"content": None},
        ],
    )
    async def test_invalid_upload_rejected(self, db_session, draft_incident, operator, media_storage, overrides):
        with pytest.raises(InvalidArgument):
            await MediaLedger(db_session).attach(
                draft_incident.id, **_attach_kwargs(operator, media_storage, **overrides)
            )
        assert await _media_count(db_session) == 0

    @pytest.mark.parametrize("slot", ["../../../escape", "door/left", "a b", "slot.jpg"])
    async def test_slot_outside_safe_charset_rejected(self, db_session, draft_incident, operator, media_storage, slot):
        with pytest.raises(InvalidArgument) as exc:
            await MediaLedger(db_session).attach(
                draft_incident.id, **_attach_kwargs(operator, media_storage, slot=slot)
            )
        assert exc.value.details["slot"] == slot
        assert await _media_count(db_session) == 0
        assert not media_storage.root.exists() or not any(p.is_file() for p in media_storage.root.rglob("*"))
        assert not any(p.is_file() for p in media_storage.root.parent.rglob("*escape*"))

    async def test_slot_with_dash_and_underscore_accepted(self, db_session, draft_incident, operator, media_storage):
        media = await MediaLedger(db_session).attach(
            draft_incident.id, **_attach_kwargs(operator, media_storage, slot="door-left_2")
        )
        assert media.file_name.startswith("door-left_2_")

    async def test_oversized_upload_rejected(self, db_session, draft_incident, operator, media_storage):
        ledger = MediaLedger(db_session, settings=AppSettings(MEDIA_MAX_BYTES=10))
        with pytest.raises(InvalidArgument) as exc:
            await ledger.attach(draft_incident.id, **_attach_kwargs(operator, media_storage))
        assert exc.value.details["max_bytes"] == 10

    async def test_unknown_sample_rejected(self, db_session, draft_incident, operator, media_storage):
        with pytest.raises(InvalidArgument):
            await MediaLedger(db_session).attach(
                draft_incident.id, sample_id="Z9", **_attach_kwargs(operator, media_storage)
            )

    async def test_unknown_incident_is_not_found(self, db_session, operator, media_storage):
        with pytest.raises(NotFound):
            await MediaLedger(db_session).attach(uuid.uuid4(), **_attach_kwargs(operator, media_storage))
        assert not media_storage.root.exists() or not any(media_storage.root.rglob("*.jpg"))

    async def test_failed_insert_removes_stored_file(
        self, db_session, draft_incident, operator, media_storage, monkeypatch
    ):
        ledger = MediaLedger(db_session)

        async def broken_flush():
            raise RuntimeError("db down")

        monkeypatch.setattr(ledger.repo, "flush", broken_flush)
        with pytest.raises(RuntimeError):
            await ledger.attach(draft_incident.id, **_attach_kwargs(operator, media_storage))
        assert not any(p.is_file() for p in media_storage.root.rglob("*"))


class TestRemove:
    async def test_deletes_record_and_file(self, db_session, draft_incident, operator, media_storage):
        ledger = MediaLedger(db_session)
        media = await ledger.attach(draft_incident.id, **_attach_kwargs(operator, media_storage))
        path = media.file_path

        await ledger.remove(draft_incident.id, media.id, media_storage)
        assert await _media_count(db_session) == 0
        assert not os.path.exists(path)

    async def test_missing_media_is_not_found(self, db_session, draft_incident, media_storage):
        with pytest.raises(NotFound):
            await MediaLedger(db_session).remove(draft_incident.id, uuid.uuid4(), media_storage)

    async def test_media_of_other_incident_is_not_found(
        self, db_session, draft_incident, seed_shipment, operator, media_storage
    ):
        from quality_hold.schemas.quality import IncidentCreate
        from quality_hold.services.incident_lifecycle import IncidentLifecycleManager

        other = await IncidentLifecycleManager(db_session).create(
            IncidentCreate(shipment_id=seed_shipment.id, issue_types=["mold"]), operator
        )
        ledger = MediaLedger(db_session)
        media = await ledger.attach(draft_incident.id, **_attach_kwargs(operator, media_storage))
        with pytest.raises(NotFound):
            await ledger.remove(other.id, media.id, media_storage)
