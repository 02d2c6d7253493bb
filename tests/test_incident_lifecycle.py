"""
Tests for incident creation, sparse updates, submission, listing and summary.
"""

import uuid

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from quality_hold.core.errors import Conflict, InvalidArgument, NotFound
from quality_hold.db.models import IncidentStatus, QualityIncident, SampleCard, Shipment
from quality_hold.schemas.quality import IncidentCreate, IncidentUpdate
from quality_hold.services.hold_controller import INCIDENT_HOLD_REASON, incident_hold_source
from quality_hold.services.incident_lifecycle import IncidentLifecycleManager, validate_issue_types
from quality_hold.services.media_ledger import MediaLedger
from quality_hold.services.sample_grid import SampleGrid, build_sample_cards

from conftest import BRANCH_ID, OTHER_BRANCH_ID


async def _count(session, model) -> int:
    return int((await session.execute(select(func.count(model.id)))).scalar_one())


class TestIssueTypes:
    def test_deduplicates_in_order(self):
        assert validate_issue_types(["mold", "broken", "mold"]) == ["mold", "broken"]

    def test_empty_rejected(self):
        with pytest.raises(InvalidArgument):
            validate_issue_types([])

    def test_unknown_rejected(self):
        with pytest.raises(InvalidArgument) as exc:
            validate_issue_types(["broken", "rotten"])
        assert "rotten" in exc.value.message

    def test_comma_separated_payload_is_split(self):
        payload = IncidentCreate(shipment_id=uuid.uuid4(), issue_types="broken, mold")
        assert payload.issue_types == ["broken", "mold"]


class TestCreateIncident:
    """Incident creation is atomic with its cards and the shipment hold."""

    async def test_creates_draft_with_cards_and_holds_shipment(self, db_session, draft_incident, seed_shipment):
        assert draft_incident.status == IncidentStatus.DRAFT.value
        assert draft_incident.issue_types == ["broken", "mold"]
        assert draft_incident.created_by_user_id == "u-operator"
        assert draft_incident.branch_id == BRANCH_ID
        assert len(draft_incident.sample_cards) == 9
        assert all(c.weighing_required for c in draft_incident.sample_cards)

        shipment = await db_session.get(Shipment, seed_shipment.id)
        assert shipment.hold_status is True
        assert shipment.hold_reason == INCIDENT_HOLD_REASON
        assert shipment.hold_source == incident_hold_source(draft_incident.id)

    async def test_packaging_only_damage_needs_no_weighing(self, db_session, seed_shipment, operator):
        payload = IncidentCreate(shipment_id=seed_shipment.id, issue_types=["damaged"], issue_subtype="crushed_box")
        incident = await IncidentLifecycleManager(db_session).create(payload, operator)
        assert not any(c.weighing_required for c in incident.sample_cards)

    async def test_invalid_issue_type_writes_nothing(self, db_session, seed_shipment, operator):
        shipment_id = seed_shipment.id
        payload = IncidentCreate(shipment_id=shipment_id, issue_types=["smelly"])
        with pytest.raises(InvalidArgument):
            await IncidentLifecycleManager(db_session).create(payload, operator)
        assert await _count(db_session, QualityIncident) == 0
        shipment = await db_session.get(Shipment, shipment_id)
        assert shipment.hold_status is False

    async def test_missing_shipment_writes_nothing(self, db_session, seed_shipment, operator):
        payload = IncidentCreate(shipment_id=uuid.uuid4(), issue_types=["broken"])
        with pytest.raises(NotFound):
            await IncidentLifecycleManager(db_session).create(payload, operator)
        assert await _count(db_session, QualityIncident) == 0
        assert await _count(db_session, SampleCard) == 0

    async def test_failed_card_insert_rolls_back_incident_and_hold(
        self, db_session, seed_shipment, operator, monkeypatch
    ):
        shipment_id = seed_shipment.id

        def cards_with_duplicate(incident_id, requires_weighing):
            cards = build_sample_cards(incident_id, requires_weighing)
            duplicate = SampleCard(
                incident_id=incident_id, sample_id="F1", sample_group="front", position=0,
                sample_weight_g=1000.0, broken_g=0.0, mold_g=0.0, foreign_g=0.0, other_g=0.0,
                weighing_required=requires_weighing, is_complete=False,
            )
            return cards + [duplicate]

        monkeypatch.setattr(
            "quality_hold.services.incident_lifecycle.build_sample_cards", cards_with_duplicate
        )
        payload = IncidentCreate(shipment_id=shipment_id, issue_types=["broken"])
        with pytest.raises(IntegrityError):
            await IncidentLifecycleManager(db_session).create(payload, operator)

        assert await _count(db_session, QualityIncident) == 0
        assert await _count(db_session, SampleCard) == 0
        shipment = await db_session.get(Shipment, shipment_id)
        assert shipment.hold_status is False
        assert shipment.hold_reason is None
        assert shipment.hold_source is None

    async def test_soft_deleted_shipment_is_not_found(self, db_session, seed_supplier, operator):
        shipment = Shipment(sn="SN-GONE", supplier_id=seed_supplier.id, is_deleted=True)
        db_session.add(shipment)
        await db_session.commit()
        payload = IncidentCreate(shipment_id=shipment.id, issue_types=["broken"])
        with pytest.raises(NotFound):
            await IncidentLifecycleManager(db_session).create(payload, operator)


class TestUpdateIncident:
    """Sparse updates while the incident is still editable."""

    async def test_merges_only_provided_fields(self, db_session, draft_incident):
        svc = IncidentLifecycleManager(db_session)
        updated = await svc.update(
            draft_incident.id,
            IncidentUpdate(container_torn_bags=True, container_torn_bags_count=4, moisture_pct=13.5),
        )
        assert updated.container_torn_bags is True
        assert updated.container_torn_bags_count == 4
        assert updated.moisture_pct == pytest.approx(13.5)
        assert updated.description_short == "Broken kernels near the door"
        assert updated.issue_types == ["broken", "mold"]

    @pytest.mark.parametrize("field", ["broken_g", "avg_defect_pct", "status"])
    def test_unknown_or_derived_fields_rejected(self, field):
        with pytest.raises(ValidationError):
            IncidentUpdate(**{field: 5})

    async def test_empty_update_only_refreshes_timestamp(self, db_session, draft_incident):
        svc = IncidentLifecycleManager(db_session)
        before = await svc.get(draft_incident.id)
        snapshot = (before.status, list(before.issue_types), before.description_short, before.updated_at)

        after = await svc.update(draft_incident.id, IncidentUpdate())
        assert (after.status, after.issue_types, after.description_short) == snapshot[:3]
        assert after.updated_at >= snapshot[3]

    async def test_issue_types_are_revalidated(self, db_session, draft_incident):
        svc = IncidentLifecycleManager(db_session)
        with pytest.raises(InvalidArgument):
            await svc.update(draft_incident.id, IncidentUpdate(issue_types=["nope"]))
        with pytest.raises(InvalidArgument):
            await svc.update(draft_incident.id, IncidentUpdate(issue_types=[]))

    async def test_inverted_estimate_range_rejected(self, db_session, draft_incident):
        with pytest.raises(InvalidArgument):
            await IncidentLifecycleManager(db_session).update(
                draft_incident.id, IncidentUpdate(affected_estimate_min=20, affected_estimate_max=5)
            )

    async def test_not_editable_after_review_started(self, db_session, draft_incident):
        incident_id = draft_incident.id
        draft_incident.status = IncidentStatus.UNDER_REVIEW.value
        await db_session.commit()
        with pytest.raises(Conflict):
            await IncidentLifecycleManager(db_session).update(incident_id, IncidentUpdate(moisture_pct=10))

    async def test_missing_incident_is_not_found(self, db_session, draft_incident):
        with pytest.raises(NotFound):
            await IncidentLifecycleManager(db_session).update(uuid.uuid4(), IncidentUpdate(moisture_pct=1))


class TestSubmitIncident:
    """Draft -> submitted requires evidence."""

    async def test_without_samples_or_media_rejected(self, db_session, draft_incident, operator):
        with pytest.raises(InvalidArgument):
            await IncidentLifecycleManager(db_session).submit(draft_incident.id, operator)

    async def test_incomplete_samples_do_not_count(self, db_session, draft_incident, operator):
        await SampleGrid(db_session).record_sample(draft_incident.id, "F1", broken_g=5, is_complete=False)
        with pytest.raises(InvalidArgument):
            await IncidentLifecycleManager(db_session).submit(draft_incident.id, operator)

    async def test_with_completed_sample(self, db_session, draft_incident, operator):
        await SampleGrid(db_session).record_sample(draft_incident.id, "F1", broken_g=5, is_complete=True)
        submitted = await IncidentLifecycleManager(db_session).submit(draft_incident.id, operator)
        assert submitted.status == IncidentStatus.SUBMITTED.value
        assert submitted.submitted_at is not None

    async def test_with_media_only(self, db_session, draft_incident, operator, media_storage):
        await MediaLedger(db_session).attach(
            draft_incident.id,
            slot="container_door",
            content=b"\xff\xd8\xff photo",
            filename="door.jpg",
            content_type="image/jpeg",
            actor=operator,
            storage=media_storage,
        )
        submitted = await IncidentLifecycleManager(db_session).submit(draft_incident.id, operator)
        assert submitted.status == IncidentStatus.SUBMITTED.value

    async def test_second_submit_conflicts(self, db_session, draft_incident, operator):
        svc = IncidentLifecycleManager(db_session)
        await SampleGrid(db_session).record_sample(draft_incident.id, "F1", broken_g=5, is_complete=True)
        await svc.submit(draft_incident.id, operator)
        with pytest.raises(Conflict):
            await svc.submit(draft_incident.id, operator)

    async def test_missing_incident_is_not_found(self, db_session, operator):
        with pytest.raises(NotFound):
            await IncidentLifecycleManager(db_session).submit(uuid.uuid4(), operator)


class TestListAndSummary:
    """Branch scoping for listing and summary statistics."""

    async def _create(self, session, shipment_id, actor, branch_id):
        payload = IncidentCreate(shipment_id=shipment_id, issue_types=["broken"], branch_id=branch_id)
        return await IncidentLifecycleManager(session).create(payload, actor)

    async def test_branch_user_sees_own_branch_only(self, db_session, seed_shipment, operator, hq_admin):
        await self._create(db_session, seed_shipment.id, operator, BRANCH_ID)
        await self._create(db_session, seed_shipment.id, hq_admin, OTHER_BRANCH_ID)

        svc = IncidentLifecycleManager(db_session)
        own = await svc.list_incidents(operator)
        assert [i.branch_id for i in own] == [BRANCH_ID]
        assert len(await svc.list_incidents(hq_admin)) == 2
        assert len(await svc.list_incidents(hq_admin, branch_id=OTHER_BRANCH_ID)) == 1

    async def test_list_filters(self, db_session, seed_shipment, operator, hq_admin):
        await self._create(db_session, seed_shipment.id, operator, BRANCH_ID)
        await self._create(db_session, seed_shipment.id, hq_admin, BRANCH_ID)
        svc = IncidentLifecycleManager(db_session)
        assert len(await svc.list_incidents(hq_admin, created_by="u-operator")) == 1
        assert len(await svc.list_incidents(hq_admin, status="draft")) == 2
        assert await svc.list_incidents(hq_admin, status="closed") == []
        assert len(await svc.list_incidents(hq_admin, limit=1)) == 1

    async def test_summary_counts_and_average(self, db_session, seed_shipment, operator, hq_admin):
        first = await self._create(db_session, seed_shipment.id, operator, BRANCH_ID)
        await self._create(db_session, seed_shipment.id, operator, BRANCH_ID)
        await SampleGrid(db_session).record_sample(first.id, "F1", broken_g=40, is_complete=True)
        await IncidentLifecycleManager(db_session).submit(first.id, operator)

        summary = await IncidentLifecycleManager(db_session).summary(hq_admin)
        assert summary["total"] == 2
        assert summary["draft"] == 1
        assert summary["submitted"] == 1
        assert summary["closed"] == 0
        assert summary["overall_avg_defect_pct"] == pytest.approx(4.0)

    async def test_summary_scoped_for_branch_user(self, db_session, seed_shipment, operator, hq_admin):
        await self._create(db_session, seed_shipment.id, hq_admin, OTHER_BRANCH_ID)
        summary = await IncidentLifecycleManager(db_session).summary(operator)
        assert summary["total"] == 0
        assert summary["overall_avg_defect_pct"] is None
