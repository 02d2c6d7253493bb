"""
Tests for supervisory review actions.
"""

import uuid
from datetime import date

import pytest
from sqlalchemy import func, select

from quality_hold.core.errors import Conflict, Forbidden, InvalidArgument, NotFound
from quality_hold.core.security import Actor
from quality_hold.db.models import (
    DeliveryOutcome,
    IncidentStatus,
    ReviewAction,
    ReviewActionType,
    Shipment,
    SupplierDeliveryRecord,
)
from quality_hold.services.deliveries import DeliveryService
from quality_hold.services.hold_controller import DELIVERY_HOLD_SOURCE
from quality_hold.services.incident_lifecycle import IncidentLifecycleManager
from quality_hold.services.review_processor import ReviewActionProcessor
from quality_hold.services.sample_grid import SampleGrid


async def _review_count(session) -> int:
    return int((await session.execute(select(func.count(ReviewAction.id)))).scalar_one())


async def _delivery_record(session, shipment_id):
    stmt = select(SupplierDeliveryRecord).where(SupplierDeliveryRecord.shipment_id == shipment_id)
    return (await session.execute(stmt)).scalar_one_or_none()


@pytest.fixture
async def submitted_incident(db_session, draft_incident, operator):
    await SampleGrid(db_session).record_sample(draft_incident.id, "F1", broken_g=30, is_complete=True)
    return await IncidentLifecycleManager(db_session).submit(draft_incident.id, operator)


class TestAuthorizationAndValidation:
    """Role is checked before anything else, then the action, then the incident."""

    @pytest.mark.parametrize("action", ["clear_hold", "close", "add_note", "bogus"])
    async def test_non_reviewer_is_forbidden_for_any_action(self, db_session, draft_incident, operator, action):
        with pytest.raises(Forbidden):
            await ReviewActionProcessor(db_session).review(draft_incident.id, operator, action)

    async def test_non_reviewer_is_forbidden_for_missing_incident(self, db_session, operator):
        with pytest.raises(Forbidden):
            await ReviewActionProcessor(db_session).review(uuid.uuid4(), operator, "close")

    async def test_non_reviewer_is_forbidden_on_closed_incident(self, db_session, submitted_incident, supervisor, operator):
        svc = ReviewActionProcessor(db_session)
        await svc.review(submitted_incident.id, supervisor, "close")
        with pytest.raises(Forbidden):
            await svc.review(submitted_incident.id, operator, "keep_hold")

    async def test_unknown_action_is_invalid(self, db_session, draft_incident, supervisor):
        with pytest.raises(InvalidArgument):
            await ReviewActionProcessor(db_session).review(draft_incident.id, supervisor, "approve")

    async def test_missing_incident_is_not_found(self, db_session, supervisor):
        with pytest.raises(NotFound):
            await ReviewActionProcessor(db_session).review(uuid.uuid4(), supervisor, "keep_hold")

    async def test_role_match_is_case_insensitive(self, db_session, draft_incident):
        actor = Actor(user_id="u-exec", role="Exec")
        incident = await ReviewActionProcessor(db_session).review(draft_incident.id, actor, "add_note", notes="seen")
        assert incident.review_actions[-1].by_role == "Exec"

    def test_every_action_has_a_handler(self, db_session):
        handlers = ReviewActionProcessor(db_session)._handlers
        assert set(handlers) == set(ReviewActionType)


class TestReviewActions:
    """Effects of each action on incident, hold and audit trail."""

    async def test_clear_hold_releases_shipment(self, db_session, submitted_incident, seed_shipment, supervisor):
        incident = await ReviewActionProcessor(db_session).review(
            submitted_incident.id, supervisor, "clear_hold", notes="Within tolerance"
        )
        assert incident.status == IncidentStatus.ACTION_SET.value

        shipment = await db_session.get(Shipment, seed_shipment.id)
        assert shipment.hold_status is False
        assert shipment.hold_reason is None

        audit = incident.review_actions
        assert len(audit) == 1
        assert audit[0].action_type == "clear_hold"
        assert audit[0].by_user_id == "u-supervisor"
        assert audit[0].by_role == "supervisor"
        assert audit[0].notes == "Within tolerance"

    async def test_clear_hold_wins_over_a_later_delivery_hold(
        self, db_session, submitted_incident, seed_shipment, supervisor, operator
    ):
        await DeliveryService(db_session).confirm_delivery(seed_shipment.id, True, operator)
        shipment = await db_session.get(Shipment, seed_shipment.id)
        assert shipment.hold_source == DELIVERY_HOLD_SOURCE

        await ReviewActionProcessor(db_session).review(submitted_incident.id, supervisor, "clear_hold")
        shipment = await db_session.get(Shipment, seed_shipment.id)
        assert shipment.hold_status is False
        assert shipment.hold_reason is None

    async def test_clear_hold_after_prior_reviews(self, db_session, submitted_incident, seed_shipment, supervisor):
        svc = ReviewActionProcessor(db_session)
        await svc.review(submitted_incident.id, supervisor, "keep_hold")
        await svc.review(submitted_incident.id, supervisor, "request_resample", target_sample_ids=["F1"])
        await svc.review(submitted_incident.id, supervisor, "clear_hold")
        shipment = await db_session.get(Shipment, seed_shipment.id)
        assert shipment.hold_status is False

    async def test_clear_hold_releases_soft_deleted_shipment(
        self, db_session, submitted_incident, seed_shipment, supervisor
    ):
        incident_id, shipment_id = submitted_incident.id, seed_shipment.id
        seed_shipment.is_deleted = True
        await db_session.commit()

        incident = await ReviewActionProcessor(db_session).review(incident_id, supervisor, "clear_hold")
        assert incident.status == IncidentStatus.ACTION_SET.value
        shipment = await db_session.get(Shipment, shipment_id)
        assert shipment.is_deleted is True
        assert shipment.hold_status is False
        assert shipment.hold_reason is None

    async def test_keep_hold_leaves_shipment_held(self, db_session, submitted_incident, seed_shipment, supervisor):
        incident = await ReviewActionProcessor(db_session).review(submitted_incident.id, supervisor, "keep_hold")
        assert incident.status == IncidentStatus.ACTION_SET.value
        shipment = await db_session.get(Shipment, seed_shipment.id)
        assert shipment.hold_status is True

    async def test_request_resample_marks_cards_incomplete(self, db_session, submitted_incident, supervisor):
        incident = await ReviewActionProcessor(db_session).review(
            submitted_incident.id, supervisor, "request_resample", target_sample_ids=["F1", "M2"]
        )
        assert incident.status == IncidentStatus.UNDER_REVIEW.value
        cards = {c.sample_id: c for c in incident.sample_cards}
        assert cards["F1"].is_complete is False
        assert incident.avg_defect_pct is None
        assert incident.review_actions[-1].target_sample_ids == ["F1", "M2"]

    async def test_request_resample_with_unknown_target_rolls_back(self, db_session, submitted_incident, supervisor):
        incident_id = submitted_incident.id
        with pytest.raises(InvalidArgument):
            await ReviewActionProcessor(db_session).review(
                incident_id, supervisor, "request_resample", target_sample_ids=["F1", "Q7"]
            )
        assert await _review_count(db_session) == 0
        incident = await IncidentLifecycleManager(db_session).get(incident_id)
        assert incident.status == IncidentStatus.SUBMITTED.value
        assert next(c for c in incident.sample_cards if c.sample_id == "F1").is_complete is True

    async def test_add_note_only_appends_audit(self, db_session, submitted_incident, seed_shipment, supervisor):
        incident = await ReviewActionProcessor(db_session).review(
            submitted_incident.id, supervisor, "add_note", notes="Called supplier"
        )
        assert incident.status == IncidentStatus.SUBMITTED.value
        assert [a.action_type for a in incident.review_actions] == ["add_note"]
        shipment = await db_session.get(Shipment, seed_shipment.id)
        assert shipment.hold_status is True


class TestCloseIncident:
    """Closing classifies the delivery on the supplier scorecard."""

    async def _close_with_broken_grams(self, session, incident_id, broken_g, actor):
        await SampleGrid(session).record_sample(incident_id, "F1", broken_g=broken_g, is_complete=True)
        return await ReviewActionProcessor(session).review(incident_id, actor, "close")

    async def test_exactly_five_percent_is_partial_issue(self, db_session, draft_incident, seed_shipment, supervisor):
        incident = await self._close_with_broken_grams(db_session, draft_incident.id, 50, supervisor)
        assert incident.status == IncidentStatus.CLOSED.value
        assert incident.closed_at is not None
        assert incident.avg_defect_pct == pytest.approx(5.0)

        record = await _delivery_record(db_session, seed_shipment.id)
        assert record.final_outcome == DeliveryOutcome.PARTIAL_ISSUE.value
        assert record.has_quality_issues is True
        assert record.delivery_date == date.today()
        assert record.supplier_name == "Anatolia Nuts Co."

    async def test_above_five_percent_is_major_issue(self, db_session, draft_incident, seed_shipment, supervisor):
        await self._close_with_broken_grams(db_session, draft_incident.id, 50.1, supervisor)
        record = await _delivery_record(db_session, seed_shipment.id)
        assert record.final_outcome == DeliveryOutcome.MAJOR_ISSUE.value

    async def test_classification_uses_the_unrounded_average(self, db_session, draft_incident, seed_shipment, supervisor):
        incident = await self._close_with_broken_grams(db_session, draft_incident.id, 50.004, supervisor)
        assert incident.avg_defect_pct == pytest.approx(5.0)
        record = await _delivery_record(db_session, seed_shipment.id)
        assert record.final_outcome == DeliveryOutcome.MAJOR_ISSUE.value

    async def test_close_without_measurements_is_partial_issue(self, db_session, draft_incident, seed_shipment, supervisor):
        await ReviewActionProcessor(db_session).review(draft_incident.id, supervisor, "close")
        record = await _delivery_record(db_session, seed_shipment.id)
        assert record.final_outcome == DeliveryOutcome.PARTIAL_ISSUE.value

    async def test_close_updates_confirmed_delivery(self, db_session, draft_incident, seed_shipment, supervisor, operator):
        await DeliveryService(db_session).confirm_delivery(seed_shipment.id, False, operator)
        await self._close_with_broken_grams(db_session, draft_incident.id, 80, supervisor)
        record = await _delivery_record(db_session, seed_shipment.id)
        assert record.final_outcome == DeliveryOutcome.MAJOR_ISSUE.value
        assert record.has_quality_issues is True
        assert record.confirmed_by_user_id == "u-operator"

    async def test_closed_incident_only_accepts_notes(self, db_session, draft_incident, supervisor):
        incident_id = draft_incident.id
        svc = ReviewActionProcessor(db_session)
        await svc.review(incident_id, supervisor, "close")
        with pytest.raises(Conflict):
            await svc.review(incident_id, supervisor, "clear_hold")

        incident = await svc.review(incident_id, supervisor, "add_note", notes="Credit note issued")
        assert incident.status == IncidentStatus.CLOSED.value
        assert [a.action_type for a in incident.review_actions] == ["close", "add_note"]
