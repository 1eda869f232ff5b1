import uuid
from decimal import Decimal

import pytest

from app.core.workflows import collection, enrollment, recruitment, safeguarding, transport
from app.core.workflows.base import (
    INVALID_ENUM_VALUE,
    INVALID_TRANSITION,
    MISSING_REQUIRED_DOCUMENTS,
    MISSING_REQUIRED_FIELD,
    PENDING_OVERRIDE_APPROVAL,
    UNAUTHORIZED_ACTOR,
    Actor,
)
from app.core.exceptions import TransitionError


STAFF = Actor(user_id=uuid.uuid4(), actions=frozenset({"read", "write"}))
APPROVER = Actor(user_id=uuid.uuid4(), actions=frozenset({"read", "write", "approve"}))
APPLICANT = Actor(user_id=uuid.uuid4(), is_owner=True)
NOBODY = Actor(user_id=uuid.uuid4())

STANDARD = dict(enrollment.DEFAULT_REQUIREMENTS["standard_digital"])
NO_ASSESSMENT = {"requires_assessment": False, "requires_interview": True, "requires_payment": False}


# ----- Enrollment -----

def test_applicant_submits_own_draft():
    result = enrollment.apply("draft", "submitted", APPLICANT, STANDARD)
    assert result.accepted
    assert "create_steps" in result.effects
    assert "complete_step:application_submitted" in result.effects


def test_stranger_cannot_submit():
    result = enrollment.apply("draft", "submitted", NOBODY, STANDARD)
    assert not result.accepted
    assert result.reason == UNAUTHORIZED_ACTOR


def test_review_edges_need_write():
    assert not enrollment.apply("submitted", "under_review", APPLICANT, STANDARD).accepted
    assert enrollment.apply("submitted", "under_review", STAFF, STANDARD).accepted


def test_skipping_states_is_rejected():
    result = enrollment.apply("submitted", "approved", APPROVER, STANDARD)
    assert result.reason == INVALID_TRANSITION


def test_unknown_status_is_invalid_enum():
    result = enrollment.apply("submitted", "teleported", APPROVER, STANDARD)
    assert result.reason == INVALID_ENUM_VALUE
    assert result.field == "status"


def test_terminal_states_have_no_exits():
    for state in ("enrolled", "offer_declined", "rejected", "withdrawn"):
        assert enrollment.MACHINE.allowed_transitions(state) == frozenset()


def test_assessment_cannot_be_skipped_when_required():
    result = enrollment.apply("under_review", "interview_scheduled", STAFF, STANDARD)
    assert not result.accepted
    assert enrollment.apply("under_review", "interview_scheduled", STAFF, NO_ASSESSMENT).accepted


def test_leaving_review_requires_verified_documents():
    payload = dict(STANDARD, missing_documents=["birth_certificate"])
    result = enrollment.apply("under_review", "assessment_scheduled", STAFF, payload)
    assert result.reason == MISSING_REQUIRED_DOCUMENTS
    # documents_pending is the way to wait for them
    assert enrollment.apply("under_review", "documents_pending", STAFF, payload).accepted


def test_approval_needs_approve_permission():
    assert enrollment.apply("pending_approval", "approved", STAFF, STANDARD).reason == UNAUTHORIZED_ACTOR
    result = enrollment.apply("pending_approval", "approved", APPROVER, STANDARD)
    assert result.accepted
    assert "complete_step:admission_decision" in result.effects


def test_rejection_and_override_request_need_approve():
    assert not enrollment.apply("under_review", "rejected", STAFF, STANDARD).accepted
    assert enrollment.apply("under_review", "rejected", APPROVER, STANDARD).accepted
    assert not enrollment.apply("under_review", "requires_override", STAFF, STANDARD).accepted


def test_applicant_may_withdraw_and_answer_offer():
    assert enrollment.apply("under_review", "withdrawn", APPLICANT, STANDARD).accepted
    assert enrollment.apply("offer_sent", "offer_declined", APPLICANT, STANDARD).accepted
    accepted = enrollment.apply("offer_sent", "offer_accepted", APPLICANT, STANDARD)
    assert "auto_advance:enrolled" in accepted.effects


def test_on_hold_resumes_only_to_origin():
    payload = dict(STANDARD, held_from_status="under_review")
    assert enrollment.apply("on_hold", "under_review", STAFF, payload).accepted
    assert enrollment.apply("on_hold", "submitted", STAFF, payload).reason == INVALID_TRANSITION
    assert enrollment.apply("on_hold", "withdrawn", STAFF, payload).accepted


def test_hold_origin_tracking():
    assert enrollment.hold_origin("under_review", "on_hold", None) == "under_review"
    assert enrollment.hold_origin("on_hold", "requires_override", "under_review") == "under_review"
    assert enrollment.hold_origin("on_hold", "under_review", "under_review") is None


def test_enrollment_waits_for_payment_when_required():
    payload = {"requires_payment": True, "payment_completed": False}
    assert not enrollment.apply("offer_accepted", "enrolled", STAFF, payload).accepted
    payload["payment_completed"] = True
    assert enrollment.apply("offer_accepted", "enrolled", STAFF, payload).accepted


def test_sibling_pathway_auto_approves():
    payload = dict(enrollment.DEFAULT_REQUIREMENTS["sibling_automatic"], pathway="sibling_automatic")
    result = enrollment.apply("under_review", "pending_approval", STAFF, payload)
    assert "auto_advance:approved" in result.effects


def test_status_override_allows_off_graph_moves():
    assert enrollment.apply("submitted", "enrolled", STAFF, {"status_override": "approved"}).accepted
    pending = enrollment.apply("submitted", "enrolled", STAFF, {"status_override": "pending"})
    assert pending.reason == PENDING_OVERRIDE_APPROVAL


def test_steps_and_completion():
    steps = [
        type("Step", (), dict(row, is_completed=False))
        for row in enrollment.build_steps(enrollment.DEFAULT_REQUIREMENTS["internal_progression"])
    ]
    required = [s for s in steps if s.is_required]
    assert {s.step_type for s in steps if not s.is_required} == {"assessment", "interview", "payment"}
    assert enrollment.completion_percentage(steps) == 0
    assert enrollment.current_step(steps) == "application_submitted"

    required[0].is_completed = True
    assert enrollment.completion_percentage(steps) == 100 // len(required)
    for s in required:
        s.is_completed = True
    assert enrollment.completion_percentage(steps) == 100
    assert enrollment.current_step(steps) is None


def test_rejection_raises_transition_error():
    result = enrollment.apply("submitted", "approved", APPROVER, STANDARD)
    with pytest.raises(TransitionError) as exc:
        result.raise_for_rejection()
    assert exc.value.status_code == 409
    assert exc.value.code == INVALID_TRANSITION


# ----- Other lifecycles -----

def test_collection_session_sign_off():
    cashier = Actor(user_id=uuid.uuid4(), actions=frozenset({"write"}), is_owner=True)
    assert collection.MACHINE.apply("active", "closed", cashier, {}).reason == MISSING_REQUIRED_FIELD
    assert collection.MACHINE.apply("active", "closed", cashier, {"closing_cash_amount": 10}).accepted

    supervisor_cashier = Actor(user_id=cashier.user_id, actions=frozenset({"approve"}), is_owner=True)
    assert collection.MACHINE.apply("closed", "approved", supervisor_cashier).reason == UNAUTHORIZED_ACTOR
    assert collection.MACHINE.apply("closed", "approved", APPROVER).accepted
    assert collection.MACHINE.allowed_transitions("approved") == frozenset()
    assert collection.variance(Decimal("95.00"), Decimal("100.00")) == Decimal("-5.00")


def test_trip_lifecycle():
    writer = Actor(user_id=uuid.uuid4(), actions=frozenset({"write"}))
    started = transport.MACHINE.apply("scheduled", "in_progress", writer)
    assert list(started.effects) == ["record_start_time"]
    assert transport.MACHINE.apply("scheduled", "cancelled", writer, {}).field == "cancellation_reason"
    finished = transport.MACHINE.apply("delayed", "completed", writer)
    assert "reconcile_headcount" in finished.effects
    assert not transport.MACHINE.apply("completed", "in_progress", writer).accepted
    assert transport.accepts_logs("delayed") and not transport.accepts_logs("scheduled")


def test_recruitment_pipeline():
    hr = Actor(user_id=uuid.uuid4(), actions=frozenset({"write", "approve"}))
    assert recruitment.MACHINE.apply("interview", "offer", hr).accepted
    assert recruitment.MACHINE.apply("submitted", "interview", hr).reason == INVALID_TRANSITION
    assert recruitment.MACHINE.apply("screening", "rejected", hr, {}).field == "rejection_reason"
    assert recruitment.MACHINE.apply("screening", "rejected", hr, {"rejection_reason": "No visa"}).accepted
    candidate = Actor(user_id=uuid.uuid4(), is_owner=True)
    assert recruitment.MACHINE.apply("interview", "withdrawn", candidate).accepted
    assert not recruitment.MACHINE.apply("interview", "assessment", candidate).accepted


def test_safeguarding_case_handling():
    dsl = Actor(user_id=uuid.uuid4(), actions=frozenset({"read", "write", "escalate"}))
    teacher = Actor(user_id=uuid.uuid4(), actions=frozenset({"read", "write"}))
    assert safeguarding.MACHINE.apply("open", "escalated", teacher).reason == UNAUTHORIZED_ACTOR
    assert safeguarding.MACHINE.apply("open", "escalated", dsl).accepted
    assert safeguarding.MACHINE.apply("in_progress", "resolved", dsl, {}).field == "outcome"
    closed = safeguarding.MACHINE.apply("resolved", "closed", dsl)
    assert "set_closed_at" in closed.effects
    assert safeguarding.MACHINE.allowed_transitions("closed") == frozenset()
