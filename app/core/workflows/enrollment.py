"""
Enrollment pipeline state machine, workflow step template and completion arithmetic.

The admission decision is a workflow step (completed on approved / rejected), not a status.
on_hold and requires_override remember the status they were entered from and may only
resume to it (or leave through the escape states).
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from app.core.enums import EnrollmentPathway, EnrollmentStatus as S, PermissionType
from app.core.exceptions import ValidationError
from app.core.workflows.base import (
    INVALID_TRANSITION,
    MISSING_REQUIRED_DOCUMENTS,
    PENDING_OVERRIDE_APPROVAL,
    Actor,
    Payload,
    StateMachine,
    TransitionGraph,
    TransitionResult,
    unauthorized,
)


TERMINAL = {S.ENROLLED.value, S.OFFER_DECLINED.value, S.REJECTED.value, S.WITHDRAWN.value}
HOLD_STATES = {S.ON_HOLD.value, S.REQUIRES_OVERRIDE.value}
ESCAPES = {S.REJECTED.value, S.WITHDRAWN.value, S.ON_HOLD.value, S.REQUIRES_OVERRIDE.value}

_REVIEW_EXITS = {
    S.DOCUMENTS_PENDING.value,
    S.ASSESSMENT_SCHEDULED.value,
    S.INTERVIEW_SCHEDULED.value,
    S.PENDING_APPROVAL.value,
}

_PIPELINE = {
    S.DRAFT.value: {S.SUBMITTED.value},
    S.SUBMITTED.value: {S.UNDER_REVIEW.value},
    S.UNDER_REVIEW.value: _REVIEW_EXITS,
    S.DOCUMENTS_PENDING.value: (_REVIEW_EXITS - {S.DOCUMENTS_PENDING.value}) | {S.UNDER_REVIEW.value},
    S.ASSESSMENT_SCHEDULED.value: {S.ASSESSMENT_COMPLETE.value},
    S.ASSESSMENT_COMPLETE.value: {S.INTERVIEW_SCHEDULED.value, S.PENDING_APPROVAL.value},
    S.INTERVIEW_SCHEDULED.value: {S.INTERVIEW_COMPLETE.value},
    S.INTERVIEW_COMPLETE.value: {S.PENDING_APPROVAL.value},
    S.PENDING_APPROVAL.value: {S.APPROVED.value},
    S.APPROVED.value: {S.OFFER_SENT.value},
    S.OFFER_SENT.value: {S.OFFER_ACCEPTED.value, S.OFFER_DECLINED.value},
    S.OFFER_ACCEPTED.value: {S.ENROLLED.value},
}

# A held application may resume to any pipeline state; the guard narrows it to held_from_status.
_RESUMABLE = set(_PIPELINE)
_EDGES = dict(_PIPELINE)
_EDGES[S.ON_HOLD.value] = _RESUMABLE
_EDGES[S.REQUIRES_OVERRIDE.value] = _RESUMABLE

GRAPH = TransitionGraph.build(_EDGES, terminal=TERMINAL, escapes=ESCAPES)

# Edges the applicant may take on their own application
_APPLICANT_EDGES = {
    (S.DRAFT.value, S.SUBMITTED.value),
    (S.OFFER_SENT.value, S.OFFER_ACCEPTED.value),
    (S.OFFER_SENT.value, S.OFFER_DECLINED.value),
}
_APPROVAL_TARGETS = {S.APPROVED.value, S.REJECTED.value, S.REQUIRES_OVERRIDE.value}


# ----- Workflow step template -----

STEP_APPLICATION_SUBMITTED = "application_submitted"
STEP_DOCUMENT_VERIFICATION = "document_verification"
STEP_ASSESSMENT = "assessment"
STEP_INTERVIEW = "interview"
STEP_ADMISSION_DECISION = "admission_decision"
STEP_OFFER = "offer"
STEP_PAYMENT = "payment"
STEP_ENROLLMENT = "enrollment"

STEP_TEMPLATE = [
    (STEP_APPLICATION_SUBMITTED, "Application Submitted"),
    (STEP_DOCUMENT_VERIFICATION, "Document Verification"),
    (STEP_ASSESSMENT, "Assessment"),
    (STEP_INTERVIEW, "Interview"),
    (STEP_ADMISSION_DECISION, "Admission Decision"),
    (STEP_OFFER, "Offer"),
    (STEP_PAYMENT, "Fee Payment"),
    (STEP_ENROLLMENT, "Enrollment"),
]

# Pathway defaults used when a school has no enrollment_types row for the pathway
DEFAULT_REQUIREMENTS: Dict[str, Dict[str, bool]] = {
    EnrollmentPathway.STANDARD_DIGITAL.value: {
        "requires_assessment": True, "requires_interview": True, "requires_payment": False, "auto_approve_siblings": False,
    },
    EnrollmentPathway.SIBLING_AUTOMATIC.value: {
        "requires_assessment": False, "requires_interview": False, "requires_payment": False, "auto_approve_siblings": True,
    },
    EnrollmentPathway.INTERNAL_PROGRESSION.value: {
        "requires_assessment": False, "requires_interview": False, "requires_payment": False, "auto_approve_siblings": False,
    },
    EnrollmentPathway.STAFF_CHILD.value: {
        "requires_assessment": False, "requires_interview": True, "requires_payment": False, "auto_approve_siblings": False,
    },
    EnrollmentPathway.PARTNER_SCHOOL.value: {
        "requires_assessment": True, "requires_interview": False, "requires_payment": False, "auto_approve_siblings": False,
    },
    EnrollmentPathway.EMERGENCY_SAFEGUARDING.value: {
        "requires_assessment": False, "requires_interview": False, "requires_payment": False, "auto_approve_siblings": False,
    },
}

# Fields an override may target
OVERRIDABLE_FIELDS = frozenset({"status", "year_group", "pathway", "priority_score", "fee_status"})
# Off-graph status moves always need a justification and a second approver
APPROVAL_REQUIRED_FIELDS = frozenset({"status"})


def build_steps(requirements: Dict[str, bool], template: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    """
    Step rows for a new application, from the workflow template's steps_config when one
    is assigned, else STEP_TEMPLATE. Steps the pathway skips are kept but not required.
    """
    skipped = set()
    if not requirements.get("requires_assessment", True):
        skipped.add(STEP_ASSESSMENT)
    if not requirements.get("requires_interview", True):
        skipped.add(STEP_INTERVIEW)
    if not requirements.get("requires_payment", False):
        skipped.add(STEP_PAYMENT)
    if not template:
        template = [{"step_type": step_type, "step_name": step_name} for step_type, step_name in STEP_TEMPLATE]
    steps = []
    for index, entry in enumerate(template):
        step_type = entry["step_type"]
        steps.append(
            {
                "step_type": step_type,
                "step_name": entry.get("step_name") or step_type.replace("_", " ").title(),
                "order_index": entry.get("order_index", index),
                "is_required": bool(entry.get("is_required", True)) and step_type not in skipped,
            }
        )
    return steps


def validate_steps_config(steps_config: List[Dict[str, Any]]) -> None:
    """A template needs at least one step and unique, non-empty step types."""
    if not steps_config:
        raise ValidationError("A workflow template needs at least one step", field="steps_config")
    seen = set()
    for entry in steps_config:
        step_type = entry.get("step_type")
        if not step_type:
            raise ValidationError("Every step needs a step_type", field="steps_config")
        if step_type in seen:
            raise ValidationError(f"Step '{step_type}' appears twice", field="steps_config")
        seen.add(step_type)


def completion_percentage(steps: Iterable[Any]) -> int:
    """Completed required steps / required steps * 100, rounded down."""
    required = [s for s in steps if s.is_required]
    if not required:
        return 0
    done = sum(1 for s in required if s.is_completed)
    return (done * 100) // len(required)


def current_step(steps: Iterable[Any]) -> Optional[str]:
    """First required step not yet completed, in template order."""
    for s in sorted(steps, key=lambda s: s.order_index):
        if s.is_required and not s.is_completed:
            return s.step_type
    return None


def generate_application_number(now: datetime) -> str:
    return f"APP-{now.year}-{uuid.uuid4().hex[:8].upper()}"


# ----- Guard and effects -----

def _check_actor(current: str, requested: str, actor: Actor) -> Optional[TransitionResult]:
    if requested == S.WITHDRAWN.value or (current, requested) in _APPLICANT_EDGES:
        if actor.is_owner or actor.can(PermissionType.WRITE.value):
            return None
        return unauthorized("Only the applicant or admissions staff may perform this transition")
    if requested in _APPROVAL_TARGETS:
        if actor.can(PermissionType.APPROVE.value):
            return None
        return unauthorized("Approve permission on admissions is required")
    if actor.can(PermissionType.WRITE.value):
        return None
    return unauthorized("Write permission on admissions is required")


def _guard(current: str, requested: str, actor: Actor, payload: Payload) -> Optional[TransitionResult]:
    rejected = _check_actor(current, requested, actor)
    if rejected is not None:
        return rejected

    if current in HOLD_STATES and requested not in ESCAPES:
        held_from = payload.get("held_from_status")
        if requested != held_from:
            return TransitionResult.reject(
                INVALID_TRANSITION,
                f"A held application can only resume to '{held_from}'",
            )
        return None

    leaving_review = current in (S.UNDER_REVIEW.value, S.DOCUMENTS_PENDING.value)
    if leaving_review and requested in _REVIEW_EXITS - {S.DOCUMENTS_PENDING.value}:
        missing = list(payload.get("missing_documents") or [])
        if missing:
            return TransitionResult.reject(
                MISSING_REQUIRED_DOCUMENTS,
                "Required documents not verified: " + ", ".join(sorted(missing)),
                field="documents",
            )
        if requested in (S.INTERVIEW_SCHEDULED.value, S.PENDING_APPROVAL.value) and payload.get("requires_assessment", True):
            return TransitionResult.reject(INVALID_TRANSITION, "Assessment is required for this pathway")
        if requested == S.PENDING_APPROVAL.value and payload.get("requires_interview", True):
            return TransitionResult.reject(INVALID_TRANSITION, "Interview is required for this pathway")

    if (
        current == S.ASSESSMENT_COMPLETE.value
        and requested == S.PENDING_APPROVAL.value
        and payload.get("requires_interview", True)
    ):
        return TransitionResult.reject(INVALID_TRANSITION, "Interview is required for this pathway")

    if current == S.OFFER_ACCEPTED.value and requested == S.ENROLLED.value:
        if payload.get("requires_payment") and not payload.get("payment_completed"):
            return TransitionResult.reject(INVALID_TRANSITION, "Fee payment must be completed before enrollment", field="payment")
    return None


_STEP_ON_ENTER = {
    S.SUBMITTED.value: STEP_APPLICATION_SUBMITTED,
    S.ASSESSMENT_COMPLETE.value: STEP_ASSESSMENT,
    S.INTERVIEW_COMPLETE.value: STEP_INTERVIEW,
    S.APPROVED.value: STEP_ADMISSION_DECISION,
    S.REJECTED.value: STEP_ADMISSION_DECISION,
    S.OFFER_SENT.value: STEP_OFFER,
    S.ENROLLED.value: STEP_ENROLLMENT,
}


def _effects(current: str, requested: str, actor: Actor, payload: Payload) -> List[str]:
    effects = []
    if current == S.DRAFT.value and requested == S.SUBMITTED.value:
        effects.append("create_steps")
    if current in (S.UNDER_REVIEW.value, S.DOCUMENTS_PENDING.value) and requested in _REVIEW_EXITS - {S.DOCUMENTS_PENDING.value}:
        effects.append(f"complete_step:{STEP_DOCUMENT_VERIFICATION}")
    step = _STEP_ON_ENTER.get(requested)
    if step and current not in HOLD_STATES:
        effects.append(f"complete_step:{step}")
    effects.append("recompute_completion")
    if requested == S.OFFER_ACCEPTED.value:
        effects.append(f"auto_advance:{S.ENROLLED.value}")
    if (
        requested == S.PENDING_APPROVAL.value
        and payload.get("pathway") == EnrollmentPathway.SIBLING_AUTOMATIC.value
        and payload.get("auto_approve_siblings")
    ):
        effects.append(f"auto_advance:{S.APPROVED.value}")
    return effects


MACHINE = StateMachine("enrollment application", GRAPH, guard=_guard, effects=_effects)


def apply(current: str, requested: str, actor: Actor, payload: Optional[Payload] = None) -> TransitionResult:
    """
    Validate an enrollment status change.

    Off-graph moves are legal only through an approved status override
    (payload["status_override"] == "approved"); a pending one rejects with
    pending_override_approval.
    """
    payload = payload or {}
    if requested in GRAPH.states and not MACHINE.is_edge(current, requested):
        override_state = payload.get("status_override")
        if override_state == "approved":
            return TransitionResult.accept(requested, ["override_applied", "recompute_completion"])
        if override_state == "pending":
            return TransitionResult.reject(
                PENDING_OVERRIDE_APPROVAL,
                "A status override for this change is awaiting approval",
            )
    return MACHINE.apply(current, requested, actor, payload)


def hold_origin(current: str, requested: str, held_from_status: Optional[str]) -> Optional[str]:
    """held_from_status after the move: set on entering a hold, kept between holds, cleared on resume."""
    if requested in HOLD_STATES:
        return held_from_status if current in HOLD_STATES else current
    return None
