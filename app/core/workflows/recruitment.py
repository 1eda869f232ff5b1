from typing import Optional

from app.core.enums import PermissionType, RecruitmentStatus as R
from app.core.workflows.base import Actor, Payload, StateMachine, TransitionGraph, TransitionResult, require_fields, unauthorized


GRAPH = TransitionGraph.build(
    {
        R.SUBMITTED.value: {R.SCREENING.value},
        R.SCREENING.value: {R.INTERVIEW.value},
        R.INTERVIEW.value: {R.ASSESSMENT.value, R.OFFER.value},
        R.ASSESSMENT.value: {R.OFFER.value},
        R.OFFER.value: {R.HIRED.value},
    },
    terminal={R.HIRED.value, R.REJECTED.value, R.WITHDRAWN.value},
    escapes={R.REJECTED.value, R.WITHDRAWN.value},
)


def _guard(current: str, requested: str, actor: Actor, payload: Payload) -> Optional[TransitionResult]:
    needed = PermissionType.APPROVE.value if requested in (R.OFFER.value, R.HIRED.value) else PermissionType.WRITE.value
    if not actor.can(needed) and not (requested == R.WITHDRAWN.value and actor.is_owner):
        return unauthorized(f"'{needed}' permission on staff_management is required")
    if requested == R.REJECTED.value:
        return require_fields(payload, "rejection_reason")
    return None


MACHINE = StateMachine("job application", GRAPH, guard=_guard)
