from typing import Optional

from app.core.enums import PermissionType, RecordStatus as R
from app.core.workflows.base import Actor, Payload, StateMachine, TransitionGraph, TransitionResult, require_fields, unauthorized


GRAPH = TransitionGraph.build(
    {
        R.OPEN.value: {R.IN_PROGRESS.value, R.ESCALATED.value},
        R.IN_PROGRESS.value: {R.ESCALATED.value, R.RESOLVED.value},
        R.ESCALATED.value: {R.IN_PROGRESS.value, R.RESOLVED.value},
        R.RESOLVED.value: {R.CLOSED.value, R.IN_PROGRESS.value},
    },
    terminal={R.CLOSED.value},
)


def _guard(current: str, requested: str, actor: Actor, payload: Payload) -> Optional[TransitionResult]:
    if requested == R.ESCALATED.value:
        if not actor.can(PermissionType.ESCALATE.value):
            return unauthorized("Escalate permission on safeguarding_logs is required")
        return None
    if not actor.can(PermissionType.WRITE.value):
        return unauthorized("Write permission on safeguarding_logs is required")
    if requested == R.RESOLVED.value:
        return require_fields(payload, "outcome")
    return None


def _effects(current: str, requested: str, actor: Actor, payload: Payload):
    if requested == R.CLOSED.value:
        yield "set_closed_at"
    if current == R.RESOLVED.value and requested == R.IN_PROGRESS.value:
        yield "clear_outcome"


MACHINE = StateMachine("safeguarding concern", GRAPH, guard=_guard, effects=_effects)
