"""Trip instance lifecycle. Boarding logs are only accepted while a trip is running."""

from typing import Optional

from app.core.enums import PermissionType, TripStatus as T
from app.core.workflows.base import Actor, Payload, StateMachine, TransitionGraph, TransitionResult, require_fields, unauthorized


GRAPH = TransitionGraph.build(
    {
        T.SCHEDULED.value: {T.IN_PROGRESS.value, T.DELAYED.value, T.CANCELLED.value},
        T.DELAYED.value: {T.IN_PROGRESS.value, T.CANCELLED.value, T.COMPLETED.value},
        T.IN_PROGRESS.value: {T.DELAYED.value, T.COMPLETED.value},
    },
    terminal={T.COMPLETED.value, T.CANCELLED.value},
)

RUNNING_STATUSES = frozenset({T.IN_PROGRESS.value, T.DELAYED.value})


def _guard(current: str, requested: str, actor: Actor, payload: Payload) -> Optional[TransitionResult]:
    if not actor.can(PermissionType.WRITE.value):
        return unauthorized("Write permission is required to update trips")
    if requested == T.CANCELLED.value:
        return require_fields(payload, "cancellation_reason")
    if requested == T.DELAYED.value:
        return require_fields(payload, "delay_reason")
    return None


def _effects(current: str, requested: str, actor: Actor, payload: Payload):
    if requested == T.IN_PROGRESS.value and current == T.SCHEDULED.value:
        yield "record_start_time"
    if requested == T.COMPLETED.value:
        yield "record_end_time"
        yield "reconcile_headcount"


MACHINE = StateMachine("trip", GRAPH, guard=_guard, effects=_effects)


def accepts_logs(status: str) -> bool:
    return status in RUNNING_STATUSES
