"""Library copy, circulation and fine lifecycles plus loan arithmetic."""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from app.core.enums import CirculationStatus as C, LibraryBookStatus as B, LibraryFineStatus as F, PermissionType
from app.core.workflows.base import Actor, Payload, StateMachine, TransitionGraph, TransitionResult, unauthorized


COPY_GRAPH = TransitionGraph.build(
    {
        B.PROCESSING.value: {B.AVAILABLE.value},
        B.AVAILABLE.value: {B.ISSUED.value, B.RESERVED.value, B.REPAIR.value, B.LOST.value},
        B.RESERVED.value: {B.ISSUED.value, B.AVAILABLE.value},
        B.ISSUED.value: {B.AVAILABLE.value, B.LOST.value, B.REPAIR.value},
        B.REPAIR.value: {B.AVAILABLE.value},
        B.LOST.value: {B.AVAILABLE.value},
    },
    terminal={B.WITHDRAWN.value},
    escapes={B.WITHDRAWN.value},
)

CIRCULATION_GRAPH = TransitionGraph.build(
    {C.ISSUED.value: {C.RETURNED.value, C.LOST.value}},
    terminal={C.RETURNED.value, C.LOST.value},
)

FINE_GRAPH = TransitionGraph.build(
    {
        F.PENDING.value: {F.PAID.value, F.PARTIALLY_PAID.value, F.WAIVED.value},
        F.PARTIALLY_PAID.value: {F.PAID.value, F.PARTIALLY_PAID.value, F.WAIVED.value},
    },
    terminal={F.PAID.value, F.WAIVED.value},
)

# Copy statuses that count against available_copies
UNAVAILABLE_STATUSES = frozenset({B.ISSUED.value, B.RESERVED.value})


def _staff_guard(current: str, requested: str, actor: Actor, payload: Payload) -> Optional[TransitionResult]:
    if not actor.can(PermissionType.WRITE.value):
        return unauthorized("Write permission is required to change library records")
    return None


def _fine_guard(current: str, requested: str, actor: Actor, payload: Payload) -> Optional[TransitionResult]:
    if requested == F.WAIVED.value and not actor.can(PermissionType.APPROVE.value):
        return unauthorized("Waiving a fine requires approve permission")
    return _staff_guard(current, requested, actor, payload)


COPY_MACHINE = StateMachine("library copy", COPY_GRAPH, guard=_staff_guard)
CIRCULATION_MACHINE = StateMachine("circulation", CIRCULATION_GRAPH, guard=_staff_guard)
FINE_MACHINE = StateMachine("library fine", FINE_GRAPH, guard=_fine_guard)


def overdue_days(due_date: date, as_of: date, grace_period_days: int = 0) -> int:
    """Days past due beyond the grace period, never negative."""
    late = (as_of - due_date).days - grace_period_days
    return max(0, late)


def overdue_fine(days: int, fine_per_day: Decimal) -> Decimal:
    return Decimal(days) * Decimal(fine_per_day)


def renewed_due_date(due_date: date, today: date, loan_days: int) -> date:
    """A renewal extends from the later of today and the current due date."""
    return max(due_date, today) + timedelta(days=loan_days)


def fine_status_after_payment(balance: Decimal) -> str:
    return F.PAID.value if balance <= 0 else F.PARTIALLY_PAID.value
