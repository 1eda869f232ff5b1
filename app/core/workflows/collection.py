"""Cashier collection session lifecycle."""

from decimal import Decimal
from typing import Optional

from app.core.enums import CollectionSessionStatus as CS, PermissionType
from app.core.workflows.base import Actor, Payload, StateMachine, TransitionGraph, TransitionResult, require_fields, unauthorized


GRAPH = TransitionGraph.build(
    {
        CS.ACTIVE.value: {CS.CLOSED.value},
        CS.CLOSED.value: {CS.RECONCILED.value, CS.APPROVED.value},
        CS.RECONCILED.value: {CS.APPROVED.value},
    },
    terminal={CS.APPROVED.value},
)


def _guard(current: str, requested: str, actor: Actor, payload: Payload) -> Optional[TransitionResult]:
    if requested == CS.CLOSED.value:
        if not (actor.is_owner or actor.can(PermissionType.APPROVE.value)):
            return unauthorized("Only the session's cashier or a supervisor may close it")
        return require_fields(payload, "closing_cash_amount")
    if not actor.can(PermissionType.APPROVE.value):
        return unauthorized("Approve permission on financial_data is required")
    # Supervisor sign-off must come from someone other than the cashier
    if requested == CS.APPROVED.value and actor.is_owner:
        return unauthorized("The cashier cannot approve their own session")
    return None


MACHINE = StateMachine("collection session", GRAPH, guard=_guard)


def variance(closing_cash: Decimal, expected_cash: Decimal) -> Decimal:
    return Decimal(closing_cash) - Decimal(expected_cash)
