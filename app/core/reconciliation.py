"""
Pure cross-entity consistency rules.

Each function derives a projection from its source rows; it never reads the
projection it replaces, so running it twice yields the same answer.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Set

from app.core.enums import (
    CirculationStatus,
    FeeStatus,
    InstallmentPlanStatus,
    InstallmentStatus,
    LibraryFineStatus,
    PaymentStatus,
)
from app.core.exceptions import ConsistencyError
from app.core.workflows.library import UNAVAILABLE_STATUSES, overdue_days

ZERO = Decimal("0")


# ----- Library -----

def available_copies(total_copies: int, copy_statuses: Iterable[str]) -> int:
    """total_copies minus copies issued or reserved, never negative."""
    unavailable = sum(1 for s in copy_statuses if s in UNAVAILABLE_STATUSES)
    return max(0, total_copies - unavailable)


@dataclass(frozen=True)
class OverdueState:
    is_overdue: bool
    overdue_days: int


def circulation_overdue(status: str, due_date: date, as_of: date, grace_period_days: int = 0) -> OverdueState:
    if status != CirculationStatus.ISSUED.value:
        return OverdueState(False, 0)
    days = overdue_days(due_date, as_of, grace_period_days)
    return OverdueState(days > 0, days)


def member_current_borrowed(circulation_statuses: Iterable[str]) -> int:
    return sum(1 for s in circulation_statuses if s == CirculationStatus.ISSUED.value)


def member_fines_pending(fines: Iterable[Any]) -> Decimal:
    """Sum of balances on fines still owed (pending or partially paid)."""
    owed = (LibraryFineStatus.PENDING.value, LibraryFineStatus.PARTIALLY_PAID.value)
    return sum((Decimal(f.balance) for f in fines if f.status in owed), ZERO)


# ----- Finance -----

@dataclass(frozen=True)
class FeeBalance:
    paid_amount: Decimal
    outstanding_amount: Decimal
    status: str


def fee_balance(original_amount: Decimal, payments: Iterable[Any], due_date: date, as_of: date) -> FeeBalance:
    """
    outstanding = original - sum(completed payments). Status is derived:
    paid when nothing is owed, overdue past due date, partial when something was paid.
    """
    paid = sum(
        (Decimal(p.amount) for p in payments if p.status == PaymentStatus.COMPLETED.value),
        ZERO,
    )
    original = Decimal(original_amount)
    if paid > original:
        raise ConsistencyError(f"Completed payments {paid} exceed the fee amount {original}")
    outstanding = max(ZERO, original - paid)
    if outstanding == ZERO:
        status = FeeStatus.PAID.value
    elif due_date < as_of:
        status = FeeStatus.OVERDUE.value
    elif paid > ZERO:
        status = FeeStatus.PARTIAL.value
    else:
        status = FeeStatus.PENDING.value
    return FeeBalance(paid_amount=paid, outstanding_amount=outstanding, status=status)


def installment_plan_status(current_status: str, schedule_statuses: Iterable[str]) -> str:
    """completed only when every installment is paid or waived; a cancelled plan stays cancelled."""
    if current_status == InstallmentPlanStatus.CANCELLED.value:
        return current_status
    statuses = list(schedule_statuses)
    settled = (InstallmentStatus.PAID.value, InstallmentStatus.WAIVED.value)
    if statuses and all(s in settled for s in statuses):
        return InstallmentPlanStatus.COMPLETED.value
    return InstallmentPlanStatus.ACTIVE.value


def installment_status(current_status: str, due_date: date, as_of: date) -> str:
    if current_status == InstallmentStatus.PENDING.value and due_date < as_of:
        return InstallmentStatus.OVERDUE.value
    return current_status


def session_expected_cash(opening_cash: Decimal, payments: Iterable[Any]) -> Decimal:
    cash = sum(
        (
            Decimal(p.amount)
            for p in payments
            if p.payment_method == "cash" and p.status == PaymentStatus.COMPLETED.value
        ),
        ZERO,
    )
    return Decimal(opening_cash) + cash


# ----- Transport -----

@dataclass(frozen=True)
class Headcount:
    boarded: int
    dropped: int
    expected: int
    mismatch: bool
    reason: Optional[str] = None


def trip_headcount(logs: Iterable[Any], expected: int, trip_completed: bool, tolerance: int = 0) -> Headcount:
    """
    boarded / dropped are distinct students with a board / alight log.
    A mismatch is more boarders or more drop-offs than expected (beyond tolerance),
    or, once the trip has completed, a boarded-vs-dropped gap above tolerance.
    An expected count of zero is still a count: any boarder beyond tolerance is flagged.
    """
    boarded: Set[Any] = set()
    dropped: Set[Any] = set()
    for log in logs:
        if log.action_type == "board":
            boarded.add(log.student_id)
        elif log.action_type == "alight":
            dropped.add(log.student_id)

    reasons: List[str] = []
    if len(boarded) - expected > tolerance:
        reasons.append(f"{len(boarded)} boarded but {expected} expected")
    if len(dropped) - expected > tolerance:
        reasons.append(f"{len(dropped)} dropped but {expected} expected")
    if trip_completed and abs(len(boarded) - len(dropped)) > tolerance:
        reasons.append(f"{len(boarded)} boarded but {len(dropped)} dropped")
    return Headcount(
        boarded=len(boarded),
        dropped=len(dropped),
        expected=expected,
        mismatch=bool(reasons),
        reason="; ".join(reasons) or None,
    )
