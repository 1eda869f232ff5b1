import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.api.v1.fees.service import _add_months, split_installments
from app.core import reconciliation
from app.core.exceptions import ConsistencyError
from app.core.workflows import library


def payment(amount, status="completed", method="cash"):
    return SimpleNamespace(amount=Decimal(amount), status=status, payment_method=method)


def log(student, action):
    return SimpleNamespace(student_id=student, action_type=action)


def test_available_copies_counts_issued_and_reserved():
    assert reconciliation.available_copies(3, ["issued", "available", "issued"]) == 1
    assert reconciliation.available_copies(3, ["reserved", "repair", "available"]) == 2


def test_available_copies_is_idempotent_and_never_negative():
    statuses = ["issued", "issued", "available"]
    first = reconciliation.available_copies(3, statuses)
    assert reconciliation.available_copies(3, statuses) == first
    assert reconciliation.available_copies(1, ["issued", "issued"]) == 0


def test_overdue_state_respects_grace_period():
    state = reconciliation.circulation_overdue("issued", date(2024, 3, 1), date(2024, 3, 6), grace_period_days=2)
    assert state.is_overdue and state.overdue_days == 3
    assert not reconciliation.circulation_overdue("returned", date(2024, 3, 1), date(2024, 3, 6)).is_overdue
    assert reconciliation.circulation_overdue("issued", date(2024, 3, 10), date(2024, 3, 6)).overdue_days == 0


def test_member_projections():
    assert reconciliation.member_current_borrowed(["issued", "returned", "issued", "lost"]) == 2
    fines = [
        SimpleNamespace(status="pending", balance=Decimal("2.50")),
        SimpleNamespace(status="partially_paid", balance=Decimal("1.00")),
        SimpleNamespace(status="paid", balance=Decimal("0")),
        SimpleNamespace(status="waived", balance=Decimal("4.00")),
    ]
    assert reconciliation.member_fines_pending(fines) == Decimal("3.50")


def test_fee_balance_ignores_refunded_payments():
    balance = reconciliation.fee_balance(
        Decimal("100"),
        [payment("30"), payment("50", status="refunded")],
        due_date=date(2024, 9, 1),
        as_of=date(2024, 8, 1),
    )
    assert balance.paid_amount == Decimal("30")
    assert balance.outstanding_amount == Decimal("70")
    assert balance.status == "partial"


def test_fee_balance_refuses_overpayment():
    with pytest.raises(ConsistencyError):
        reconciliation.fee_balance(Decimal("100"), [payment("60"), payment("50")], date(2024, 9, 1), date(2024, 8, 1))


def test_fee_status_derivation():
    due = date(2024, 9, 1)
    assert reconciliation.fee_balance(Decimal("100"), [], due, date(2024, 8, 1)).status == "pending"
    assert reconciliation.fee_balance(Decimal("100"), [], due, date(2024, 9, 2)).status == "overdue"
    assert reconciliation.fee_balance(Decimal("100"), [payment("100")], due, date(2024, 9, 2)).status == "paid"


def test_installment_plan_completes_only_when_every_schedule_settles():
    assert reconciliation.installment_plan_status("active", ["paid", "waived", "paid"]) == "completed"
    assert reconciliation.installment_plan_status("active", ["paid", "pending"]) == "active"
    assert reconciliation.installment_plan_status("active", ["paid", "overdue"]) == "active"
    assert reconciliation.installment_plan_status("cancelled", ["paid"]) == "cancelled"


def test_installment_goes_overdue_after_due_date():
    assert reconciliation.installment_status("pending", date(2024, 1, 31), date(2024, 2, 1)) == "overdue"
    assert reconciliation.installment_status("paid", date(2024, 1, 31), date(2024, 2, 1)) == "paid"


def test_session_expected_cash_counts_completed_cash_only():
    payments = [payment("20"), payment("15", method="card"), payment("5", status="refunded")]
    assert reconciliation.session_expected_cash(Decimal("50"), payments) == Decimal("70")


def test_trip_headcount_flags_more_boarders_than_expected():
    a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    logs = [log(a, "board"), log(b, "board"), log(c, "board"), log(a, "board")]
    headcount = reconciliation.trip_headcount(logs, expected=2, trip_completed=False)
    assert headcount.boarded == 3
    assert headcount.mismatch
    assert "expected" in headcount.reason


def test_trip_headcount_compares_drop_offs_once_completed():
    a, b = uuid.uuid4(), uuid.uuid4()
    logs = [log(a, "board"), log(b, "board"), log(a, "alight")]
    assert not reconciliation.trip_headcount(logs, expected=2, trip_completed=False).mismatch
    assert reconciliation.trip_headcount(logs, expected=2, trip_completed=True).mismatch
    assert not reconciliation.trip_headcount(logs, expected=2, trip_completed=True, tolerance=1).mismatch


def test_trip_headcount_counts_against_an_empty_manifest():
    headcount = reconciliation.trip_headcount([log(uuid.uuid4(), "board")], expected=0, trip_completed=False)
    assert headcount.mismatch
    assert headcount.reason == "1 boarded but 0 expected"


def test_trip_headcount_flags_more_drop_offs_than_expected():
    a, b = uuid.uuid4(), uuid.uuid4()
    logs = [log(a, "board"), log(a, "alight"), log(b, "alight")]
    headcount = reconciliation.trip_headcount(logs, expected=1, trip_completed=False)
    assert headcount.dropped == 2
    assert headcount.mismatch
    assert "2 dropped but 1 expected" in headcount.reason


def test_trip_headcount_tolerates_small_overages():
    a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    logs = [log(a, "board"), log(b, "board"), log(c, "board")]
    assert not reconciliation.trip_headcount(logs, expected=2, trip_completed=False, tolerance=1).mismatch
    assert reconciliation.trip_headcount(logs, expected=1, trip_completed=False, tolerance=1).mismatch


def test_loan_arithmetic():
    assert library.overdue_fine(4, Decimal("0.50")) == Decimal("2.00")
    assert library.renewed_due_date(date(2024, 5, 1), date(2024, 5, 10), 14) == date(2024, 5, 24)
    assert library.fine_status_after_payment(Decimal("0")) == "paid"
    assert library.fine_status_after_payment(Decimal("1")) == "partially_paid"


def test_installment_split_puts_remainder_on_last():
    amounts = split_installments(Decimal("100.00"), 3)
    assert amounts == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum(amounts) == Decimal("100.00")


def test_add_months_clamps_to_month_end():
    assert _add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert _add_months(date(2024, 11, 15), 4) == date(2025, 3, 15)
