import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest


@pytest.fixture()
async def finance(factory):
    school = await factory.school()
    await factory.grant("bursar", "financial_data", ["read", "write", "approve"])
    cashier = await factory.user(school, "bursar")
    supervisor = await factory.user(school, "bursar")
    return school, cashier, supervisor


async def _fee(client, auth, student_id, amount="100.00"):
    response = await client.post(
        "/api/v1/fees/outstanding",
        json={
            "student_id": str(student_id),
            "student_name": "Alan Turing",
            "fee_type": "tuition",
            "due_date": (date.today() + timedelta(days=30)).isoformat(),
            "amount": amount,
        },
        headers=auth,
    )
    assert response.status_code == 201
    return response.json()


async def test_payment_replay_returns_original_receipt(client, headers, finance):
    school, cashier, _ = finance
    auth = headers(cashier, school)
    student = uuid.uuid4()
    fee = await _fee(client, auth, student)
    session = (await client.post("/api/v1/fees/sessions", json={"opening_cash_amount": "50.00"}, headers=auth)).json()
    payment = {
        "receipt_number": "RCP-TEST-0001",
        "student_id": str(student),
        "outstanding_fee_id": fee["id"],
        "collection_session_id": session["id"],
        "amount": "40.00",
        "payment_method": "cash",
    }

    first = await client.post("/api/v1/fees/payments", json=payment, headers=auth)
    assert first.status_code == 201
    again = await client.post("/api/v1/fees/payments", json=payment, headers=auth)
    assert again.status_code == 200
    assert again.json()["id"] == first.json()["id"]

    fees = (await client.get("/api/v1/fees/outstanding", params={"student_id": str(student)}, headers=auth)).json()
    assert Decimal(fees[0]["paid_amount"]) == Decimal("40")
    assert Decimal(fees[0]["outstanding_amount"]) == Decimal("60")
    assert fees[0]["status"] == "partial"

    till = (await client.get(f"/api/v1/fees/sessions/{session['id']}", headers=auth)).json()
    assert Decimal(till["expected_cash_amount"]) == Decimal("90")


async def test_receipt_replay_by_a_clerk_without_read_access_is_refused(client, factory, headers, finance):
    school, cashier, _ = finance
    await factory.grant("clerk", "financial_data", ["write"])
    clerk = await factory.user(school, "clerk")
    student = uuid.uuid4()
    fee = await _fee(client, headers(cashier, school), student)
    payment = {
        "receipt_number": "RCP-TEST-0002",
        "student_id": str(student),
        "outstanding_fee_id": fee["id"],
        "amount": "10.00",
        "payment_method": "card",
    }
    first = await client.post("/api/v1/fees/payments", json=payment, headers=headers(cashier, school))
    assert first.status_code == 201

    replay = await client.post("/api/v1/fees/payments", json=payment, headers=headers(clerk, school))
    assert replay.status_code == 409
    assert replay.json()["detail"]["code"] == "duplicate"
    assert first.json()["id"] not in replay.text

async def test_payment_cannot_exceed_balance(client, headers, finance):
    school, cashier, _ = finance
    auth = headers(cashier, school)
    student = uuid.uuid4()
    fee = await _fee(client, auth, student, amount="25.00")

    response = await client.post(
        "/api/v1/fees/payments",
        json={"student_id": str(student), "outstanding_fee_id": fee["id"], "amount": "30.00", "payment_method": "card"},
        headers=auth,
    )
    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "amount"


async def test_cashier_cannot_approve_own_session(client, headers, finance):
    school, cashier, supervisor = finance
    auth = headers(cashier, school)
    session = (await client.post("/api/v1/fees/sessions", json={"opening_cash_amount": "20.00"}, headers=auth)).json()

    closed = await client.post(
        f"/api/v1/fees/sessions/{session['id']}/close",
        json={"closing_cash_amount": "18.50", "expected_version": session["version"]},
        headers=auth,
    )
    assert closed.status_code == 200
    assert closed.json()["status"] == "closed"
    assert Decimal(closed.json()["variance_amount"]) == Decimal("-1.50")

    own = await client.post(
        f"/api/v1/fees/sessions/{session['id']}/approve",
        json={"expected_version": closed.json()["version"]},
        headers=auth,
    )
    assert own.status_code == 403
    assert own.json()["detail"]["code"] == "self_approval_forbidden"

    approved = await client.post(
        f"/api/v1/fees/sessions/{session['id']}/approve",
        json={"expected_version": closed.json()["version"], "notes": "Short change counted"},
        headers=headers(supervisor, school),
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["supervisor_approved_by"] == str(supervisor.id)


async def test_one_active_session_per_cashier(client, headers, finance):
    school, cashier, _ = finance
    auth = headers(cashier, school)
    assert (await client.post("/api/v1/fees/sessions", json={}, headers=auth)).status_code == 201

    second = await client.post("/api/v1/fees/sessions", json={}, headers=auth)
    assert second.status_code == 409
    assert second.json()["detail"]["code"] == "duplicate"


async def test_payment_on_someone_elses_session_is_denied(client, headers, finance):
    school, cashier, supervisor = finance
    session = (await client.post("/api/v1/fees/sessions", json={}, headers=headers(cashier, school))).json()

    response = await client.post(
        "/api/v1/fees/payments",
        json={"student_id": str(uuid.uuid4()), "collection_session_id": session["id"], "amount": "5.00"},
        headers=headers(supervisor, school),
    )
    assert response.status_code == 403


async def test_plan_completes_once_every_installment_settles(client, headers, finance):
    school, cashier, supervisor = finance
    auth = headers(cashier, school)
    plan = await client.post(
        "/api/v1/fees/installment-plans",
        json={
            "name": "Autumn term",
            "total_amount": "100.00",
            "number_of_installments": 2,
            "frequency": "monthly",
            "start_date": (date.today() + timedelta(days=10)).isoformat(),
        },
        headers=auth,
    )
    assert plan.status_code == 201
    first, second = plan.json()["schedules"]
    assert Decimal(first["amount"]) + Decimal(second["amount"]) == Decimal("100")

    paid = await client.post(
        "/api/v1/fees/payments",
        json={
            "student_id": str(uuid.uuid4()),
            "installment_schedule_id": first["id"],
            "amount": first["amount"],
            "payment_method": "bank_transfer",
        },
        headers=auth,
    )
    assert paid.status_code == 201
    current = (await client.get(f"/api/v1/fees/installment-plans/{plan.json()['id']}", headers=auth)).json()
    assert current["status"] == "active"
    assert current["schedules"][0]["status"] == "paid"

    waived = await client.post(
        f"/api/v1/fees/installments/{second['id']}/waive",
        json={"reason": "Hardship fund"},
        headers=headers(supervisor, school),
    )
    assert waived.status_code == 200
    assert waived.json()["status"] == "completed"
    assert [s["status"] for s in waived.json()["schedules"]] == ["paid", "waived"]
