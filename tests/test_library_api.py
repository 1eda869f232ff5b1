import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.core.models import LibraryCirculation


@pytest.fixture()
async def librarian(factory):
    school = await factory.school()
    await factory.grant("librarian", "students", ["read", "write", "approve"])
    return school, await factory.user(school, "librarian")


async def _member(client, auth):
    response = await client.post(
        "/api/v1/library/members",
        json={"member_type": "student", "full_name": "Grace Hopper", "student_id": str(uuid.uuid4())},
        headers=auth,
    )
    assert response.status_code == 201
    return response.json()


async def test_issue_and_return_keep_available_copies_in_step(client, headers, librarian):
    school, user = librarian
    auth = headers(user, school)

    title = await client.post("/api/v1/library/titles", json={"title": "Dune", "copies": 3}, headers=auth)
    assert title.status_code == 201
    assert title.json()["total_copies"] == 3
    assert title.json()["available_copies"] == 3
    title_id = title.json()["id"]

    copies = (await client.get(f"/api/v1/library/titles/{title_id}/copies", headers=auth)).json()
    assert sorted(c["copy_number"] for c in copies) == [1, 2, 3]
    member = await _member(client, auth)

    issued = await client.post(
        "/api/v1/library/circulation/issue",
        json={"copy_id": copies[0]["id"], "member_id": member["id"]},
        headers=auth,
    )
    assert issued.status_code == 201
    assert issued.json()["status"] == "issued"

    after_issue = (await client.get(f"/api/v1/library/titles/{title_id}", headers=auth)).json()
    assert after_issue["available_copies"] == 2

    again = await client.post(
        "/api/v1/library/circulation/issue",
        json={"copy_id": copies[0]["id"], "member_id": member["id"]},
        headers=auth,
    )
    assert again.status_code == 409

    returned = await client.post(f"/api/v1/library/circulation/{issued.json()['id']}/return", json={}, headers=auth)
    assert returned.status_code == 200
    assert returned.json()["status"] == "returned"
    after_return = (await client.get(f"/api/v1/library/titles/{title_id}", headers=auth)).json()
    assert after_return["available_copies"] == 3


async def test_reference_copies_cannot_be_issued(client, headers, librarian):
    school, user = librarian
    auth = headers(user, school)
    title = (
        await client.post(
            "/api/v1/library/titles",
            json={"title": "Oxford English Dictionary", "book_type": "reference", "copies": 1},
            headers=auth,
        )
    ).json()
    copy = (await client.get(f"/api/v1/library/titles/{title['id']}/copies", headers=auth)).json()[0]
    member = await _member(client, auth)

    response = await client.post(
        "/api/v1/library/circulation/issue",
        json={"copy_id": copy["id"], "member_id": member["id"]},
        headers=auth,
    )
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "reference_copy"


async def test_student_member_needs_student_id(client, headers, librarian):
    school, user = librarian
    response = await client.post(
        "/api/v1/library/members",
        json={"member_type": "student", "full_name": "No Id"},
        headers=headers(user, school),
    )
    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "student_id"


async def _loan(client, auth):
    title = (await client.post("/api/v1/library/titles", json={"title": "Middlemarch", "copies": 1}, headers=auth)).json()
    copy = (await client.get(f"/api/v1/library/titles/{title['id']}/copies", headers=auth)).json()[0]
    member = await _member(client, auth)
    issued = await client.post(
        "/api/v1/library/circulation/issue",
        json={"copy_id": copy["id"], "member_id": member["id"]},
        headers=auth,
    )
    assert issued.status_code == 201
    return issued.json(), member


async def test_late_return_raises_a_fine_that_can_be_paid_down_and_waived(client, db_session, headers, librarian):
    school, user = librarian
    auth = headers(user, school)
    policy = await client.patch(
        "/api/v1/library/settings",
        json={"student_fine_per_day": "0.50", "grace_period_days": 1},
        headers=auth,
    )
    assert policy.status_code == 200
    loan, member = await _loan(client, auth)

    circulation = await db_session.get(LibraryCirculation, uuid.UUID(loan["id"]))
    circulation.due_date = date.today() - timedelta(days=5)
    await db_session.commit()

    returned = await client.post(f"/api/v1/library/circulation/{loan['id']}/return", json={}, headers=auth)
    assert returned.status_code == 200
    assert returned.json()["overdue_days"] == 4

    fines = (await client.get("/api/v1/library/fines", params={"member_id": member["id"]}, headers=auth)).json()
    assert len(fines) == 1
    fine = fines[0]
    assert fine["fine_type"] == "overdue"
    assert Decimal(fine["balance"]) == Decimal("2.00")

    too_much = await client.post(f"/api/v1/library/fines/{fine['id']}/pay", json={"amount": "5.00"}, headers=auth)
    assert too_much.status_code == 422
    assert too_much.json()["detail"]["field"] == "amount"

    part = await client.post(f"/api/v1/library/fines/{fine['id']}/pay", json={"amount": "0.50"}, headers=auth)
    assert part.status_code == 200
    assert part.json()["status"] == "partially_paid"
    assert Decimal(part.json()["balance"]) == Decimal("1.50")

    waived = await client.post(f"/api/v1/library/fines/{fine['id']}/waive", json={"reason": "First offence"}, headers=auth)
    assert waived.status_code == 200
    assert waived.json()["status"] == "waived"

    after = await client.post(f"/api/v1/library/fines/{fine['id']}/pay", json={"amount": "0.50"}, headers=auth)
    assert after.status_code == 409


async def test_on_time_return_raises_no_fine(client, headers, librarian):
    school, user = librarian
    auth = headers(user, school)
    loan, member = await _loan(client, auth)

    returned = await client.post(f"/api/v1/library/circulation/{loan['id']}/return", json={}, headers=auth)
    assert returned.json()["overdue_days"] == 0
    assert (await client.get("/api/v1/library/fines", params={"member_id": member["id"]}, headers=auth)).json() == []


async def test_renewals_stop_at_the_member_limit(client, headers, librarian):
    school, user = librarian
    auth = headers(user, school)
    await client.patch("/api/v1/library/settings", json={"student_max_renewals": 1}, headers=auth)
    loan, _ = await _loan(client, auth)

    renewed = await client.post(f"/api/v1/library/circulation/{loan['id']}/renew", headers=auth)
    assert renewed.status_code == 200
    assert renewed.json()["renewal_count"] == 1
    assert renewed.json()["due_date"] > loan["due_date"]

    refused = await client.post(f"/api/v1/library/circulation/{loan['id']}/renew", headers=auth)
    assert refused.status_code == 422
    assert refused.json()["detail"]["code"] == "renewal_limit_reached"
