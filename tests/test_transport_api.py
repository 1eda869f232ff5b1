import uuid
from datetime import date

import pytest


@pytest.fixture()
async def escort(factory):
    school = await factory.school()
    await factory.grant("transport_manager", "students", ["read", "write"])
    return school, await factory.user(school, "transport_manager")


async def _running_trip(client, auth, expected):
    trip = await client.post(
        "/api/v1/transport/trips",
        json={"trip_id": str(uuid.uuid4()), "instance_date": date.today().isoformat(), "total_students_expected": expected},
        headers=auth,
    )
    assert trip.status_code == 201
    started = await client.post(
        f"/api/v1/transport/trips/{trip.json()['id']}/transition",
        json={"status": "in_progress", "expected_version": trip.json()["version"]},
        headers=auth,
    )
    assert started.status_code == 200
    assert started.json()["effects"] == ["record_start_time"]
    return started.json()["trip"]


async def _board(client, auth, trip_id, student_id=None):
    response = await client.post(
        f"/api/v1/transport/trips/{trip_id}/logs",
        json={"student_id": str(student_id or uuid.uuid4()), "action_type": "board"},
        headers=auth,
    )
    assert response.status_code == 201
    return response


async def test_extra_boarder_opens_a_single_headcount_alert(client, headers, escort):
    school, user = escort
    auth = headers(user, school)
    trip = await _running_trip(client, auth, expected=1)

    await _board(client, auth, trip["id"])
    alerts = (await client.get("/api/v1/transport/alerts", headers=auth)).json()
    assert alerts == []

    await _board(client, auth, trip["id"])
    await _board(client, auth, trip["id"])
    alerts = (await client.get("/api/v1/transport/alerts", headers=auth)).json()
    assert len(alerts) == 1
    assert alerts[0]["alert_type"] == "headcount_mismatch"
    assert alerts[0]["details"]["boarded"] == 3

    current = (await client.get(f"/api/v1/transport/trips/{trip['id']}", headers=auth)).json()
    assert current["total_students_boarded"] == 3


async def test_boarding_twice_counts_once(client, headers, escort):
    school, user = escort
    auth = headers(user, school)
    trip = await _running_trip(client, auth, expected=1)
    student = uuid.uuid4()

    await _board(client, auth, trip["id"], student)
    await _board(client, auth, trip["id"], student)

    current = (await client.get(f"/api/v1/transport/trips/{trip['id']}", headers=auth)).json()
    assert current["total_students_boarded"] == 1
    assert (await client.get("/api/v1/transport/alerts", headers=auth)).json() == []


async def test_logs_are_refused_before_the_trip_starts(client, headers, escort):
    school, user = escort
    auth = headers(user, school)
    trip = await client.post(
        "/api/v1/transport/trips",
        json={"trip_id": str(uuid.uuid4()), "instance_date": date.today().isoformat(), "total_students_expected": 1},
        headers=auth,
    )
    response = await client.post(
        f"/api/v1/transport/trips/{trip.json()['id']}/logs",
        json={"student_id": str(uuid.uuid4()), "action_type": "board"},
        headers=auth,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["field"] == "trip_instance_id"


async def test_cancelling_needs_a_reason(client, headers, escort):
    school, user = escort
    auth = headers(user, school)
    trip = (
        await client.post(
            "/api/v1/transport/trips",
            json={"trip_id": str(uuid.uuid4()), "instance_date": date.today().isoformat()},
            headers=auth,
        )
    ).json()
    response = await client.post(
        f"/api/v1/transport/trips/{trip['id']}/transition",
        json={"status": "cancelled", "expected_version": trip["version"]},
        headers=auth,
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "missing_required_field"
