import uuid

import pytest


@pytest.fixture()
async def hiring(factory):
    school = await factory.school()
    await factory.grant("hr_manager", "staff_management", ["read", "write", "approve"])
    await factory.grant("hr_officer", "staff_management", ["read", "write"])
    return school, await factory.user(school, "hr_manager"), await factory.user(school, "hr_officer")


async def _apply(client, auth, email="candidate@example.com"):
    response = await client.post(
        "/api/v1/recruitment/applications",
        json={"job_posting_id": str(uuid.uuid4()), "applicant_name": "Katherine Johnson", "applicant_email": email},
        headers=auth,
    )
    assert response.status_code == 201
    return response.json()


async def _move(client, auth, application, status, **extra):
    return await client.post(
        f"/api/v1/recruitment/applications/{application['id']}/transition",
        json={"status": status, "expected_version": application["version"], **extra},
        headers=auth,
    )


async def test_offer_needs_approve(client, headers, hiring):
    school, manager, officer = hiring
    application = await _apply(client, headers(officer, school))
    assert application["application_status"] == "submitted"
    assert application["allowed_transitions"] == ["rejected", "screening", "withdrawn"]

    for status in ("screening", "interview"):
        response = await _move(client, headers(officer, school), application, status)
        assert response.status_code == 200
        application = response.json()

    denied = await _move(client, headers(officer, school), application, "offer")
    assert denied.status_code == 409
    assert denied.json()["detail"]["code"] == "unauthorized_actor"

    offered = await _move(client, headers(manager, school), application, "offer")
    assert offered.status_code == 200
    assert offered.json()["last_transition_by"] == str(manager.id)


async def test_rejection_records_reason(client, headers, hiring):
    school, _, officer = hiring
    auth = headers(officer, school)
    application = await _apply(client, auth)

    missing = await _move(client, auth, application, "rejected")
    assert missing.status_code == 409
    assert missing.json()["detail"]["field"] == "rejection_reason"

    rejected = await _move(client, auth, application, "rejected", rejection_reason="Role requires QTS")
    assert rejected.status_code == 200
    assert rejected.json()["rejection_reason"] == "Role requires QTS"
    assert rejected.json()["allowed_transitions"] == []


async def test_candidate_may_withdraw_own_application(client, factory, headers, hiring):
    school, _, officer = hiring
    candidate = await factory.user(school, "applicant", email="Candidate@Example.com")
    application = await _apply(client, headers(officer, school))

    response = await _move(client, headers(candidate, school), application, "withdrawn")
    assert response.status_code == 200
    assert response.json()["application_status"] == "withdrawn"


async def test_stale_version_conflicts(client, headers, hiring):
    school, _, officer = hiring
    auth = headers(officer, school)
    application = await _apply(client, auth)
    moved = (await _move(client, auth, application, "screening")).json()
    assert moved["version"] != application["version"]

    stale = await _move(client, auth, application, "interview")
    assert stale.status_code == 409
    assert stale.json()["detail"]["code"] == "stale_version"
