import uuid

import pytest
from sqlalchemy import select

from app.core.models import AuditLog


APPLICATION = {
    "application_number": "APP-2025-0001",
    "student_name": "Ada Lovelace",
    "year_group": "Year 7",
    "parent_name": "Anne Lovelace",
    "parent_email": "anne@example.com",
    "submit": True,
}


@pytest.fixture()
async def school(factory):
    school = await factory.school()
    await factory.grant("school_admin", "admissions", ["read", "write", "approve"])
    return school


async def test_resubmitting_application_number_returns_original(client, factory, headers, school):
    parent = await factory.user(school, "parent")

    first = await client.post("/api/v1/admissions/applications", json=APPLICATION, headers=headers(parent, school))
    assert first.status_code == 201
    assert first.json()["status"] == "submitted"
    assert first.json()["submitted_by"] == str(parent.id)

    again = await client.post("/api/v1/admissions/applications", json=APPLICATION, headers=headers(parent, school))
    assert again.status_code == 200
    assert again.json()["id"] == first.json()["id"]


async def test_transition_with_stale_version_is_rejected(client, factory, headers, school):
    parent = await factory.user(school, "parent")
    admin = await factory.user(school, "school_admin")
    created = (
        await client.post("/api/v1/admissions/applications", json=APPLICATION, headers=headers(parent, school))
    ).json()
    url = f"/api/v1/admissions/applications/{created['id']}/transition"

    moved = await client.post(
        url,
        json={"status": "under_review", "expected_version": created["version"]},
        headers=headers(admin, school),
    )
    assert moved.status_code == 200
    body = moved.json()
    assert body["application"]["status"] == "under_review"
    assert body["application"]["version"] > created["version"]

    stale = await client.post(
        url,
        json={"status": "on_hold", "expected_version": created["version"]},
        headers=headers(admin, school),
    )
    assert stale.status_code == 409
    assert stale.json()["detail"]["code"] == "stale_version"


async def test_parent_cannot_review_own_application(client, factory, headers, school):
    parent = await factory.user(school, "parent")
    created = (
        await client.post("/api/v1/admissions/applications", json=APPLICATION, headers=headers(parent, school))
    ).json()

    response = await client.post(
        f"/api/v1/admissions/applications/{created['id']}/transition",
        json={"status": "under_review", "expected_version": created["version"]},
        headers=headers(parent, school),
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "unauthorized_actor"


async def test_unknown_status_is_reported_as_invalid_enum(client, factory, headers, school):
    parent = await factory.user(school, "parent")
    admin = await factory.user(school, "school_admin")
    created = (
        await client.post("/api/v1/admissions/applications", json=APPLICATION, headers=headers(parent, school))
    ).json()

    response = await client.post(
        f"/api/v1/admissions/applications/{created['id']}/transition",
        json={"status": "graduated", "expected_version": created["version"]},
        headers=headers(admin, school),
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "invalid_enum_value"


async def test_override_needs_a_second_approver(client, factory, headers, school):
    parent = await factory.user(school, "parent")
    requester = await factory.user(school, "school_admin")
    approver = await factory.user(school, "school_admin")
    created = (
        await client.post("/api/v1/admissions/applications", json=APPLICATION, headers=headers(parent, school))
    ).json()

    override = await client.post(
        f"/api/v1/admissions/applications/{created['id']}/overrides",
        json={
            "field_name": "priority_score",
            "override_value": "5",
            "override_type": "policy_exception",
            "reason": "Looked-after child priority",
        },
        headers=headers(requester, school),
    )
    assert override.status_code == 201
    override_id = override.json()["id"]

    own = await client.post(f"/api/v1/admissions/overrides/{override_id}/approve", headers=headers(requester, school))
    assert own.status_code == 403
    assert own.json()["detail"]["code"] == "self_approval_forbidden"

    approved = await client.post(f"/api/v1/admissions/overrides/{override_id}/approve", headers=headers(approver, school))
    assert approved.status_code == 200
    assert approved.json()["approved_by"] == str(approver.id)

    application = await client.get(f"/api/v1/admissions/applications/{created['id']}", headers=headers(approver, school))
    assert application.json()["priority_score"] == 5


async def test_unknown_school_is_not_found(client, factory, headers):
    school = await factory.school()
    user = await factory.user(school, "parent")

    response = await client.get(
        "/api/v1/admissions/applications",
        headers={**headers(user), "X-School-Id": "00000000-0000-0000-0000-000000000000"},
    )
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "unknown_tenant"


async def _move(client, auth, application, status):
    response = await client.post(
        f"/api/v1/admissions/applications/{application['id']}/transition",
        json={"status": status, "expected_version": application["version"]},
        headers=auth,
    )
    assert response.status_code == 200, response.json()
    return response.json()


async def test_accepted_offer_enrolls_automatically(client, db_session, factory, headers, school):
    parent = await factory.user(school, "parent")
    admin = await factory.user(school, "school_admin")
    application = (
        await client.post(
            "/api/v1/admissions/applications",
            json={**APPLICATION, "pathway": "internal_progression"},
            headers=headers(parent, school),
        )
    ).json()

    for status in ("under_review", "pending_approval", "approved", "offer_sent"):
        application = (await _move(client, headers(admin, school), application, status))["application"]
    assert application["workflow_completion_percentage"] < 100

    accepted = await _move(client, headers(parent, school), application, "offer_accepted")
    assert accepted["application"]["status"] == "enrolled"
    assert accepted["application"]["workflow_completion_percentage"] == 100
    assert "auto_advance:enrolled" in accepted["effects"]

    rows = (
        await db_session.execute(
            select(AuditLog).where(
                AuditLog.resource_id == uuid.UUID(application["id"]),
                AuditLog.action == "status_changed",
            )
        )
    ).scalars().all()
    enrolled = [r for r in rows if r.new_values["status"] == "enrolled"]
    assert len(enrolled) == 1
    assert enrolled[0].user_id == parent.id


async def test_replay_by_another_family_reveals_nothing(client, factory, headers, school):
    first_parent = await factory.user(school, "parent")
    other_parent = await factory.user(school, "parent")
    admin = await factory.user(school, "school_admin")
    original = await client.post(
        "/api/v1/admissions/applications",
        json={**APPLICATION, "medical_information": "epilepsy"},
        headers=headers(first_parent, school),
    )
    assert original.status_code == 201

    replay = await client.post(
        "/api/v1/admissions/applications",
        json={**APPLICATION, "student_name": "Someone Else"},
        headers=headers(other_parent, school),
    )
    assert replay.status_code == 409
    assert replay.json()["detail"]["code"] == "duplicate"
    assert "epilepsy" not in replay.text
    assert original.json()["id"] not in replay.text

    # Staff who could read the application anyway get it back
    staff_replay = await client.post("/api/v1/admissions/applications", json=APPLICATION, headers=headers(admin, school))
    assert staff_replay.status_code == 200
    assert staff_replay.json()["id"] == original.json()["id"]


async def test_status_override_always_needs_justification_and_approver(client, factory, headers, school):
    parent = await factory.user(school, "parent")
    requester = await factory.user(school, "school_admin")
    approver = await factory.user(school, "school_admin")
    created = (
        await client.post("/api/v1/admissions/applications", json=APPLICATION, headers=headers(parent, school))
    ).json()
    url = f"/api/v1/admissions/applications/{created['id']}/overrides"
    jump = {
        "field_name": "status",
        "override_value": "enrolled",
        "override_type": "emergency_circumstances",
        "reason": "Emergency placement",
    }

    unapproved = await client.post(
        url, json={**jump, "justification": "Local authority request", "requires_approval": False}, headers=headers(requester, school)
    )
    assert unapproved.status_code == 422
    assert unapproved.json()["detail"]["field"] == "requires_approval"

    unjustified = await client.post(url, json=jump, headers=headers(requester, school))
    assert unjustified.status_code == 422
    assert unjustified.json()["detail"]["field"] == "justification"

    pending = await client.post(url, json={**jump, "justification": "Local authority request"}, headers=headers(requester, school))
    assert pending.status_code == 201
    assert pending.json()["approved_by"] is None
    unchanged = (await client.get(f"/api/v1/admissions/applications/{created['id']}", headers=headers(requester, school))).json()
    assert unchanged["status"] == "submitted"

    approved = await client.post(
        f"/api/v1/admissions/overrides/{pending.json()['id']}/approve", headers=headers(approver, school)
    )
    assert approved.status_code == 200
    moved = (await client.get(f"/api/v1/admissions/applications/{created['id']}", headers=headers(approver, school))).json()
    assert moved["status"] == "enrolled"


async def test_immediate_override_records_its_approver(client, factory, headers, school):
    parent = await factory.user(school, "parent")
    admin = await factory.user(school, "school_admin")
    created = (
        await client.post("/api/v1/admissions/applications", json=APPLICATION, headers=headers(parent, school))
    ).json()

    override = await client.post(
        f"/api/v1/admissions/applications/{created['id']}/overrides",
        json={
            "field_name": "fee_status",
            "override_value": "bursary",
            "override_type": "policy_exception",
            "reason": "Bursary confirmed",
            "requires_approval": False,
        },
        headers=headers(admin, school),
    )
    assert override.status_code == 201
    assert override.json()["approved_by"] == str(admin.id)
    assert override.json()["applied_at"] is not None


async def test_workflow_template_defines_the_steps(client, factory, headers, school):
    parent = await factory.user(school, "parent")
    admin = await factory.user(school, "school_admin")
    template = await client.put(
        "/api/v1/admissions/workflows/standard_digital",
        json={
            "name": "Short form",
            "steps_config": [
                {"step_type": "application_submitted"},
                {"step_type": "document_verification", "step_name": "Check documents"},
                {"step_type": "enrollment"},
            ],
        },
        headers=headers(admin, school),
    )
    assert template.status_code == 200

    created = (
        await client.post("/api/v1/admissions/applications", json=APPLICATION, headers=headers(parent, school))
    ).json()
    assert created["workflow_id"] == template.json()["id"]
    assert [s["step_type"] for s in created["steps"]] == ["application_submitted", "document_verification", "enrollment"]
    assert created["workflow_completion_percentage"] == 33


async def test_status_graph_lists_every_status_and_its_moves(client, factory, headers, school):
    admin = await factory.user(school, "school_admin")

    response = await client.get("/api/v1/admissions/status-graph", headers=headers(admin, school))
    assert response.status_code == 200
    graph = response.json()
    assert "under_review" in graph["submitted"]
    assert "enrolled" in graph["offer_accepted"]
    assert graph["enrolled"] == []
