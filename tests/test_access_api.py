from sqlalchemy import select

from app.core.models import AuditLog


async def test_safeguarding_denial_looks_like_not_found(client, factory, headers, db_session):
    school = await factory.school()
    teacher = await factory.user(school, "teacher")

    response = await client.get("/api/v1/safeguarding/concerns", headers=headers(teacher, school))
    assert response.status_code == 404

    denied = (
        await db_session.execute(select(AuditLog).where(AuditLog.action == "access_denied"))
    ).scalars().all()
    assert len(denied) == 1
    assert denied[0].resource_type == "safeguarding_logs"
    assert denied[0].user_id == teacher.id


async def test_dsl_reports_concern_once(client, factory, headers):
    school = await factory.school()
    await factory.grant("dsl", "safeguarding_logs", ["read", "write", "escalate"])
    dsl = await factory.user(school, "dsl")
    payload = {
        "concern_number": "SG-2025-0001",
        "student_id": "7f0c2f51-3f39-4d0e-9c4c-2b7a4d1f8e10",
        "concern_type": "neglect",
        "risk_level": "high",
        "concern_details": "Repeatedly arrives without lunch or a coat",
    }

    first = await client.post("/api/v1/safeguarding/concerns", json=payload, headers=headers(dsl, school))
    assert first.status_code == 201
    again = await client.post("/api/v1/safeguarding/concerns", json=payload, headers=headers(dsl, school))
    assert again.status_code == 200
    assert again.json()["id"] == first.json()["id"]


async def test_concern_replay_by_a_reporter_without_read_access_reveals_nothing(client, factory, headers):
    school = await factory.school()
    await factory.grant("dsl", "safeguarding_logs", ["read", "write"])
    await factory.grant("teacher", "safeguarding_logs", ["write"])
    dsl = await factory.user(school, "dsl")
    teacher = await factory.user(school, "teacher")
    payload = {
        "concern_number": "SG-2025-0002",
        "student_id": "7f0c2f51-3f39-4d0e-9c4c-2b7a4d1f8e10",
        "concern_type": "emotional_abuse",
        "risk_level": "medium",
        "concern_details": "Disclosed worries about home to a friend",
    }
    assert (await client.post("/api/v1/safeguarding/concerns", json=payload, headers=headers(dsl, school))).status_code == 201

    replay = await client.post(
        "/api/v1/safeguarding/concerns",
        json={**payload, "concern_details": "Anything"},
        headers=headers(teacher, school),
    )
    assert replay.status_code == 409
    assert replay.json()["detail"]["code"] == "duplicate"
    assert "Disclosed" not in replay.text


async def test_permission_denied_for_other_resources_is_forbidden(client, factory, headers):
    school = await factory.school()
    teacher = await factory.user(school, "teacher")

    response = await client.get("/api/v1/fees/outstanding", headers=headers(teacher, school))
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "permission_denied"


async def test_disabled_module_is_read_only(client, factory, headers):
    school = await factory.school()
    await factory.grant("librarian", "students", ["read", "write"])
    librarian = await factory.user(school, "librarian")
    await factory.module(school, "LIBRARY", is_enabled=False)

    listed = await client.get("/api/v1/library/titles", headers=headers(librarian, school))
    assert listed.status_code == 200

    created = await client.post("/api/v1/library/titles", json={"title": "Dune"}, headers=headers(librarian, school))
    assert created.status_code == 403
    assert created.json()["detail"]["code"] == "module_disabled"


async def test_revoked_module_denies_reads(client, factory, headers):
    school = await factory.school()
    await factory.grant("librarian", "students", ["read", "write"])
    librarian = await factory.user(school, "librarian")
    await factory.module(school, "LIBRARY", is_revoked=True)

    response = await client.get("/api/v1/library/titles", headers=headers(librarian, school))
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "module_revoked"


async def test_super_admin_ignores_module_state(client, factory, headers):
    school = await factory.school()
    admin = await factory.user(None, "super_admin")
    await factory.module(school, "LIBRARY", is_revoked=True)

    response = await client.get("/api/v1/library/titles", headers=headers(admin, school))
    assert response.status_code == 200


async def test_assignment_in_another_school_grants_nothing(client, factory, headers):
    home = await factory.school()
    other = await factory.school()
    await factory.grant("bursar", "financial_data", ["read"])
    bursar = await factory.user(home, "bursar")

    assert (await client.get("/api/v1/fees/outstanding", headers=headers(bursar, home))).status_code == 200
    assert (await client.get("/api/v1/fees/outstanding", headers=headers(bursar, other))).status_code == 403
