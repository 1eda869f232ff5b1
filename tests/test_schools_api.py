import uuid
from datetime import date


async def test_platform_admin_creates_school(client, factory, headers):
    admin = await factory.user(None, "super_admin")

    created = await client.post("/api/v1/schools", json={"name": "Hill Top Academy", "code": "hta"}, headers=headers(admin))
    assert created.status_code == 201
    assert created.json()["code"] == "HTA"

    duplicate = await client.post("/api/v1/schools", json={"name": "Hill Top Again", "code": "HTA"}, headers=headers(admin))
    assert duplicate.status_code == 409


async def test_school_admin_cannot_create_schools(client, factory, headers):
    school = await factory.school()
    admin = await factory.user(school, "school_admin")

    response = await client.post("/api/v1/schools", json={"name": "Rogue School", "code": "RGS"}, headers=headers(admin, school))
    assert response.status_code == 403


async def test_disabling_a_module_makes_its_resource_read_only(client, factory, headers):
    platform = await factory.user(None, "super_admin")
    school = await factory.school()
    await factory.grant("school_admin", "system_settings", ["read", "write"])
    await factory.grant("school_admin", "financial_data", ["read", "write"])
    admin = await factory.user(school, "school_admin")
    auth = headers(admin, school)

    module = await client.post(
        "/api/v1/modules",
        json={"module_key": "FEES", "module_name": "Fee Management", "resource_type": "financial_data"},
        headers=headers(platform),
    )
    assert module.status_code == 201

    modules = (await client.get("/api/v1/schools/current/modules", headers=auth)).json()["modules"]
    assert [(m["module_key"], m["access"]) for m in modules] == [("FEES", "enabled")]

    updated = await client.put("/api/v1/schools/current/modules/FEES", json={"is_enabled": False}, headers=auth)
    assert updated.status_code == 200
    assert updated.json()["modules"][0]["access"] == "disabled"

    assert (await client.get("/api/v1/fees/outstanding", headers=auth)).status_code == 200
    write = await client.post(
        "/api/v1/fees/outstanding",
        json={
            "student_id": str(uuid.uuid4()),
            "student_name": "Mary Somerville",
            "fee_type": "trip",
            "due_date": date.today().isoformat(),
            "amount": "12.00",
        },
        headers=auth,
    )
    assert write.status_code == 403


async def test_deactivated_school_refuses_requests(client, factory, headers):
    platform = await factory.user(None, "super_admin")
    school = await factory.school()
    await factory.grant("teacher", "students", ["read"])
    teacher = await factory.user(school, "teacher")

    deactivated = await client.post(f"/api/v1/schools/{school.id}/deactivate", headers=headers(platform))
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False

    response = await client.get("/api/v1/auth/me", headers=headers(teacher, school))
    assert response.status_code == 403

    await client.post(f"/api/v1/schools/{school.id}/reactivate", headers=headers(platform))
    assert (await client.get("/api/v1/auth/me", headers=headers(teacher, school))).status_code == 200
