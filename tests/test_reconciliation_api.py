import uuid

from app.core.models import LibraryBookTitle


def _corrections(body):
    return {name: sum(result["corrected"].values()) for name, result in body["results"].items()}


async def test_run_repairs_drift_and_is_idempotent(client, factory, headers, db_session):
    school = await factory.school()
    await factory.grant("school_admin", "system_settings", ["read", "write"])
    await factory.grant("school_admin", "students", ["read", "write"])
    admin = await factory.user(school, "school_admin")
    auth = headers(admin, school)

    created = await client.post("/api/v1/library/titles", json={"title": "Middlemarch", "copies": 3}, headers=auth)
    title = await db_session.get(LibraryBookTitle, uuid.UUID(created.json()["id"]))
    title.available_copies = 0
    await db_session.commit()

    first = await client.post("/api/v1/reconciliation/run", json={}, headers=auth)
    assert first.status_code == 200
    assert set(first.json()["results"]) == {"library", "finance", "transport"}
    assert _corrections(first.json())["library"] == 1

    repaired = (await client.get(f"/api/v1/library/titles/{title.id}", headers=auth)).json()
    assert repaired["available_copies"] == 3

    second = await client.post("/api/v1/reconciliation/run", json={}, headers=auth)
    assert set(_corrections(second.json()).values()) == {0}

    audit = (await client.get("/api/v1/audit", params={"action": "reconciliation_run"}, headers=auth)).json()
    assert len(audit) == 2


async def test_unknown_pass_is_rejected(client, factory, headers):
    school = await factory.school()
    await factory.grant("school_admin", "system_settings", ["read", "write"])
    admin = await factory.user(school, "school_admin")

    response = await client.post("/api/v1/reconciliation/run", json={"passes": ["payroll"]}, headers=headers(admin, school))
    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "passes"


async def test_run_requires_system_settings_write(client, factory, headers):
    school = await factory.school()
    teacher = await factory.user(school, "teacher")

    response = await client.post("/api/v1/reconciliation/run", json={}, headers=headers(teacher, school))
    assert response.status_code == 403
