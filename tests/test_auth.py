from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import AuditLog


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, factory) -> None:
    school = await factory.school()
    user = await factory.user(school, "teacher", email="jane@example.com")

    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "Jane@Example.com", "password": "Password123", "school_id": str(school.id)},
    )
    assert response.status_code == 200
    data = response.json()

    assert "access_token" in data
    assert data["token_type"] == "bearer"
    assert data["user"]["id"] == str(user.id)
    assert data["school_id"] == str(school.id)

    # The token's school claim selects the tenant when no header is sent
    me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.status_code == 200
    assert me.json()["school_id"] == str(school.id)
    assert [a["role"] for a in me.json()["assignments"]] == ["teacher"]


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, factory) -> None:
    school = await factory.school()
    await factory.user(school, "teacher", email="john@example.com")

    response = await client.post("/api/v1/auth/login", json={"email": "john@example.com", "password": "nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_oauth_form(client: AsyncClient, factory) -> None:
    school = await factory.school()
    await factory.user(school, "teacher", email="form@example.com")

    response = await client.post(
        "/api/v1/auth/login-oauth",
        data={"username": "form@example.com", "password": "Password123"},
    )
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"


@pytest.mark.asyncio
async def test_me_requires_token(client: AsyncClient) -> None:
    response = await client.get("/api/v1/auth/me")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_revoked_assignment_loses_access(
    client: AsyncClient, db_session: AsyncSession, factory, headers
) -> None:
    school = await factory.school()
    await factory.grant("school_admin", "staff_management", ["read", "write"])
    await factory.grant("hod", "grades", ["approve"], {"department": "$department"})
    admin = await factory.user(school, "school_admin")
    hod = await factory.user(school, "teacher")

    assigned = await client.post(
        "/api/v1/auth/roles/assignments",
        json={"user_id": str(hod.id), "role": "hod", "department": "science"},
        headers=headers(admin, school),
    )
    assert assigned.status_code == 201
    assignment_id = assigned.json()["id"]

    question = {"resource": "grades", "action": "approve", "context": {"department": "science"}}
    allowed = await client.post("/api/v1/auth/roles/check", json=question, headers=headers(hod, school))
    assert allowed.json() == {"allowed": True, "reason": "rule_matched", "role": "hod"}

    other_department = await client.post(
        "/api/v1/auth/roles/check",
        json={**question, "context": {"department": "maths"}},
        headers=headers(hod, school),
    )
    assert other_department.json()["allowed"] is False

    revoked = await client.post(f"/api/v1/auth/roles/assignments/{assignment_id}/revoke", headers=headers(admin, school))
    assert revoked.status_code == 200
    assert revoked.json()["is_active"] is False

    after = await client.post("/api/v1/auth/roles/check", json=question, headers=headers(hod, school))
    assert after.json()["allowed"] is False

    actions = (
        await db_session.execute(select(AuditLog.action).where(AuditLog.resource_id == UUID(assignment_id)))
    ).scalars().all()
    assert set(actions) == {"role_assigned", "role_revoked"}


@pytest.mark.asyncio
async def test_only_super_admin_assigns_super_admin(client: AsyncClient, factory, headers) -> None:
    school = await factory.school()
    await factory.grant("school_admin", "staff_management", ["read", "write"])
    admin = await factory.user(school, "school_admin")
    teacher = await factory.user(school, "teacher")

    response = await client.post(
        "/api/v1/auth/roles/assignments",
        json={"user_id": str(teacher.id), "role": "super_admin"},
        headers=headers(admin, school),
    )
    assert response.status_code == 403
