import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import uuid
from typing import AsyncGenerator, Dict, Iterable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.models import Profile, RolePermission, UserRole
from app.auth.security import create_access_token, hash_password
from app.core.models import Module, School, SchoolModule
from app.db.session import Base, get_db
from app.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
async def engine():
    """Fresh in-memory database per test. StaticPool keeps every connection on the same database."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class Factory:
    """Builds schools, users, role assignments and permission rules straight in the database."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def school(self, code: Optional[str] = None) -> School:
        school = School(code=code or f"SCH{uuid.uuid4().hex[:6].upper()}", name="Test School", settings={})
        self.db.add(school)
        await self.db.commit()
        return school

    async def user(
        self,
        school: Optional[School],
        role: str,
        *,
        email: Optional[str] = None,
        **scope,
    ) -> Profile:
        profile = Profile(
            email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.com",
            full_name=f"Test {role}",
            password_hash=hash_password("Password123"),
        )
        self.db.add(profile)
        await self.db.flush()
        self.db.add(UserRole(user_id=profile.id, school_id=school.id if school else None, role=role, **scope))
        await self.db.commit()
        return profile

    async def grant(
        self,
        role: str,
        resource: str,
        actions: Iterable[str],
        conditions: Optional[dict] = None,
    ) -> None:
        for action in actions:
            self.db.add(RolePermission(role=role, resource=resource, permission=action, conditions=conditions))
        await self.db.commit()

    async def module(
        self,
        school: School,
        module_key: str,
        *,
        resource_type: Optional[str] = None,
        is_enabled: bool = True,
        is_revoked: bool = False,
    ) -> SchoolModule:
        existing = await self.db.execute(select(Module).where(Module.module_key == module_key))
        if existing.scalar_one_or_none() is None:
            self.db.add(Module(module_key=module_key, module_name=module_key.title(), resource_type=resource_type))
            await self.db.flush()
        mapping = SchoolModule(school_id=school.id, module_key=module_key, is_enabled=is_enabled, is_revoked=is_revoked)
        self.db.add(mapping)
        await self.db.commit()
        return mapping


@pytest.fixture()
def factory(db_session: AsyncSession) -> Factory:
    return Factory(db_session)


def auth_headers(user: Profile, school: Optional[School] = None) -> Dict[str, str]:
    token = create_access_token(subject={"sub": str(user.id)})
    headers = {"Authorization": f"Bearer {token}"}
    if school is not None:
        headers["X-School-Id"] = str(school.id)
    return headers


@pytest.fixture()
def headers():
    return auth_headers
