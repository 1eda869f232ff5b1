"""
Schools (tenants) and the per-school module switches.
Schools are never hard-deleted: deactivation flips is_active and keeps every row.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.permissions import MODULE_DISABLED, MODULE_ENABLED, MODULE_REVOKED
from app.core import audit_service
from app.core.enums import ResourceType
from app.core.exceptions import DuplicateError, NotFoundError, TenantNotFoundError
from app.core.models import Module, School, SchoolModule

from .schemas import (
    ModuleCreate,
    SchoolCreate,
    SchoolModuleState,
    SchoolModulesResponse,
    SchoolModuleUpdate,
)

logger = logging.getLogger(__name__)


async def _get_school(db: AsyncSession, school_id: UUID) -> School:
    school = await db.get(School, school_id)
    if school is None:
        raise TenantNotFoundError(f"Unknown school {school_id}")
    return school


async def create_school(db: AsyncSession, payload: SchoolCreate, created_by: UUID) -> School:
    code = payload.code.strip().upper()
    existing = await db.execute(select(School).where(School.code == code))
    if existing.scalar_one_or_none():
        raise DuplicateError(f"School code '{code}' is already in use")

    school = School(
        code=code,
        name=payload.name.strip(),
        address=payload.address,
        contact_email=payload.contact_email,
        contact_phone=payload.contact_phone,
        settings=payload.settings,
    )
    db.add(school)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise DuplicateError(f"School code '{code}' is already in use")
    await audit_service.log_audit(
        db,
        school.id,
        ResourceType.SYSTEM_SETTINGS.value,
        school.id,
        "school_created",
        user_id=created_by,
        new_values={"code": code, "name": school.name},
        elevated_privilege=True,
    )
    await db.commit()
    await db.refresh(school)
    logger.info("school created id=%s code=%s", school.id, code)
    return school


async def list_schools(db: AsyncSession, include_inactive: bool = False) -> List[School]:
    stmt = select(School).order_by(School.name)
    if not include_inactive:
        stmt = stmt.where(School.is_active.is_(True))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_school(db: AsyncSession, school_id: UUID) -> School:
    return await _get_school(db, school_id)


async def set_school_active(db: AsyncSession, school_id: UUID, is_active: bool, user_id: UUID) -> School:
    school = await _get_school(db, school_id)
    if school.is_active == is_active:
        return school
    school.is_active = is_active
    await audit_service.log_audit(
        db,
        school.id,
        ResourceType.SYSTEM_SETTINGS.value,
        school.id,
        "school_reactivated" if is_active else "school_deactivated",
        user_id=user_id,
        old_values={"is_active": not is_active},
        new_values={"is_active": is_active},
        elevated_privilege=True,
    )
    await db.commit()
    await db.refresh(school)
    return school


async def update_school_settings(db: AsyncSession, school_id: UUID, changes: dict, user_id: UUID) -> School:
    school = await _get_school(db, school_id)
    old = dict(school.settings or {})
    merged = dict(old)
    for key, value in changes.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    # Reassign so the JSON column is marked dirty
    school.settings = merged
    await audit_service.log_audit(
        db,
        school.id,
        ResourceType.SYSTEM_SETTINGS.value,
        school.id,
        "school_settings_updated",
        user_id=user_id,
        old_values=old,
        new_values=merged,
    )
    await db.commit()
    await db.refresh(school)
    return school


# ----- Module catalogue -----

async def create_module(db: AsyncSession, payload: ModuleCreate) -> Module:
    key = payload.module_key.strip().upper()
    existing = await db.execute(select(Module).where(Module.module_key == key))
    if existing.scalar_one_or_none():
        raise DuplicateError(f"Module '{key}' already exists")
    module = Module(
        module_key=key,
        module_name=payload.module_name,
        resource_type=payload.resource_type.value if payload.resource_type else None,
        description=payload.description,
    )
    db.add(module)
    await db.commit()
    await db.refresh(module)
    return module


async def list_modules(db: AsyncSession) -> List[Module]:
    result = await db.execute(select(Module).where(Module.is_active.is_(True)).order_by(Module.module_key))
    return list(result.scalars().all())


def _access(mapping: Optional[SchoolModule]) -> str:
    if mapping is None:
        return MODULE_ENABLED
    if mapping.is_revoked:
        return MODULE_REVOKED
    return MODULE_ENABLED if mapping.is_enabled else MODULE_DISABLED


async def get_school_modules(db: AsyncSession, school_id: UUID) -> SchoolModulesResponse:
    await _get_school(db, school_id)
    modules = await list_modules(db)
    result = await db.execute(select(SchoolModule).where(SchoolModule.school_id == school_id))
    by_key = {m.module_key: m for m in result.scalars().all()}
    states = []
    for module in modules:
        mapping = by_key.get(module.module_key)
        states.append(
            SchoolModuleState(
                module_key=module.module_key,
                module_name=module.module_name,
                resource_type=module.resource_type,
                is_enabled=mapping.is_enabled if mapping else True,
                is_revoked=mapping.is_revoked if mapping else False,
                access=_access(mapping),
            )
        )
    return SchoolModulesResponse(school_id=school_id, modules=states)


async def set_school_module(
    db: AsyncSession,
    school_id: UUID,
    module_key: str,
    payload: SchoolModuleUpdate,
    user_id: UUID,
) -> SchoolModulesResponse:
    await _get_school(db, school_id)
    module = (await db.execute(select(Module).where(Module.module_key == module_key))).scalar_one_or_none()
    if module is None:
        raise NotFoundError(f"Module '{module_key}' not found")

    result = await db.execute(
        select(SchoolModule).where(SchoolModule.school_id == school_id, SchoolModule.module_key == module_key)
    )
    mapping = result.scalar_one_or_none()
    old_access = _access(mapping)
    if mapping is None:
        mapping = SchoolModule(school_id=school_id, module_key=module_key)
        db.add(mapping)
    mapping.is_enabled = payload.is_enabled
    mapping.is_revoked = payload.is_revoked

    await audit_service.log_audit(
        db,
        school_id,
        ResourceType.SYSTEM_SETTINGS.value,
        module.id,
        "school_module_updated",
        user_id=user_id,
        old_values={"module_key": module_key, "access": old_access},
        new_values={"module_key": module_key, "access": _access(mapping)},
        elevated_privilege=True,
    )
    await db.commit()
    logger.info("school=%s module=%s access %s -> %s", school_id, module_key, old_access, _access(mapping))
    return await get_school_modules(db, school_id)
