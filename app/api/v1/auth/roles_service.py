"""
Role assignments, permission rules and field permissions.
Rule and field-permission tables are platform-wide; assignments are per school.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import FieldPermission, Profile, RolePermission, UserRole
from app.auth.permissions import is_active_assignment
from app.auth.schemas import (
    CurrentUser,
    FieldPermissionUpsert,
    PermissionRuleCreate,
    RoleAssignmentCreate,
)
from app.auth.security import hash_password
from app.core import audit_service
from app.core.enums import AppRole, ResourceType
from app.core.exceptions import DuplicateError, NotFoundError, PermissionDeniedError, ServiceError

logger = logging.getLogger(__name__)


async def create_profile(db: AsyncSession, email: str, full_name: str, password: str, phone: Optional[str] = None) -> Profile:
    existing = await db.execute(select(Profile).where(func.lower(Profile.email) == email.lower()))
    if existing.scalar_one_or_none():
        raise ServiceError("Email is already in use", status.HTTP_409_CONFLICT, code="duplicate", field="email")
    profile = Profile(
        email=email,
        full_name=full_name.strip(),
        phone=phone,
        password_hash=hash_password(password),
    )
    db.add(profile)
    await db.commit()
    await db.refresh(profile)
    return profile


async def assign_role(
    db: AsyncSession,
    school_id: UUID,
    payload: RoleAssignmentCreate,
    current_user: CurrentUser,
) -> UserRole:
    """Grant a role in the school. Only a super admin can hand out super_admin."""
    if payload.role == AppRole.SUPER_ADMIN and not current_user.is_super_admin:
        raise PermissionDeniedError("Only a super admin can assign the super_admin role")
    if await db.get(Profile, payload.user_id) is None:
        raise NotFoundError("User not found")

    assignment = UserRole(
        user_id=payload.user_id,
        school_id=school_id,
        role=payload.role.value,
        department=payload.department,
        year_group=payload.year_group,
        fee_collection_role=payload.fee_collection_role,
        expires_at=payload.expires_at,
        assigned_by=current_user.id,
    )
    db.add(assignment)
    await db.flush()
    await audit_service.log_audit(
        db,
        school_id,
        ResourceType.STAFF_MANAGEMENT.value,
        assignment.id,
        "role_assigned",
        user_id=current_user.id,
        new_values={
            "user_id": payload.user_id,
            "role": payload.role.value,
            "department": payload.department,
            "year_group": payload.year_group,
        },
        elevated_privilege=payload.role.value in (AppRole.SUPER_ADMIN.value, AppRole.SCHOOL_ADMIN.value),
    )
    await db.commit()
    await db.refresh(assignment)
    logger.info("role %s assigned to user=%s school=%s", assignment.role, assignment.user_id, school_id)
    return assignment


async def revoke_assignment(db: AsyncSession, school_id: UUID, assignment_id: UUID, current_user: CurrentUser) -> UserRole:
    assignment = await db.get(UserRole, assignment_id)
    if assignment is None or assignment.school_id != school_id:
        raise NotFoundError("Role assignment not found")
    if assignment.role == AppRole.SUPER_ADMIN.value and not current_user.is_super_admin:
        raise PermissionDeniedError("Only a super admin can revoke the super_admin role")
    if assignment.is_active:
        assignment.is_active = False
        await audit_service.log_audit(
            db,
            school_id,
            ResourceType.STAFF_MANAGEMENT.value,
            assignment.id,
            "role_revoked",
            user_id=current_user.id,
            old_values={"is_active": True},
            new_values={"is_active": False, "role": assignment.role, "user_id": assignment.user_id},
        )
        await db.commit()
        await db.refresh(assignment)
    return assignment


async def list_assignments(
    db: AsyncSession,
    school_id: UUID,
    user_id: Optional[UUID] = None,
    include_inactive: bool = False,
) -> List[UserRole]:
    stmt = select(UserRole).where(UserRole.school_id == school_id)
    if user_id is not None:
        stmt = stmt.where(UserRole.user_id == user_id)
    if not include_inactive:
        stmt = stmt.where(UserRole.is_active.is_(True))
    result = await db.execute(stmt.order_by(UserRole.assigned_at))
    rows = list(result.scalars().all())
    if include_inactive:
        return rows
    now = datetime.now(timezone.utc)
    return [r for r in rows if is_active_assignment(r, now)]


# ----- Permission rules -----

async def list_permission_rules(db: AsyncSession, role: Optional[str] = None) -> List[RolePermission]:
    stmt = select(RolePermission)
    if role:
        stmt = stmt.where(RolePermission.role == role)
    result = await db.execute(stmt.order_by(RolePermission.role, RolePermission.resource, RolePermission.permission))
    return list(result.scalars().all())


async def create_permission_rule(db: AsyncSession, payload: PermissionRuleCreate, user_id: UUID) -> RolePermission:
    rule = RolePermission(
        role=payload.role.value,
        resource=payload.resource.value,
        permission=payload.permission.value,
        conditions=payload.conditions,
    )
    db.add(rule)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise DuplicateError(
            f"A rule for ({payload.role.value}, {payload.resource.value}, {payload.permission.value}) already exists"
        )
    await audit_service.log_audit(
        db,
        None,
        ResourceType.SYSTEM_SETTINGS.value,
        rule.id,
        "permission_rule_created",
        user_id=user_id,
        new_values=payload.model_dump(mode="json"),
        elevated_privilege=True,
    )
    await db.commit()
    await db.refresh(rule)
    return rule


async def delete_permission_rule(db: AsyncSession, rule_id: UUID, user_id: UUID) -> None:
    rule = await db.get(RolePermission, rule_id)
    if rule is None:
        raise NotFoundError("Permission rule not found")
    await audit_service.log_audit(
        db,
        None,
        ResourceType.SYSTEM_SETTINGS.value,
        rule.id,
        "permission_rule_deleted",
        user_id=user_id,
        old_values={"role": rule.role, "resource": rule.resource, "permission": rule.permission, "conditions": rule.conditions},
        elevated_privilege=True,
    )
    await db.delete(rule)
    await db.commit()


# ----- Field permissions -----

async def list_field_permissions(db: AsyncSession, module_key: Optional[str] = None) -> List[FieldPermission]:
    stmt = select(FieldPermission)
    if module_key:
        stmt = stmt.where(FieldPermission.module_key == module_key)
    result = await db.execute(stmt.order_by(FieldPermission.module_key, FieldPermission.role, FieldPermission.field_name))
    return list(result.scalars().all())


async def upsert_field_permission(db: AsyncSession, payload: FieldPermissionUpsert) -> FieldPermission:
    result = await db.execute(
        select(FieldPermission).where(
            FieldPermission.role == payload.role.value,
            FieldPermission.module_key == payload.module_key,
            FieldPermission.field_name == payload.field_name,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = FieldPermission(role=payload.role.value, module_key=payload.module_key, field_name=payload.field_name)
        db.add(row)
    row.is_visible = payload.is_visible
    row.is_editable = payload.is_editable
    row.is_required = payload.is_required
    await db.commit()
    await db.refresh(row)
    return row
