import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import FieldPermission, Profile, RolePermission, UserRole
from app.auth.permissions import (
    MODULE_DISABLED,
    MODULE_REVOKED,
    Decision,
    FieldAccess,
    PermissionMatrix,
    allowed_actions,
    can_perform,
    is_active_assignment,
    parse_action,
    parse_resource,
    resolve_field_permissions,
)
from app.auth.schemas import CurrentUser, LoginRequest, LoginResponse, UserInfo
from app.auth.security import create_access_token, verify_password
from app.core import audit_service
from app.core.enums import SENSITIVE_RESOURCES, AppRole, PermissionType
from app.core.exceptions import DuplicateError, NotFoundError, PermissionDeniedError, ServiceError, TenantNotFoundError
from app.core.models import Module, School, SchoolModule
from app.core.workflows.base import Actor

logger = logging.getLogger(__name__)


async def login_user(db: AsyncSession, payload: LoginRequest) -> LoginResponse:
    user_stmt = select(Profile).where(func.lower(Profile.email) == func.lower(payload.email))
    user_result = await db.execute(user_stmt)
    user: Optional[Profile] = user_result.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        raise ServiceError("Invalid credentials", status.HTTP_401_UNAUTHORIZED)
    if not user.is_active:
        raise ServiceError("User is inactive", status.HTTP_403_FORBIDDEN)

    if payload.school_id is not None:
        await get_school_or_raise(db, payload.school_id)

    issued_at = datetime.now(timezone.utc)
    access_payload = {
        "sub": str(user.id),
        "user_id": str(user.id),
        "school_id": str(payload.school_id) if payload.school_id else None,
        "iat": int(issued_at.timestamp()),
    }
    access_token = create_access_token(subject=access_payload)
    logger.info("login user=%s", user.id)

    return LoginResponse(
        access_token=access_token,
        user=UserInfo(id=user.id, name=user.full_name, email=user.email),
        school_id=payload.school_id,
        issued_at=issued_at,
    )


async def get_school_or_raise(db: AsyncSession, school_id: UUID) -> School:
    """No operation may run against an unknown school."""
    school = await db.get(School, school_id)
    if school is None:
        raise TenantNotFoundError(f"Unknown school {school_id}")
    if not school.is_active:
        raise PermissionDeniedError("School is inactive")
    return school


async def load_assignments(db: AsyncSession, user_id: UUID, school_id: Optional[UUID]) -> List[UserRole]:
    """Active, unexpired assignments for the school, plus global (school-less) ones."""
    stmt = select(UserRole).where(UserRole.user_id == user_id, UserRole.is_active.is_(True))
    if school_id is not None:
        stmt = stmt.where(or_(UserRole.school_id == school_id, UserRole.school_id.is_(None)))
    else:
        stmt = stmt.where(UserRole.school_id.is_(None))
    result = await db.execute(stmt)
    now = datetime.now(timezone.utc)
    return [a for a in result.scalars().all() if is_active_assignment(a, now)]


async def load_matrix(db: AsyncSession) -> PermissionMatrix:
    result = await db.execute(select(RolePermission))
    return PermissionMatrix.from_rows(result.scalars().all())


async def load_module_access(db: AsyncSession, school_id: UUID) -> Dict[str, str]:
    """resource_type -> enabled/disabled/revoked. Resources with no school_modules row are enabled."""
    stmt = (
        select(Module.resource_type, SchoolModule.is_enabled, SchoolModule.is_revoked)
        .join(SchoolModule, SchoolModule.module_key == Module.module_key)
        .where(SchoolModule.school_id == school_id, Module.resource_type.is_not(None))
    )
    result = await db.execute(stmt)
    access: Dict[str, str] = {}
    for resource_type, is_enabled, is_revoked in result.all():
        if is_revoked:
            access[resource_type] = MODULE_REVOKED
        elif not is_enabled and access.get(resource_type) != MODULE_REVOKED:
            access[resource_type] = MODULE_DISABLED
    return access


async def ensure_module_available(db: AsyncSession, user: CurrentUser, school_id: UUID, module_key: str, action: Any) -> None:
    """Gate for modules without a resource type of their own (library, transport), checked by key."""
    if user.is_super_admin:
        return
    result = await db.execute(
        select(SchoolModule).where(SchoolModule.school_id == school_id, SchoolModule.module_key == module_key)
    )
    mapping = result.scalar_one_or_none()
    if mapping is None:
        return
    if mapping.is_revoked:
        logger.info("deny user=%s school=%s module=%s reason=module_revoked", user.id, school_id, module_key)
        raise ServiceError(f"Module {module_key} is not available for this school", status.HTTP_403_FORBIDDEN, code="module_revoked")
    if not mapping.is_enabled and parse_action(action) != PermissionType.READ:
        logger.info("deny user=%s school=%s module=%s reason=module_disabled", user.id, school_id, module_key)
        raise ServiceError(f"Module {module_key} is read-only for this school", status.HTTP_403_FORBIDDEN, code="module_disabled")


async def evaluate(
    db: AsyncSession,
    user: CurrentUser,
    school_id: UUID,
    resource: Any,
    action: Any,
    context: Optional[Mapping[str, Any]] = None,
) -> Decision:
    """Load everything the resolver needs and decide, without raising on deny."""
    parse_resource(resource)
    await get_school_or_raise(db, school_id)
    assignments = await load_assignments(db, user.id, school_id)
    matrix = await load_matrix(db)
    module_access = await load_module_access(db, school_id)
    return can_perform(
        user.id,
        school_id,
        resource,
        action,
        assignments=assignments,
        matrix=matrix,
        module_access=module_access,
        context=context,
    )


async def authorize(
    db: AsyncSession,
    user: CurrentUser,
    school_id: Optional[UUID],
    resource: Any,
    action: Any,
    context: Optional[Mapping[str, Any]] = None,
) -> Decision:
    """
    Raise unless the user may perform action on resource. Denials are audited and,
    for security-sensitive resources, reported as not found.
    """
    if school_id is None:
        raise TenantNotFoundError("No active school selected")
    resource_type = parse_resource(resource)
    decision = await evaluate(db, user, school_id, resource, action, context)
    if decision.allowed:
        logger.debug("allow user=%s school=%s %s:%s via %s", user.id, school_id, resource_type.value, action, decision.role)
        return decision

    logger.info("deny user=%s school=%s %s:%s reason=%s", user.id, school_id, resource_type.value, action, decision.reason)
    await audit_service.log_audit(
        db,
        school_id,
        resource_type.value,
        None,
        "access_denied",
        user_id=user.id,
        new_values={"action": str(getattr(action, "value", action)), "reason": decision.reason, "context": dict(context or {})},
    )
    await db.commit()
    if resource_type in SENSITIVE_RESOURCES:
        raise NotFoundError()
    raise PermissionDeniedError()


async def ensure_replay_visible(
    db: AsyncSession,
    user: CurrentUser,
    school_id: UUID,
    resource: Any,
    label: str,
    *,
    is_owner: bool,
    context: Optional[Mapping[str, Any]] = None,
) -> None:
    """
    A repeated natural key hands back the stored record only to its author or to
    someone who could read it anyway. Everyone else learns only that the key is taken.
    """
    if is_owner:
        return
    decision = await evaluate(db, user, school_id, resource, PermissionType.READ.value, context)
    if not decision.allowed:
        logger.info("user=%s replayed %s without read access; refusing", user.id, label)
        raise DuplicateError(f"{label} is already in use")


async def build_actor(
    db: AsyncSession,
    user: CurrentUser,
    school_id: UUID,
    resource: Any,
    *,
    context: Optional[Mapping[str, Any]] = None,
    is_owner: bool = False,
) -> Actor:
    """Actor carrying every action the caller holds on resource in this context."""
    assignments = await load_assignments(db, user.id, school_id)
    matrix = await load_matrix(db)
    module_access = await load_module_access(db, school_id)
    actions = allowed_actions(
        user.id,
        school_id,
        resource,
        assignments=assignments,
        matrix=matrix,
        module_access=module_access,
        context=context,
    )
    return Actor(
        user_id=user.id,
        roles=frozenset(a.role for a in assignments),
        actions=actions,
        is_owner=is_owner,
    )


async def get_field_access(db: AsyncSession, user: CurrentUser, module_key: str) -> Dict[str, FieldAccess]:
    # Administrators are not restricted field by field
    if user.is_admin:
        return {}
    result = await db.execute(select(FieldPermission).where(FieldPermission.module_key == module_key))
    return resolve_field_permissions(user.roles, module_key, result.scalars().all())


def is_platform_admin(user: CurrentUser) -> bool:
    return any(a.role == AppRole.SUPER_ADMIN.value and a.school_id is None for a in user.assignments)
