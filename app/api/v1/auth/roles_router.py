from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import services as auth_service
from app.auth.dependencies import get_current_user, require_school
from app.auth.rbac import check_permission, require_platform_admin
from app.auth.schemas import (
    CurrentUser,
    FieldPermissionResponse,
    FieldPermissionUpsert,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionRuleCreate,
    PermissionRuleResponse,
    RoleAssignmentCreate,
    RoleAssignmentResponse,
)
from app.core.errors import to_http_exception
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import roles_service

router = APIRouter(prefix="/api/v1/auth/roles", tags=["roles"])


# ----- Assignments (per school) -----

@router.post(
    "/assignments",
    response_model=RoleAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("staff_management", "write"))],
)
async def assign_role(
    payload: RoleAssignmentCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> RoleAssignmentResponse:
    try:
        return await roles_service.assign_role(db, school_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get(
    "/assignments",
    response_model=List[RoleAssignmentResponse],
    dependencies=[Depends(check_permission("staff_management", "read"))],
)
async def list_assignments(
    user_id: Optional[UUID] = None,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[RoleAssignmentResponse]:
    return await roles_service.list_assignments(db, school_id, user_id=user_id, include_inactive=include_inactive)


@router.post(
    "/assignments/{assignment_id}/revoke",
    response_model=RoleAssignmentResponse,
    dependencies=[Depends(check_permission("staff_management", "write"))],
)
async def revoke_assignment(
    assignment_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> RoleAssignmentResponse:
    try:
        return await roles_service.revoke_assignment(db, school_id, assignment_id, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Permission rules (platform-wide) -----

@router.get(
    "/permissions",
    response_model=List[PermissionRuleResponse],
    dependencies=[Depends(check_permission("system_settings", "read"))],
)
async def list_permission_rules(
    role: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
) -> List[PermissionRuleResponse]:
    return await roles_service.list_permission_rules(db, role)


@router.post("/permissions", response_model=PermissionRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_permission_rule(
    payload: PermissionRuleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_platform_admin),
) -> PermissionRuleResponse:
    try:
        return await roles_service.create_permission_rule(db, payload, current_user.id)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.delete("/permissions/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission_rule(
    rule_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_platform_admin),
) -> Response:
    try:
        await roles_service.delete_permission_rule(db, rule_id, current_user.id)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----- Field permissions (platform-wide) -----

@router.get("/field-permissions", response_model=List[FieldPermissionResponse])
async def list_field_permissions(
    module_key: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[FieldPermissionResponse]:
    return await roles_service.list_field_permissions(db, module_key)


@router.put("/field-permissions", response_model=FieldPermissionResponse)
async def upsert_field_permission(
    payload: FieldPermissionUpsert,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_platform_admin),
) -> FieldPermissionResponse:
    return await roles_service.upsert_field_permission(db, payload)


# ----- Decision check -----

@router.post("/check", response_model=PermissionCheckResponse)
async def check(
    payload: PermissionCheckRequest,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> PermissionCheckResponse:
    """Would the caller be allowed? Answers without raising or auditing."""
    try:
        decision = await auth_service.evaluate(db, current_user, school_id, payload.resource, payload.action, payload.context)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
    return PermissionCheckResponse(allowed=decision.allowed, reason=decision.reason, role=decision.role)
