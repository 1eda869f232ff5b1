from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user, require_school
from app.auth.rbac import check_permission, require_platform_admin
from app.auth.schemas import CurrentUser
from app.core.errors import to_http_exception
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
from .schemas import (
    ModuleCreate,
    ModuleResponse,
    SchoolCreate,
    SchoolModulesResponse,
    SchoolModuleUpdate,
    SchoolResponse,
    SchoolSettingsUpdate,
)

router = APIRouter(prefix="/api/v1/schools", tags=["schools"])
modules_router = APIRouter(prefix="/api/v1/modules", tags=["modules"])


@router.post("", response_model=SchoolResponse, status_code=status.HTTP_201_CREATED)
async def create_school(
    payload: SchoolCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_platform_admin),
) -> SchoolResponse:
    """Create a school. Platform super admin only."""
    try:
        return await service.create_school(db, payload, current_user.id)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("", response_model=List[SchoolResponse])
async def list_schools(
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_platform_admin),
) -> List[SchoolResponse]:
    return await service.list_schools(db, include_inactive=include_inactive)


@router.get(
    "/current",
    response_model=SchoolResponse,
    dependencies=[Depends(check_permission("system_settings", "read"))],
)
async def get_current_school(
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> SchoolResponse:
    try:
        return await service.get_school(db, school_id)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.patch(
    "/current/settings",
    response_model=SchoolResponse,
    dependencies=[Depends(check_permission("system_settings", "write"))],
)
async def update_current_school_settings(
    payload: SchoolSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> SchoolResponse:
    try:
        return await service.update_school_settings(db, school_id, payload.settings, current_user.id)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/{school_id}/deactivate", response_model=SchoolResponse)
async def deactivate_school(
    school_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_platform_admin),
) -> SchoolResponse:
    """Deactivate a school. Its data is kept; requests against it are refused until reactivated."""
    try:
        return await service.set_school_active(db, school_id, False, current_user.id)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/{school_id}/reactivate", response_model=SchoolResponse)
async def reactivate_school(
    school_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_platform_admin),
) -> SchoolResponse:
    try:
        return await service.set_school_active(db, school_id, True, current_user.id)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get(
    "/current/modules",
    response_model=SchoolModulesResponse,
    dependencies=[Depends(check_permission("system_settings", "read"))],
)
async def get_current_school_modules(
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> SchoolModulesResponse:
    try:
        return await service.get_school_modules(db, school_id)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.put(
    "/current/modules/{module_key}",
    response_model=SchoolModulesResponse,
    dependencies=[Depends(check_permission("system_settings", "write"))],
)
async def set_current_school_module(
    module_key: str,
    payload: SchoolModuleUpdate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> SchoolModulesResponse:
    """Enable, disable (read-only) or revoke (no access) a module for the active school."""
    try:
        return await service.set_school_module(db, school_id, module_key, payload, current_user.id)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Module catalogue -----

@modules_router.get("", response_model=List[ModuleResponse])
async def list_modules(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[ModuleResponse]:
    return await service.list_modules(db)


@modules_router.post("", response_model=ModuleResponse, status_code=status.HTTP_201_CREATED)
async def create_module(
    payload: ModuleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_platform_admin),
) -> ModuleResponse:
    try:
        return await service.create_module(db, payload)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
