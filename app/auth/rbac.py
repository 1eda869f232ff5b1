from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import services as auth_service
from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.errors import to_http_exception
from app.core.exceptions import ServiceError
from app.db.session import get_db


async def require_platform_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Require a global super_admin assignment. Used for platform-wide config (schools, module catalogue)."""
    if not auth_service.is_platform_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "permission_denied", "message": "Only a platform super admin can perform this action"},
        )
    return current_user


def check_permission(resource: str, action: str):
    """
    Dependency factory to enforce a specific permission in the active school.

    Example:
        Depends(check_permission("admissions", "write"))
    """

    async def _checker(
        current_user: CurrentUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> None:
        try:
            await auth_service.authorize(db, current_user, current_user.school_id, resource, action)
        except ServiceError as e:
            raise to_http_exception(e, current_user)

    return _checker


def check_module_permission(module_key: str, resource: str, action: str):
    """
    Like check_permission, for feature modules that share a resource type and are
    switched on and off per school by their own key.

    Example:
        Depends(check_module_permission("LIBRARY", "students", "write"))
    """

    async def _checker(
        current_user: CurrentUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> None:
        try:
            if current_user.school_id is not None:
                await auth_service.ensure_module_available(db, current_user, current_user.school_id, module_key, action)
            await auth_service.authorize(db, current_user, current_user.school_id, resource, action)
        except ServiceError as e:
            raise to_http_exception(e, current_user)

    return _checker
