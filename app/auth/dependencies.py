from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import Profile
from app.auth.schemas import CurrentUser, RoleAssignmentInfo
from app.auth.security import decode_access_token
from app.auth.services import get_school_or_raise, load_assignments
from app.core.exceptions import ServiceError
from app.db.session import get_db


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login-oauth")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    x_school_id: Optional[str] = Header(None, alias="X-School-Id"),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the authenticated user, the active school and their role assignments in it.

    The active school comes from the X-School-Id header, falling back to the token's school_id claim.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    user_id_str = payload.get("user_id") or payload.get("sub")
    if not user_id_str:
        raise credentials_exception
    try:
        user_id = UUID(user_id_str)
    except ValueError:
        raise credentials_exception

    school_id_str = x_school_id or payload.get("school_id")
    school_id: Optional[UUID] = None
    if school_id_str:
        try:
            school_id = UUID(school_id_str)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed school id")

    user = await db.get(Profile, user_id)
    if not user or not user.is_active:
        raise credentials_exception

    if school_id is not None:
        try:
            await get_school_or_raise(db, school_id)
        except ServiceError as e:
            raise HTTPException(status_code=e.status_code, detail=e.to_detail())

    assignments = await load_assignments(db, user.id, school_id)
    return CurrentUser(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        school_id=school_id,
        assignments=[RoleAssignmentInfo.model_validate(a) for a in assignments],
    )


async def require_school(current_user: CurrentUser = Depends(get_current_user)) -> UUID:
    """The active school id; every tenant-scoped endpoint depends on it."""
    if current_user.school_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "unknown_tenant", "message": "Select a school with the X-School-Id header"},
        )
    return current_user.school_id
