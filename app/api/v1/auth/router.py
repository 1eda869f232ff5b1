from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser, LoginRequest, LoginResponse, MeResponse, UserInfo
from app.auth.services import login_user
from app.core.errors import to_http_exception
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import roles_service

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8)
    phone: Optional[str] = None


@router.post(
    "/login",
    response_model=LoginResponse,
    status_code=http_status.HTTP_200_OK,
)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    try:
        return await login_user(db, payload)
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/login-oauth")
async def login_oauth(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    payload = LoginRequest(
        email=form_data.username.strip(),
        password=form_data.password,
    )
    try:
        result = await login_user(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {
        "access_token": result.access_token,
        "token_type": "bearer",
    }


@router.get("/me", response_model=MeResponse)
async def me(current_user: CurrentUser = Depends(get_current_user)) -> MeResponse:
    """The caller's profile and live role assignments in the active school."""
    return MeResponse(
        user=UserInfo(id=current_user.id, name=current_user.full_name, email=current_user.email),
        school_id=current_user.school_id,
        assignments=current_user.assignments,
    )


@router.post(
    "/users",
    response_model=UserInfo,
    status_code=http_status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("staff_management", "write"))],
)
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> UserInfo:
    """Create a login identity. Roles are granted separately per school."""
    try:
        profile = await roles_service.create_profile(db, payload.email, payload.full_name, payload.password, payload.phone)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
    return UserInfo(id=profile.id, name=profile.full_name, email=profile.email)
