from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user, require_school
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.errors import to_http_exception
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import ConcernCreate, ConcernResponse, ConcernTransition, ConcernUpdate
from . import service

router = APIRouter(prefix="/api/v1/safeguarding", tags=["safeguarding"])

can_read = check_permission(service.RESOURCE, "read")
can_write = check_permission(service.RESOURCE, "write")


@router.post(
    "/concerns",
    response_model=ConcernResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def report_concern(
    payload: ConcernCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> ConcernResponse:
    try:
        concern, created = await service.report_concern(db, school_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
    if not created:
        response.status_code = status.HTTP_200_OK
    return service.to_response(concern)


@router.get("/concerns", response_model=List[ConcernResponse], dependencies=[Depends(can_read)])
async def list_concerns(
    student_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    risk_level: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[ConcernResponse]:
    concerns = await service.list_concerns(db, school_id, student_id, status_filter, risk_level)
    return [service.to_response(c) for c in concerns]


@router.get("/concerns/{concern_id}", response_model=ConcernResponse, dependencies=[Depends(can_read)])
async def get_concern(
    concern_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> ConcernResponse:
    try:
        return service.to_response(await service.get_concern(db, school_id, concern_id))
    except ServiceError as e:
        raise to_http_exception(e)


@router.patch("/concerns/{concern_id}", response_model=ConcernResponse, dependencies=[Depends(can_write)])
async def update_concern(
    concern_id: UUID,
    payload: ConcernUpdate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> ConcernResponse:
    try:
        concern = await service.update_concern(db, school_id, concern_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
    return service.to_response(concern)


@router.post("/concerns/{concern_id}/transition", response_model=ConcernResponse, dependencies=[Depends(can_read)])
async def transition_concern(
    concern_id: UUID,
    payload: ConcernTransition,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> ConcernResponse:
    """Escalation needs escalate, every other move needs write; the case workflow checks which."""
    try:
        concern = await service.transition_concern(db, school_id, concern_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
    return service.to_response(concern)
