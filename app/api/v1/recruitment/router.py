from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user, require_school
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.errors import to_http_exception
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import JobApplicationCreate, JobApplicationResponse, JobApplicationTransition, JobApplicationUpdate
from . import service

router = APIRouter(prefix="/api/v1/recruitment", tags=["recruitment"])

can_read = check_permission(service.RESOURCE, "read")
can_write = check_permission(service.RESOURCE, "write")


@router.post(
    "/applications",
    response_model=JobApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def create_application(
    payload: JobApplicationCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> JobApplicationResponse:
    application = await service.create_application(db, school_id, payload, current_user)
    return service.to_response(application)


@router.get("/applications", response_model=List[JobApplicationResponse], dependencies=[Depends(can_read)])
async def list_applications(
    job_posting_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[JobApplicationResponse]:
    applications = await service.list_applications(db, school_id, job_posting_id, status_filter)
    return [service.to_response(a) for a in applications]


@router.get("/applications/{application_id}", response_model=JobApplicationResponse, dependencies=[Depends(can_read)])
async def get_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> JobApplicationResponse:
    try:
        return service.to_response(await service.get_application(db, school_id, application_id))
    except ServiceError as e:
        raise to_http_exception(e)


@router.patch("/applications/{application_id}", response_model=JobApplicationResponse, dependencies=[Depends(can_write)])
async def update_application(
    application_id: UUID,
    payload: JobApplicationUpdate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> JobApplicationResponse:
    try:
        application = await service.update_application(db, school_id, application_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
    return service.to_response(application)


@router.post("/applications/{application_id}/transition", response_model=JobApplicationResponse)
async def transition_application(
    application_id: UUID,
    payload: JobApplicationTransition,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> JobApplicationResponse:
    """Permission is decided per edge by the pipeline, so the applicant can withdraw."""
    try:
        application = await service.transition_application(db, school_id, application_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
    return service.to_response(application)
