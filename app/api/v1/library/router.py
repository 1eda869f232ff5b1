from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user, require_school
from app.auth.rbac import check_module_permission
from app.auth.schemas import CurrentUser
from app.core.errors import to_http_exception
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    BookCopyCreate,
    BookCopyResponse,
    BookCopyStatusUpdate,
    BookTitleCreate,
    BookTitleResponse,
    CirculationResponse,
    FinePayment,
    FineResponse,
    FineWaive,
    IssueRequest,
    LibrarySettingsResponse,
    LibrarySettingsUpdate,
    MemberBlock,
    MemberCreate,
    MemberResponse,
    ReturnRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/library", tags=["library"])

can_read = check_module_permission(service.MODULE_KEY, service.RESOURCE, "read")
can_write = check_module_permission(service.MODULE_KEY, service.RESOURCE, "write")
can_approve = check_module_permission(service.MODULE_KEY, service.RESOURCE, "approve")


# ----- Settings -----

@router.get("/settings", response_model=LibrarySettingsResponse, dependencies=[Depends(can_read)])
async def get_settings(
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> LibrarySettingsResponse:
    row = await service.get_settings(db, school_id)
    await db.commit()
    return row


@router.patch("/settings", response_model=LibrarySettingsResponse, dependencies=[Depends(can_approve)])
async def update_settings(
    payload: LibrarySettingsUpdate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> LibrarySettingsResponse:
    return await service.update_settings(db, school_id, payload, current_user)


# ----- Catalogue -----

@router.post(
    "/titles",
    response_model=BookTitleResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def create_title(
    payload: BookTitleCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> BookTitleResponse:
    try:
        return await service.create_title(db, school_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/titles", response_model=List[BookTitleResponse], dependencies=[Depends(can_read)])
async def list_titles(
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[BookTitleResponse]:
    return await service.list_titles(db, school_id, search)


@router.get("/titles/{title_id}", response_model=BookTitleResponse, dependencies=[Depends(can_read)])
async def get_title(
    title_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> BookTitleResponse:
    try:
        return await service.get_title(db, school_id, title_id)
    except ServiceError as e:
        raise to_http_exception(e)


@router.post(
    "/titles/{title_id}/copies",
    response_model=BookCopyResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def add_copy(
    title_id: UUID,
    payload: BookCopyCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> BookCopyResponse:
    try:
        return await service.add_copy(db, school_id, title_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/titles/{title_id}/copies", response_model=List[BookCopyResponse], dependencies=[Depends(can_read)])
async def list_copies(
    title_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[BookCopyResponse]:
    try:
        return await service.list_copies(db, school_id, title_id)
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/copies/{copy_id}/status", response_model=BookCopyResponse, dependencies=[Depends(can_write)])
async def set_copy_status(
    copy_id: UUID,
    payload: BookCopyStatusUpdate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> BookCopyResponse:
    try:
        return await service.set_copy_status(db, school_id, copy_id, payload.status, current_user, payload.reason)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Members -----

@router.post(
    "/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def create_member(
    payload: MemberCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> MemberResponse:
    try:
        return await service.create_member(db, school_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/members", response_model=List[MemberResponse], dependencies=[Depends(can_read)])
async def list_members(
    member_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[MemberResponse]:
    return await service.list_members(db, school_id, member_type)


@router.post("/members/{member_id}/block", response_model=MemberResponse, dependencies=[Depends(can_write)])
async def set_member_blocked(
    member_id: UUID,
    payload: MemberBlock,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> MemberResponse:
    try:
        return await service.set_member_blocked(db, school_id, member_id, payload.is_blocked, current_user, payload.reason)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Circulation -----

@router.post(
    "/circulation/issue",
    response_model=CirculationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def issue_copy(
    payload: IssueRequest,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> CirculationResponse:
    try:
        return await service.issue_copy(db, school_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/circulation", response_model=List[CirculationResponse], dependencies=[Depends(can_read)])
async def list_circulations(
    member_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    overdue_only: bool = False,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[CirculationResponse]:
    return await service.list_circulations(
        db, school_id, member_id=member_id, status_filter=status_filter, overdue_only=overdue_only
    )


@router.post("/circulation/{circulation_id}/renew", response_model=CirculationResponse, dependencies=[Depends(can_write)])
async def renew_loan(
    circulation_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> CirculationResponse:
    try:
        return await service.renew_loan(db, school_id, circulation_id, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/circulation/{circulation_id}/return", response_model=CirculationResponse, dependencies=[Depends(can_write)])
async def return_copy(
    circulation_id: UUID,
    payload: Optional[ReturnRequest] = None,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> CirculationResponse:
    try:
        return await service.return_copy(db, school_id, circulation_id, payload or ReturnRequest(), current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/circulation/{circulation_id}/lost", response_model=CirculationResponse, dependencies=[Depends(can_write)])
async def mark_lost(
    circulation_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> CirculationResponse:
    try:
        return await service.mark_lost(db, school_id, circulation_id, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Fines -----

@router.get("/fines", response_model=List[FineResponse], dependencies=[Depends(can_read)])
async def list_fines(
    member_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[FineResponse]:
    return await service.list_fines(db, school_id, member_id, status_filter)


@router.post("/fines/{fine_id}/pay", response_model=FineResponse, dependencies=[Depends(can_write)])
async def pay_fine(
    fine_id: UUID,
    payload: FinePayment,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> FineResponse:
    try:
        return await service.pay_fine(db, school_id, fine_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/fines/{fine_id}/waive", response_model=FineResponse, dependencies=[Depends(can_approve)])
async def waive_fine(
    fine_id: UUID,
    payload: FineWaive,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> FineResponse:
    try:
        return await service.waive_fine(db, school_id, fine_id, payload.reason, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
