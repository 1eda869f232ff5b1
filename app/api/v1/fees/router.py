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

from .schemas import (
    CollectionSessionResponse,
    InstallmentPlanCreate,
    InstallmentPlanResponse,
    InstallmentWaive,
    OutstandingFeeCreate,
    OutstandingFeeResponse,
    PaymentCreate,
    PaymentRefund,
    PaymentResponse,
    SessionClose,
    SessionReview,
    SessionStart,
)
from . import service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])

can_read = check_permission(service.RESOURCE, "read")
can_write = check_permission(service.RESOURCE, "write")
can_approve = check_permission(service.RESOURCE, "approve")


# ----- Outstanding fees -----

@router.post(
    "/outstanding",
    response_model=OutstandingFeeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def create_fee(
    payload: OutstandingFeeCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> OutstandingFeeResponse:
    return await service.create_fee(db, school_id, payload, current_user)


@router.get("/outstanding", response_model=List[OutstandingFeeResponse], dependencies=[Depends(can_read)])
async def list_fees(
    student_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[OutstandingFeeResponse]:
    return await service.list_fees(db, school_id, student_id, status_filter)


# ----- Collection sessions -----

@router.post(
    "/sessions",
    response_model=CollectionSessionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def start_session(
    payload: SessionStart,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> CollectionSessionResponse:
    try:
        return await service.start_session(db, school_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/sessions", response_model=List[CollectionSessionResponse], dependencies=[Depends(can_read)])
async def list_sessions(
    cashier_id: Optional[UUID] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[CollectionSessionResponse]:
    return await service.list_sessions(db, school_id, cashier_id, status_filter)


@router.get("/sessions/{session_id}", response_model=CollectionSessionResponse, dependencies=[Depends(can_read)])
async def get_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> CollectionSessionResponse:
    try:
        return await service.get_session(db, school_id, session_id)
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/sessions/{session_id}/close", response_model=CollectionSessionResponse, dependencies=[Depends(can_write)])
async def close_session(
    session_id: UUID,
    payload: SessionClose,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> CollectionSessionResponse:
    try:
        return await service.close_session(
            db, school_id, session_id, payload.closing_cash_amount, payload.expected_version, current_user, payload.notes
        )
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/sessions/{session_id}/reconcile", response_model=CollectionSessionResponse, dependencies=[Depends(can_approve)])
async def reconcile_session(
    session_id: UUID,
    payload: SessionReview,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> CollectionSessionResponse:
    try:
        return await service.reconcile_session(db, school_id, session_id, payload.expected_version, current_user, payload.notes)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/sessions/{session_id}/approve", response_model=CollectionSessionResponse, dependencies=[Depends(can_approve)])
async def approve_session(
    session_id: UUID,
    payload: SessionReview,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> CollectionSessionResponse:
    try:
        return await service.approve_session(db, school_id, session_id, payload.expected_version, current_user, payload.notes)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Payments -----

@router.post(
    "/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def record_payment(
    payload: PaymentCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResponse:
    """Record a payment. Replaying a receipt_number returns the original payment with 200."""
    try:
        payment, created = await service.record_payment(db, school_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
    if not created:
        response.status_code = status.HTTP_200_OK
    return payment


@router.get("/payments", response_model=List[PaymentResponse], dependencies=[Depends(can_read)])
async def list_payments(
    student_id: Optional[UUID] = None,
    collection_session_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[PaymentResponse]:
    return await service.list_payments(db, school_id, student_id, collection_session_id)


@router.post("/payments/{payment_id}/refund", response_model=PaymentResponse, dependencies=[Depends(can_approve)])
async def refund_payment(
    payment_id: UUID,
    payload: PaymentRefund,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResponse:
    try:
        return await service.refund_payment(db, school_id, payment_id, payload.reason, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Installment plans -----

@router.post(
    "/installment-plans",
    response_model=InstallmentPlanResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def create_plan(
    payload: InstallmentPlanCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> InstallmentPlanResponse:
    try:
        return await service.create_plan(db, school_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/installment-plans", response_model=List[InstallmentPlanResponse], dependencies=[Depends(can_read)])
async def list_plans(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[InstallmentPlanResponse]:
    return await service.list_plans(db, school_id, status_filter)


@router.get("/installment-plans/{plan_id}", response_model=InstallmentPlanResponse, dependencies=[Depends(can_read)])
async def get_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> InstallmentPlanResponse:
    try:
        return await service.get_plan(db, school_id, plan_id)
    except ServiceError as e:
        raise to_http_exception(e)


@router.post("/installment-plans/{plan_id}/cancel", response_model=InstallmentPlanResponse, dependencies=[Depends(can_approve)])
async def cancel_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> InstallmentPlanResponse:
    try:
        return await service.cancel_plan(db, school_id, plan_id, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/installments/{schedule_id}/waive", response_model=InstallmentPlanResponse, dependencies=[Depends(can_approve)])
async def waive_installment(
    schedule_id: UUID,
    payload: InstallmentWaive,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> InstallmentPlanResponse:
    try:
        return await service.waive_installment(db, school_id, schedule_id, payload.reason, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
