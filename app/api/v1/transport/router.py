from datetime import date
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
    AlertResolve,
    AlertResponse,
    StudentLogCreate,
    StudentLogResponse,
    TripCreate,
    TripEventCreate,
    TripEventResponse,
    TripResponse,
    TripTransition,
    TripTransitionResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/transport", tags=["transport"])

can_read = check_module_permission(service.MODULE_KEY, service.RESOURCE, "read")
can_write = check_module_permission(service.MODULE_KEY, service.RESOURCE, "write")


# ----- Trips -----

@router.post(
    "/trips",
    response_model=TripResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def create_trip(
    payload: TripCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> TripResponse:
    trip = await service.create_trip(db, school_id, payload, current_user)
    return service.to_response(trip)


@router.get("/trips", response_model=List[TripResponse], dependencies=[Depends(can_read)])
async def list_trips(
    instance_date: Optional[date] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[TripResponse]:
    trips = await service.list_trips(db, school_id, instance_date, status_filter)
    return [service.to_response(t) for t in trips]


@router.get("/trips/{trip_instance_id}", response_model=TripResponse, dependencies=[Depends(can_read)])
async def get_trip(
    trip_instance_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> TripResponse:
    try:
        return service.to_response(await service.get_trip(db, school_id, trip_instance_id))
    except ServiceError as e:
        raise to_http_exception(e)


@router.post(
    "/trips/{trip_instance_id}/transition",
    response_model=TripTransitionResponse,
    dependencies=[Depends(can_write)],
)
async def transition_trip(
    trip_instance_id: UUID,
    payload: TripTransition,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> TripTransitionResponse:
    try:
        trip, effects, alert = await service.transition_trip(db, school_id, trip_instance_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
    return TripTransitionResponse(trip=service.to_response(trip), effects=effects, alert_id=alert.id if alert else None)


# ----- Boarding logs -----

@router.post(
    "/trips/{trip_instance_id}/logs",
    response_model=StudentLogResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def record_log(
    trip_instance_id: UUID,
    payload: StudentLogCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLogResponse:
    try:
        return await service.record_log(db, school_id, trip_instance_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/trips/{trip_instance_id}/logs", response_model=List[StudentLogResponse], dependencies=[Depends(can_read)])
async def list_logs(
    trip_instance_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[StudentLogResponse]:
    try:
        return await service.list_logs(db, school_id, trip_instance_id)
    except ServiceError as e:
        raise to_http_exception(e)


# ----- Events -----

@router.post(
    "/trips/{trip_instance_id}/events",
    response_model=TripEventResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_write)],
)
async def report_event(
    trip_instance_id: UUID,
    payload: TripEventCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> TripEventResponse:
    try:
        return await service.report_event(db, school_id, trip_instance_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/trips/{trip_instance_id}/events", response_model=List[TripEventResponse], dependencies=[Depends(can_read)])
async def list_events(
    trip_instance_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[TripEventResponse]:
    try:
        return await service.list_events(db, school_id, trip_instance_id)
    except ServiceError as e:
        raise to_http_exception(e)


# ----- Alerts -----

@router.get("/alerts", response_model=List[AlertResponse], dependencies=[Depends(can_read)])
async def list_alerts(
    open_only: bool = True,
    trip_instance_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[AlertResponse]:
    return await service.list_alerts(db, school_id, open_only, trip_instance_id)


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse, dependencies=[Depends(can_write)])
async def acknowledge_alert(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> AlertResponse:
    try:
        return await service.acknowledge_alert(db, school_id, alert_id, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse, dependencies=[Depends(can_write)])
async def resolve_alert(
    alert_id: UUID,
    payload: Optional[AlertResolve] = None,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> AlertResponse:
    try:
        return await service.resolve_alert(db, school_id, alert_id, current_user, payload.notes if payload else None)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
