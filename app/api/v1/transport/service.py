"""
Trip execution: trip instance lifecycle, boarding logs, incidents and alerts.
Headcount discrepancies raise a transport alert instead of failing the request.
"""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.auth import services as auth_service
from app.auth.schemas import CurrentUser
from app.core import audit_service, reconciliation
from app.core.config import settings
from app.core.enums import AlertPriority, ResourceType, TripStatus
from app.core.errors import conflict_from_stale
from app.core.exceptions import ConflictError, NotFoundError, TransitionError
from app.core.models import StudentTripLog, TransportAlert, TripEvent, TripInstance
from app.core.workflows import transport
from app.core.workflows.base import INVALID_TRANSITION

from .schemas import StudentLogCreate, TripCreate, TripEventCreate, TripResponse, TripTransition

logger = logging.getLogger(__name__)

MODULE_KEY = "TRANSPORT"
RESOURCE = ResourceType.STUDENTS.value
HEADCOUNT_MISMATCH = "headcount_mismatch"
CRITICAL_EVENT = "critical_event"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def to_response(trip: TripInstance) -> TripResponse:
    data = TripResponse.model_validate(trip)
    data.allowed_transitions = sorted(transport.MACHINE.allowed_transitions(trip.status))
    return data


async def _get_trip(db: AsyncSession, school_id: UUID, trip_instance_id: UUID) -> TripInstance:
    stmt = (
        select(TripInstance)
        .where(TripInstance.id == trip_instance_id, TripInstance.school_id == school_id)
        .with_for_update()
    )
    trip = (await db.execute(stmt)).scalar_one_or_none()
    if trip is None:
        raise NotFoundError("Trip not found")
    return trip


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        raise conflict_from_stale(e)


# ----- Headcount -----

async def reconcile_trip(db: AsyncSession, trip: TripInstance, tolerance: Optional[int] = None) -> Optional[TransportAlert]:
    """
    Rebuild boarded/dropped from the logs. On a mismatch, open one headcount alert
    for the trip (never a second while one is open); when the counts agree again
    the open alert is resolved automatically. Returns the alert opened, if any.
    """
    tolerance = settings.transport_headcount_tolerance if tolerance is None else tolerance
    result = await db.execute(select(StudentTripLog).where(StudentTripLog.trip_instance_id == trip.id))
    headcount = reconciliation.trip_headcount(
        result.scalars().all(),
        trip.total_students_expected or 0,
        trip.status == TripStatus.COMPLETED.value,
        tolerance,
    )
    if trip.total_students_boarded != headcount.boarded:
        trip.total_students_boarded = headcount.boarded
    if trip.total_students_dropped != headcount.dropped:
        trip.total_students_dropped = headcount.dropped

    open_stmt = select(TransportAlert).where(
        TransportAlert.trip_instance_id == trip.id,
        TransportAlert.alert_type == HEADCOUNT_MISMATCH,
        TransportAlert.resolved_at.is_(None),
    )
    open_alert = (await db.execute(open_stmt)).scalars().first()

    if not headcount.mismatch:
        if open_alert is not None:
            open_alert.resolved_at = _now()
            open_alert.auto_resolved = True
            logger.info("trip %s headcount reconciled; alert %s auto-resolved", trip.id, open_alert.id)
        return None
    if open_alert is not None:
        open_alert.message = headcount.reason
        open_alert.details = _headcount_details(headcount, tolerance)
        return None

    logger.warning("trip %s headcount mismatch: %s", trip.id, headcount.reason)
    alert = TransportAlert(
        school_id=trip.school_id,
        trip_instance_id=trip.id,
        alert_type=HEADCOUNT_MISMATCH,
        priority=AlertPriority.HIGH.value,
        title="Student headcount mismatch",
        message=headcount.reason,
        details=_headcount_details(headcount, tolerance),
    )
    db.add(alert)
    await db.flush()
    return alert


def _headcount_details(headcount: reconciliation.Headcount, tolerance: int) -> dict:
    return {
        "boarded": headcount.boarded,
        "dropped": headcount.dropped,
        "expected": headcount.expected,
        "tolerance": tolerance,
    }


# ----- Trips -----

async def create_trip(db: AsyncSession, school_id: UUID, payload: TripCreate, user: CurrentUser) -> TripInstance:
    trip = TripInstance(
        school_id=school_id,
        trip_id=payload.trip_id,
        instance_date=payload.instance_date,
        status=TripStatus.SCHEDULED.value,
        total_students_expected=payload.total_students_expected,
        actual_vehicle_id=payload.actual_vehicle_id,
        actual_driver_id=payload.actual_driver_id,
    )
    db.add(trip)
    await db.flush()
    await audit_service.log_audit(
        db, school_id, RESOURCE, trip.id, "trip_scheduled",
        user_id=user.id,
        new_values={"trip_id": trip.trip_id, "instance_date": trip.instance_date, "expected": trip.total_students_expected},
    )
    await db.commit()
    await db.refresh(trip)
    return trip


async def list_trips(
    db: AsyncSession,
    school_id: UUID,
    instance_date: Optional[date] = None,
    status_filter: Optional[str] = None,
) -> List[TripInstance]:
    stmt = select(TripInstance).where(TripInstance.school_id == school_id)
    if instance_date:
        stmt = stmt.where(TripInstance.instance_date == instance_date)
    if status_filter:
        stmt = stmt.where(TripInstance.status == status_filter)
    result = await db.execute(stmt.order_by(TripInstance.instance_date.desc()))
    return list(result.scalars().all())


async def get_trip(db: AsyncSession, school_id: UUID, trip_instance_id: UUID) -> TripInstance:
    return await _get_trip(db, school_id, trip_instance_id)


async def transition_trip(
    db: AsyncSession,
    school_id: UUID,
    trip_instance_id: UUID,
    payload: TripTransition,
    user: CurrentUser,
) -> Tuple[TripInstance, List[str], Optional[TransportAlert]]:
    trip = await _get_trip(db, school_id, trip_instance_id)
    if payload.expected_version != trip.version:
        raise ConflictError()

    actor = await auth_service.build_actor(db, user, school_id, RESOURCE)
    result = transport.MACHINE.apply(trip.status, payload.status, actor, payload.model_dump(exclude_none=True))
    if not result.accepted:
        logger.info("trip %s: rejected %s -> %s (%s)", trip.id, trip.status, payload.status, result.reason)
        result.raise_for_rejection()

    old_status = trip.status
    trip.status = result.new_state
    if result.new_state == TripStatus.DELAYED.value:
        trip.delay_reason = payload.delay_reason
        trip.delay_minutes = payload.delay_minutes
    if result.new_state == TripStatus.CANCELLED.value:
        trip.cancellation_reason = payload.cancellation_reason
    if payload.actual_distance_km is not None:
        trip.actual_distance_km = payload.actual_distance_km
    if payload.fuel_consumed_litres is not None:
        trip.fuel_consumed_litres = payload.fuel_consumed_litres

    alert = None
    for effect in result.effects:
        if effect == "record_start_time":
            trip.actual_start_time = _now()
        elif effect == "record_end_time":
            trip.actual_end_time = _now()
        elif effect == "reconcile_headcount":
            alert = await reconcile_trip(db, trip)

    await audit_service.log_audit(
        db, school_id, RESOURCE, trip.id, "trip_status_changed",
        user_id=user.id,
        old_values={"status": old_status},
        new_values={"status": trip.status, "effects": list(result.effects), "alert_id": alert.id if alert else None},
    )
    logger.info("trip %s: %s -> %s by %s", trip.id, old_status, trip.status, user.id)
    await _commit(db)
    await db.refresh(trip)
    return trip, list(result.effects), alert


# ----- Boarding logs -----

async def record_log(
    db: AsyncSession,
    school_id: UUID,
    trip_instance_id: UUID,
    payload: StudentLogCreate,
    user: CurrentUser,
) -> StudentTripLog:
    trip = await _get_trip(db, school_id, trip_instance_id)
    if not transport.accepts_logs(trip.status):
        raise TransitionError(
            INVALID_TRANSITION,
            f"Boarding logs are only accepted while the trip is running (trip is {trip.status})",
            field="trip_instance_id",
        )
    log = StudentTripLog(
        school_id=school_id,
        trip_instance_id=trip.id,
        student_id=payload.student_id,
        action_type=payload.action_type.value,
        trip_stop_id=payload.trip_stop_id,
        recorded_by=user.id,
        recorded_method=payload.recorded_method,
        notes=payload.notes,
    )
    db.add(log)
    await db.flush()
    await reconcile_trip(db, trip)
    await _commit(db)
    await db.refresh(log)
    return log


async def list_logs(db: AsyncSession, school_id: UUID, trip_instance_id: UUID) -> List[StudentTripLog]:
    await _get_trip(db, school_id, trip_instance_id)
    result = await db.execute(
        select(StudentTripLog)
        .where(StudentTripLog.trip_instance_id == trip_instance_id)
        .order_by(StudentTripLog.action_time)
    )
    return list(result.scalars().all())


# ----- Events -----

async def report_event(
    db: AsyncSession,
    school_id: UUID,
    trip_instance_id: UUID,
    payload: TripEventCreate,
    user: CurrentUser,
) -> TripEvent:
    """Record an incident. Critical incidents also raise an alert."""
    trip = await _get_trip(db, school_id, trip_instance_id)
    event = TripEvent(
        school_id=school_id,
        trip_instance_id=trip.id,
        event_type=payload.event_type,
        severity=payload.severity.value,
        description=payload.description,
        reported_by=user.id,
        affected_students_count=payload.affected_students_count,
    )
    db.add(event)
    await db.flush()
    if payload.severity == AlertPriority.CRITICAL:
        db.add(
            TransportAlert(
                school_id=school_id,
                trip_instance_id=trip.id,
                alert_type=CRITICAL_EVENT,
                priority=AlertPriority.CRITICAL.value,
                title=f"Critical incident: {payload.event_type}",
                message=payload.description,
                details={"event_id": str(event.id), "affected_students_count": payload.affected_students_count},
            )
        )
        logger.warning("trip %s critical event %s", trip.id, payload.event_type)
    await audit_service.log_audit(
        db, school_id, RESOURCE, trip.id, "trip_event_reported",
        user_id=user.id, new_values={"event_id": event.id, "event_type": event.event_type, "severity": event.severity},
    )
    await db.commit()
    await db.refresh(event)
    return event


async def list_events(db: AsyncSession, school_id: UUID, trip_instance_id: UUID) -> List[TripEvent]:
    await _get_trip(db, school_id, trip_instance_id)
    result = await db.execute(
        select(TripEvent).where(TripEvent.trip_instance_id == trip_instance_id).order_by(TripEvent.event_time)
    )
    return list(result.scalars().all())


# ----- Alerts -----

async def list_alerts(
    db: AsyncSession,
    school_id: UUID,
    open_only: bool = True,
    trip_instance_id: Optional[UUID] = None,
) -> List[TransportAlert]:
    stmt = select(TransportAlert).where(TransportAlert.school_id == school_id)
    if open_only:
        stmt = stmt.where(TransportAlert.resolved_at.is_(None))
    if trip_instance_id:
        stmt = stmt.where(TransportAlert.trip_instance_id == trip_instance_id)
    result = await db.execute(stmt.order_by(TransportAlert.created_at.desc()))
    return list(result.scalars().all())


async def _get_alert(db: AsyncSession, school_id: UUID, alert_id: UUID) -> TransportAlert:
    alert = await db.get(TransportAlert, alert_id)
    if alert is None or alert.school_id != school_id:
        raise NotFoundError("Alert not found")
    return alert


async def acknowledge_alert(db: AsyncSession, school_id: UUID, alert_id: UUID, user: CurrentUser) -> TransportAlert:
    alert = await _get_alert(db, school_id, alert_id)
    if alert.acknowledged_at is None:
        alert.acknowledged_at = _now()
        alert.acknowledged_by = user.id
        await audit_service.log_audit(db, school_id, RESOURCE, alert.id, "alert_acknowledged", user_id=user.id)
        await db.commit()
        await db.refresh(alert)
    return alert


async def resolve_alert(
    db: AsyncSession,
    school_id: UUID,
    alert_id: UUID,
    user: CurrentUser,
    notes: Optional[str] = None,
) -> TransportAlert:
    alert = await _get_alert(db, school_id, alert_id)
    if alert.resolved_at is not None:
        raise TransitionError(INVALID_TRANSITION, "Alert is already resolved")
    now = _now()
    if alert.acknowledged_at is None:
        alert.acknowledged_at = now
        alert.acknowledged_by = user.id
    alert.resolved_at = now
    alert.resolved_by = user.id
    if notes:
        alert.details = {**(alert.details or {}), "resolution_notes": notes}
    await audit_service.log_audit(
        db, school_id, RESOURCE, alert.id, "alert_resolved", user_id=user.id, new_values={"notes": notes}
    )
    await db.commit()
    await db.refresh(alert)
    return alert
