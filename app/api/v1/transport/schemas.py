from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import AlertPriority, TripAction


class TripCreate(BaseModel):
    trip_id: UUID
    instance_date: date
    total_students_expected: int = Field(0, ge=0)
    actual_vehicle_id: Optional[UUID] = None
    actual_driver_id: Optional[UUID] = None


class TripTransition(BaseModel):
    status: str
    expected_version: int
    delay_minutes: Optional[int] = Field(None, ge=0)
    delay_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    actual_distance_km: Optional[Decimal] = None
    fuel_consumed_litres: Optional[Decimal] = None


class TripResponse(BaseModel):
    id: UUID
    school_id: UUID
    trip_id: UUID
    instance_date: date
    status: str
    actual_vehicle_id: Optional[UUID] = None
    actual_driver_id: Optional[UUID] = None
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    actual_distance_km: Optional[Decimal] = None
    fuel_consumed_litres: Optional[Decimal] = None
    delay_minutes: Optional[int] = None
    delay_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    total_students_expected: int
    total_students_boarded: int
    total_students_dropped: int
    version: int
    allowed_transitions: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True


class TripTransitionResponse(BaseModel):
    trip: TripResponse
    effects: List[str]
    # Set when the transition raised a headcount alert
    alert_id: Optional[UUID] = None


class StudentLogCreate(BaseModel):
    student_id: UUID
    action_type: TripAction
    trip_stop_id: Optional[UUID] = None
    recorded_method: Optional[str] = None
    notes: Optional[str] = None


class StudentLogResponse(BaseModel):
    id: UUID
    trip_instance_id: UUID
    student_id: UUID
    action_type: str
    action_time: datetime
    trip_stop_id: Optional[UUID] = None
    recorded_by: Optional[UUID] = None
    recorded_method: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class TripEventCreate(BaseModel):
    event_type: str = Field(..., min_length=1)
    severity: AlertPriority = AlertPriority.LOW
    description: str = Field(..., min_length=1)
    affected_students_count: Optional[int] = Field(None, ge=0)


class TripEventResponse(BaseModel):
    id: UUID
    trip_instance_id: UUID
    event_type: str
    severity: Optional[str] = None
    description: str
    event_time: datetime
    reported_by: Optional[UUID] = None
    affected_students_count: Optional[int] = None

    class Config:
        from_attributes = True


class AlertResolve(BaseModel):
    notes: Optional[str] = None


class AlertResponse(BaseModel):
    id: UUID
    trip_instance_id: Optional[UUID] = None
    alert_type: str
    priority: str
    title: str
    message: str
    details: Optional[Dict[str, Any]] = None
    acknowledged_by: Optional[UUID] = None
    acknowledged_at: Optional[datetime] = None
    resolved_by: Optional[UUID] = None
    resolved_at: Optional[datetime] = None
    auto_resolved: bool
    created_at: datetime

    class Config:
        from_attributes = True
