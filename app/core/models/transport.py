"""
Transport trip execution: daily trip instances, per-student boarding logs, trip events and alerts.
total_students_boarded / total_students_dropped are projections of student_trip_logs.
"""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid

from app.core.enums import AlertPriority, TripStatus
from app.db.mixins import TenantScopedMixin, utcnow
from app.db.session import Base


class TripInstance(TenantScopedMixin, Base):
    __tablename__ = "trip_instances"

    trip_id = Column(Uuid, nullable=False, index=True)
    instance_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=TripStatus.SCHEDULED.value)
    actual_vehicle_id = Column(Uuid, nullable=True)
    actual_driver_id = Column(Uuid, nullable=True)
    actual_start_time = Column(DateTime(timezone=True), nullable=True)
    actual_end_time = Column(DateTime(timezone=True), nullable=True)
    actual_distance_km = Column(Numeric(10, 2), nullable=True)
    fuel_consumed_litres = Column(Numeric(10, 2), nullable=True)
    delay_minutes = Column(Integer, nullable=True)
    delay_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    total_students_expected = Column(Integer, nullable=False, default=0)
    total_students_boarded = Column(Integer, nullable=False, default=0)
    total_students_dropped = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


class StudentTripLog(TenantScopedMixin, Base):
    __tablename__ = "student_trip_logs"

    trip_instance_id = Column(Uuid, ForeignKey("trip_instances.id", ondelete="CASCADE"), nullable=False, index=True)
    trip_stop_id = Column(Uuid, nullable=True)
    student_id = Column(Uuid, nullable=False)
    # board | alight | no_show
    action_type = Column(String(20), nullable=False)
    action_time = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    recorded_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    recorded_method = Column(String(30), nullable=True)
    parent_notified = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)


class TripEvent(TenantScopedMixin, Base):
    __tablename__ = "trip_events"

    trip_instance_id = Column(Uuid, ForeignKey("trip_instances.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=True)
    description = Column(Text, nullable=False)
    event_time = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    reported_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    affected_students_count = Column(Integer, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_notes = Column(Text, nullable=True)


class TransportAlert(TenantScopedMixin, Base):
    __tablename__ = "transport_alerts"

    trip_instance_id = Column(Uuid, ForeignKey("trip_instances.id", ondelete="CASCADE"), nullable=True, index=True)
    alert_type = Column(String(50), nullable=False)
    priority = Column(String(20), nullable=False, default=AlertPriority.MEDIUM.value)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    # Data that raised the alert (counts, tolerance, event id)
    details = Column("metadata", JSON, nullable=True)
    acknowledged_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    auto_resolved = Column(Boolean, nullable=False, default=False)
