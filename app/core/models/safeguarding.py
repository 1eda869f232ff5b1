from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid

from app.core.enums import RecordStatus
from app.db.mixins import TenantScopedMixin
from app.db.session import Base


class SafeguardingConcern(TenantScopedMixin, Base):
    """A reported welfare concern about a student. Visible only to holders of safeguarding_logs permissions."""

    __tablename__ = "safeguarding_concerns"
    __table_args__ = (
        UniqueConstraint("school_id", "concern_number", name="uq_safeguarding_concern_number"),
    )

    concern_number = Column(String(50), nullable=False)
    student_id = Column(Uuid, nullable=False, index=True)
    concern_type = Column(String(50), nullable=False)
    risk_level = Column(String(20), nullable=False)
    concern_details = Column(Text, nullable=False)
    incident_date = Column(Date, nullable=True)
    location = Column(String(255), nullable=True)
    witnesses = Column(JSON, nullable=True)
    immediate_action_taken = Column(Text, nullable=True)
    reported_by = Column(Uuid, ForeignKey("profiles.id"), nullable=False)
    dsl_assigned = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(20), nullable=False, default=RecordStatus.OPEN.value)
    parents_informed = Column(Boolean, nullable=True)
    police_involved = Column(Boolean, nullable=True)
    social_services_involved = Column(Boolean, nullable=True)
    case_notes = Column(Text, nullable=True)
    outcome = Column(Text, nullable=True)
    next_review_date = Column(Date, nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
