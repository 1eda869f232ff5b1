from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid

from app.core.enums import RecruitmentStatus
from app.db.mixins import TenantScopedMixin
from app.db.session import Base


class JobApplication(TenantScopedMixin, Base):
    """Candidate application to a job posting. Status moves along the recruitment pipeline."""

    __tablename__ = "job_applications"

    job_posting_id = Column(Uuid, nullable=False, index=True)
    applicant_name = Column(String(255), nullable=False)
    applicant_email = Column(String(255), nullable=False)
    applicant_phone = Column(String(50), nullable=True)
    resume_url = Column(Text, nullable=True)
    cover_letter = Column(Text, nullable=True)
    application_source = Column(String(50), nullable=True)
    application_status = Column(String(20), nullable=False, default=RecruitmentStatus.SUBMITTED.value)
    interviewer_id = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    interview_scheduled_at = Column(DateTime(timezone=True), nullable=True)
    interview_notes = Column(Text, nullable=True)
    application_score = Column(Integer, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    rejection_feedback = Column(Text, nullable=True)
    last_transition_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    last_transition_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
