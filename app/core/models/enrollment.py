"""
Enrollment pipeline: application (status mutable along the declared graph, optimistic version),
workflow steps (drive completion percentage), documents, overrides.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.core.enums import EnrollmentStatus
from app.db.mixins import TenantScopedMixin, TimestampMixin, utcnow
from app.db.session import Base


class EnrollmentType(TimestampMixin, Base):
    """Per-pathway requirement flags. school_id null = platform default for the pathway."""

    __tablename__ = "enrollment_types"
    __table_args__ = (
        UniqueConstraint("school_id", "pathway", name="uq_enrollment_type_school_pathway"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    pathway = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    requires_assessment = Column(Boolean, default=True, nullable=False)
    requires_interview = Column(Boolean, default=True, nullable=False)
    requires_payment = Column(Boolean, default=False, nullable=False)
    auto_approve_siblings = Column(Boolean, default=False, nullable=False)
    priority_level = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class EnrollmentWorkflow(TimestampMixin, Base):
    """Workflow template. steps_config: [{"step_type", "step_name", "order_index", "is_required"}]."""

    __tablename__ = "enrollment_workflows"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    pathway = Column(String(50), nullable=False)
    steps_config = Column(JSON, nullable=False, default=list)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class EnrollmentApplication(TenantScopedMixin, Base):
    __tablename__ = "enrollment_applications"
    __table_args__ = (
        # Natural key for idempotent resubmission
        UniqueConstraint("school_id", "application_number", name="uq_application_school_number"),
    )

    application_number = Column(String(50), nullable=False)
    pathway = Column(String(50), nullable=False)
    status = Column(String(50), nullable=False, default=EnrollmentStatus.DRAFT.value)
    # Status to resume to when leaving on_hold / requires_override
    held_from_status = Column(String(50), nullable=True)
    student_name = Column(String(255), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    year_group = Column(String(50), nullable=False)
    parent_name = Column(String(255), nullable=False)
    parent_email = Column(String(255), nullable=False)
    parent_phone = Column(String(50), nullable=True)
    previous_school = Column(String(255), nullable=True)
    sibling_student_id = Column(Uuid, nullable=True)
    priority_score = Column(Integer, nullable=True)
    fee_status = Column(String(30), nullable=True)
    medical_information = Column(Text, nullable=True)
    special_requirements = Column(Text, nullable=True)
    additional_data = Column(JSON, nullable=True)
    workflow_id = Column(Uuid, ForeignKey("enrollment_workflows.id", ondelete="SET NULL"), nullable=True)
    current_workflow_step = Column(String(50), nullable=True)
    # Cached projection; recomputed from steps on every step completion and on read
    workflow_completion_percentage = Column(Integer, nullable=False, default=0)
    submitted_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    assigned_to = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    last_activity_at = Column(DateTime(timezone=True), default=utcnow, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    steps = relationship(
        "EnrollmentWorkflowStep",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="EnrollmentWorkflowStep.order_index",
    )
    documents = relationship("EnrollmentDocument", back_populates="application", cascade="all, delete-orphan")
    overrides = relationship("EnrollmentOverride", back_populates="application", cascade="all, delete-orphan")


class EnrollmentWorkflowStep(TimestampMixin, Base):
    __tablename__ = "enrollment_workflow_steps"
    __table_args__ = (
        UniqueConstraint("application_id", "step_type", name="uq_workflow_step_application_type"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    application_id = Column(Uuid, ForeignKey("enrollment_applications.id", ondelete="CASCADE"), nullable=False)
    step_type = Column(String(50), nullable=False)
    step_name = Column(String(255), nullable=False)
    order_index = Column(Integer, nullable=False)
    is_required = Column(Boolean, default=True, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    step_data = Column(JSON, nullable=True)

    application = relationship("EnrollmentApplication", back_populates="steps")


class EnrollmentDocument(TimestampMixin, Base):
    __tablename__ = "enrollment_documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    application_id = Column(Uuid, ForeignKey("enrollment_applications.id", ondelete="CASCADE"), nullable=False)
    document_type = Column(String(100), nullable=False)
    # Opaque object-storage path
    file_path = Column(Text, nullable=True)
    is_required = Column(Boolean, default=True, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    verified_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    application = relationship("EnrollmentApplication", back_populates="documents")


class EnrollmentOverride(TimestampMixin, Base):
    """Audited exception to normal rules. Inert until approved when requires_approval is true."""

    __tablename__ = "enrollment_overrides"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    application_id = Column(Uuid, ForeignKey("enrollment_applications.id", ondelete="CASCADE"), nullable=False)
    field_name = Column(String(100), nullable=False)
    original_value = Column(Text, nullable=True)
    override_value = Column(Text, nullable=False)
    override_type = Column(String(50), nullable=False)
    reason = Column(Text, nullable=False)
    justification = Column(Text, nullable=True)
    supporting_evidence = Column(Text, nullable=True)
    requires_approval = Column(Boolean, default=True, nullable=False)
    requested_by = Column(Uuid, ForeignKey("profiles.id"), nullable=False)
    requested_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    approved_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    # Set once the override value has been written to the application
    applied_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    application = relationship("EnrollmentApplication", back_populates="overrides")
