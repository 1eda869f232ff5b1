from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.core.enums import EnrollmentPathway, OverrideReason


class ApplicationCreate(BaseModel):
    """Client may supply application_number to make retries idempotent; otherwise one is generated."""

    application_number: Optional[str] = Field(None, min_length=3, max_length=50)
    pathway: EnrollmentPathway = EnrollmentPathway.STANDARD_DIGITAL
    student_name: str = Field(..., min_length=1)
    date_of_birth: Optional[date] = None
    year_group: str = Field(..., min_length=1)
    parent_name: str = Field(..., min_length=1)
    parent_email: EmailStr
    parent_phone: Optional[str] = None
    previous_school: Optional[str] = None
    sibling_student_id: Optional[UUID] = None
    medical_information: Optional[str] = None
    special_requirements: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None
    # Submit straight away instead of leaving the application in draft
    submit: bool = False


class ApplicationUpdate(BaseModel):
    """Partial update. Status changes go through the transition endpoint."""

    student_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    year_group: Optional[str] = None
    parent_name: Optional[str] = None
    parent_email: Optional[EmailStr] = None
    parent_phone: Optional[str] = None
    previous_school: Optional[str] = None
    priority_score: Optional[int] = None
    fee_status: Optional[str] = None
    medical_information: Optional[str] = None
    special_requirements: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None
    assigned_to: Optional[UUID] = None
    expected_version: Optional[int] = None


class TransitionRequest(BaseModel):
    status: str
    expected_version: int
    notes: Optional[str] = None


class WorkflowStepResponse(BaseModel):
    id: UUID
    step_type: str
    step_name: str
    order_index: int
    is_required: bool
    is_completed: bool
    completed_at: Optional[datetime] = None
    completed_by: Optional[UUID] = None
    step_data: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class StepComplete(BaseModel):
    step_data: Optional[Dict[str, Any]] = None


class DocumentCreate(BaseModel):
    document_type: str = Field(..., min_length=1)
    file_path: Optional[str] = None
    is_required: bool = True


class DocumentResponse(BaseModel):
    id: UUID
    application_id: UUID
    document_type: str
    file_path: Optional[str] = None
    is_required: bool
    is_verified: bool
    verified_by: Optional[UUID] = None
    verified_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApplicationResponse(BaseModel):
    id: UUID
    school_id: UUID
    application_number: str
    pathway: str
    status: str
    held_from_status: Optional[str] = None
    student_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    year_group: Optional[str] = None
    parent_name: Optional[str] = None
    parent_email: Optional[str] = None
    parent_phone: Optional[str] = None
    previous_school: Optional[str] = None
    sibling_student_id: Optional[UUID] = None
    priority_score: Optional[int] = None
    fee_status: Optional[str] = None
    medical_information: Optional[str] = None
    special_requirements: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None
    workflow_id: Optional[UUID] = None
    current_workflow_step: Optional[str] = None
    workflow_completion_percentage: int
    submitted_by: Optional[UUID] = None
    submitted_at: Optional[datetime] = None
    assigned_to: Optional[UUID] = None
    version: int
    allowed_transitions: List[str] = Field(default_factory=list)
    steps: List[WorkflowStepResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class TransitionResponse(BaseModel):
    application: ApplicationResponse
    effects: List[str]


class OverrideCreate(BaseModel):
    field_name: str
    override_value: str
    override_type: OverrideReason
    reason: str = Field(..., min_length=3)
    justification: Optional[str] = None
    supporting_evidence: Optional[str] = None
    requires_approval: bool = True


class OverrideResponse(BaseModel):
    id: UUID
    application_id: UUID
    field_name: str
    original_value: Optional[str] = None
    override_value: str
    override_type: str
    reason: str
    justification: Optional[str] = None
    requires_approval: bool
    requested_by: UUID
    requested_at: datetime
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    is_active: bool

    class Config:
        from_attributes = True


class EnrollmentTypeUpsert(BaseModel):
    name: str
    description: Optional[str] = None
    requires_assessment: bool = True
    requires_interview: bool = True
    requires_payment: bool = False
    auto_approve_siblings: bool = False
    priority_level: int = 0


class EnrollmentTypeResponse(EnrollmentTypeUpsert):
    id: UUID
    school_id: Optional[UUID] = None
    pathway: str
    is_active: bool

    class Config:
        from_attributes = True


class WorkflowStepConfig(BaseModel):
    step_type: str = Field(..., min_length=1, max_length=50)
    step_name: Optional[str] = None
    order_index: Optional[int] = None
    is_required: bool = True


class WorkflowTemplateUpsert(BaseModel):
    name: str = Field(..., min_length=1)
    steps_config: List[WorkflowStepConfig]
    is_default: bool = True


class WorkflowTemplateResponse(BaseModel):
    id: UUID
    school_id: Optional[UUID] = None
    name: str
    pathway: str
    steps_config: List[WorkflowStepConfig]
    is_default: bool
    is_active: bool

    class Config:
        from_attributes = True
