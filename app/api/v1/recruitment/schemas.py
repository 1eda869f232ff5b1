from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class JobApplicationCreate(BaseModel):
    job_posting_id: UUID
    applicant_name: str = Field(..., min_length=1)
    applicant_email: EmailStr
    applicant_phone: Optional[str] = None
    resume_url: Optional[str] = None
    cover_letter: Optional[str] = None
    application_source: Optional[str] = None


class JobApplicationUpdate(BaseModel):
    expected_version: int
    interviewer_id: Optional[UUID] = None
    interview_scheduled_at: Optional[datetime] = None
    interview_notes: Optional[str] = None
    application_score: Optional[int] = Field(None, ge=0, le=100)


class JobApplicationTransition(BaseModel):
    status: str
    expected_version: int
    rejection_reason: Optional[str] = None
    rejection_feedback: Optional[str] = None


class JobApplicationResponse(BaseModel):
    id: UUID
    job_posting_id: UUID
    applicant_name: str
    applicant_email: str
    applicant_phone: Optional[str] = None
    resume_url: Optional[str] = None
    cover_letter: Optional[str] = None
    application_source: Optional[str] = None
    application_status: str
    interviewer_id: Optional[UUID] = None
    interview_scheduled_at: Optional[datetime] = None
    interview_notes: Optional[str] = None
    application_score: Optional[int] = None
    rejection_reason: Optional[str] = None
    rejection_feedback: Optional[str] = None
    last_transition_by: Optional[UUID] = None
    last_transition_at: Optional[datetime] = None
    version: int
    created_at: datetime
    allowed_transitions: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True
