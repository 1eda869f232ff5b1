from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import SafeguardingConcernType, SafeguardingRiskLevel


class ConcernCreate(BaseModel):
    # Natural key; a repeated concern_number returns the existing concern
    concern_number: Optional[str] = Field(None, min_length=3, max_length=50)
    student_id: UUID
    concern_type: SafeguardingConcernType
    risk_level: SafeguardingRiskLevel
    concern_details: str = Field(..., min_length=1)
    incident_date: Optional[date] = None
    location: Optional[str] = None
    witnesses: Optional[List[str]] = None
    immediate_action_taken: Optional[str] = None
    dsl_assigned: Optional[UUID] = None


class ConcernUpdate(BaseModel):
    expected_version: int
    risk_level: Optional[SafeguardingRiskLevel] = None
    dsl_assigned: Optional[UUID] = None
    parents_informed: Optional[bool] = None
    police_involved: Optional[bool] = None
    social_services_involved: Optional[bool] = None
    case_notes: Optional[str] = None
    next_review_date: Optional[date] = None


class ConcernTransition(BaseModel):
    status: str
    expected_version: int
    outcome: Optional[str] = None
    case_notes: Optional[str] = None


class ConcernResponse(BaseModel):
    id: UUID
    concern_number: str
    student_id: UUID
    concern_type: str
    risk_level: str
    concern_details: str
    incident_date: Optional[date] = None
    location: Optional[str] = None
    witnesses: Optional[List[str]] = None
    immediate_action_taken: Optional[str] = None
    reported_by: UUID
    dsl_assigned: Optional[UUID] = None
    status: str
    parents_informed: Optional[bool] = None
    police_involved: Optional[bool] = None
    social_services_involved: Optional[bool] = None
    case_notes: Optional[str] = None
    outcome: Optional[str] = None
    next_review_date: Optional[date] = None
    closed_at: Optional[datetime] = None
    version: int
    created_at: datetime
    allowed_transitions: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True
