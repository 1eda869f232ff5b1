from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# ----- Outstanding fees -----

class OutstandingFeeCreate(BaseModel):
    student_id: UUID
    student_name: str = Field(..., min_length=1)
    year_group: Optional[str] = None
    fee_type: str = Field(..., min_length=1)
    due_date: date
    amount: Decimal = Field(..., gt=0)
    parent_name: Optional[str] = None
    parent_email: Optional[str] = None


class OutstandingFeeResponse(BaseModel):
    id: UUID
    student_id: UUID
    student_name: str
    year_group: Optional[str] = None
    fee_type: str
    due_date: date
    original_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    status: str
    payment_plan_id: Optional[UUID] = None

    class Config:
        from_attributes = True


# ----- Payments -----

class PaymentCreate(BaseModel):
    """receipt_number is the natural key: resubmitting the same one returns the original payment."""

    receipt_number: Optional[str] = Field(None, min_length=3, max_length=50)
    student_id: UUID
    outstanding_fee_id: Optional[UUID] = None
    installment_schedule_id: Optional[UUID] = None
    collection_session_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    payment_method: str = Field("cash", pattern="^(cash|card|bank_transfer|online|cheque)$")
    payment_date: Optional[date] = None
    reference_number: Optional[str] = None
    payment_intent_id: Optional[str] = None
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: UUID
    receipt_number: str
    student_id: UUID
    outstanding_fee_id: Optional[UUID] = None
    installment_schedule_id: Optional[UUID] = None
    collection_session_id: Optional[UUID] = None
    amount: Decimal
    payment_method: str
    payment_date: date
    reference_number: Optional[str] = None
    payment_intent_id: Optional[str] = None
    status: str
    cashier_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentRefund(BaseModel):
    reason: str = Field(..., min_length=3)


# ----- Collection sessions -----

class SessionStart(BaseModel):
    opening_cash_amount: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None


class SessionClose(BaseModel):
    closing_cash_amount: Decimal = Field(..., ge=0)
    expected_version: int
    notes: Optional[str] = None


class SessionReview(BaseModel):
    expected_version: int
    notes: Optional[str] = None


class CollectionSessionResponse(BaseModel):
    id: UUID
    cashier_id: UUID
    session_start: datetime
    session_end: Optional[datetime] = None
    opening_cash_amount: Decimal
    expected_cash_amount: Decimal
    closing_cash_amount: Optional[Decimal] = None
    variance_amount: Optional[Decimal] = None
    status: str
    notes: Optional[str] = None
    supervisor_approved_by: Optional[UUID] = None
    supervisor_approved_at: Optional[datetime] = None
    supervisor_notes: Optional[str] = None
    version: int

    class Config:
        from_attributes = True


# ----- Installment plans -----

class InstallmentPlanCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    total_amount: Decimal = Field(..., gt=0)
    number_of_installments: int = Field(..., ge=1, le=36)
    frequency: str = Field("monthly", pattern="^(monthly|quarterly|termly)$")
    start_date: date
    # Outstanding fees to settle through this plan
    outstanding_fee_ids: List[UUID] = Field(default_factory=list)


class InstallmentScheduleResponse(BaseModel):
    id: UUID
    plan_id: UUID
    installment_number: int
    amount: Decimal
    due_date: date
    status: str

    class Config:
        from_attributes = True


class InstallmentPlanResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    total_amount: Decimal
    number_of_installments: int
    frequency: str
    start_date: date
    end_date: date
    status: str
    schedules: List[InstallmentScheduleResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class InstallmentWaive(BaseModel):
    reason: str = Field(..., min_length=3)
