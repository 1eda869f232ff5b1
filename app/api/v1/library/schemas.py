from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import LibraryBookStatus, LibraryMemberType


class LibrarySettingsUpdate(BaseModel):
    student_max_books: Optional[int] = Field(None, ge=0)
    student_loan_days: Optional[int] = Field(None, ge=1)
    student_fine_per_day: Optional[Decimal] = Field(None, ge=0)
    student_max_renewals: Optional[int] = Field(None, ge=0)
    staff_max_books: Optional[int] = Field(None, ge=0)
    staff_loan_days: Optional[int] = Field(None, ge=1)
    staff_fine_per_day: Optional[Decimal] = Field(None, ge=0)
    staff_max_renewals: Optional[int] = Field(None, ge=0)
    grace_period_days: Optional[int] = Field(None, ge=0)
    lost_book_processing_fee: Optional[Decimal] = Field(None, ge=0)


class LibrarySettingsResponse(BaseModel):
    id: UUID
    school_id: UUID
    student_max_books: int
    student_loan_days: int
    student_fine_per_day: Decimal
    student_max_renewals: int
    staff_max_books: int
    staff_loan_days: int
    staff_fine_per_day: Decimal
    staff_max_renewals: int
    grace_period_days: int
    lost_book_processing_fee: Decimal

    class Config:
        from_attributes = True


class BookTitleCreate(BaseModel):
    title: str = Field(..., min_length=1)
    subtitle: Optional[str] = None
    authors: List[str] = Field(default_factory=list)
    publisher: Optional[str] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    book_type: str = Field("circulation", pattern="^(circulation|reference)$")
    # Physical copies to register straight away
    copies: int = Field(0, ge=0, le=500)
    price: Optional[Decimal] = None


class BookTitleResponse(BaseModel):
    id: UUID
    school_id: UUID
    title: str
    subtitle: Optional[str] = None
    authors: List[str] = Field(default_factory=list)
    publisher: Optional[str] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    book_type: str
    total_copies: int
    available_copies: int

    class Config:
        from_attributes = True


class BookCopyCreate(BaseModel):
    call_number: Optional[str] = None
    barcode: Optional[str] = None
    condition: Optional[str] = None
    price: Optional[Decimal] = None
    # available or processing
    status: LibraryBookStatus = LibraryBookStatus.AVAILABLE


class BookCopyStatusUpdate(BaseModel):
    status: LibraryBookStatus
    reason: Optional[str] = None


class BookCopyResponse(BaseModel):
    id: UUID
    title_id: UUID
    accession_number: int
    copy_number: int
    call_number: Optional[str] = None
    barcode: Optional[str] = None
    status: str
    condition: Optional[str] = None
    is_reference: bool
    price: Optional[Decimal] = None
    withdrawn_date: Optional[date] = None
    withdrawn_reason: Optional[str] = None

    class Config:
        from_attributes = True


class MemberCreate(BaseModel):
    member_type: LibraryMemberType
    full_name: str = Field(..., min_length=1)
    student_id: Optional[UUID] = None
    staff_id: Optional[UUID] = None
    library_card_number: Optional[str] = None


class MemberBlock(BaseModel):
    is_blocked: bool
    reason: Optional[str] = None


class MemberResponse(BaseModel):
    id: UUID
    member_type: str
    full_name: str
    student_id: Optional[UUID] = None
    staff_id: Optional[UUID] = None
    library_card_number: Optional[str] = None
    is_active: bool
    is_blocked: bool
    blocked_reason: Optional[str] = None
    current_borrowed: int
    total_borrowed: int
    total_fines_pending: Decimal

    class Config:
        from_attributes = True


class IssueRequest(BaseModel):
    copy_id: UUID
    member_id: UUID
    # Defaults to today + the member type's loan period
    due_date: Optional[date] = None
    remarks: Optional[str] = None


class ReturnRequest(BaseModel):
    return_condition: Optional[str] = None
    remarks: Optional[str] = None


class CirculationResponse(BaseModel):
    id: UUID
    copy_id: UUID
    member_id: UUID
    issue_date: date
    due_date: date
    return_date: Optional[date] = None
    renewal_count: int
    last_renewed_date: Optional[date] = None
    is_overdue: bool
    overdue_days: int
    fine_amount: Optional[Decimal] = None
    status: str
    return_condition: Optional[str] = None
    remarks: Optional[str] = None

    class Config:
        from_attributes = True


class FinePayment(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_method: str = "cash"
    receipt_number: Optional[str] = None


class FineWaive(BaseModel):
    reason: str = Field(..., min_length=3)


class FineResponse(BaseModel):
    id: UUID
    member_id: UUID
    circulation_id: Optional[UUID] = None
    copy_id: Optional[UUID] = None
    fine_type: str
    fine_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    fine_date: date
    status: str
    payment_date: Optional[date] = None
    payment_method: Optional[str] = None
    receipt_number: Optional[str] = None
    remarks: Optional[str] = None

    class Config:
        from_attributes = True
