"""
Library: titles, physical copies, members, circulation (loans) and fines.
available_copies, current_borrowed, total_fines_pending, is_overdue and overdue_days are
cached projections rebuilt by the library reconciliation pass.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.core.enums import CirculationStatus, LibraryBookStatus, LibraryFineStatus
from app.db.mixins import TenantScopedMixin
from app.db.session import Base


class LibrarySettings(TenantScopedMixin, Base):
    __tablename__ = "library_settings"
    __table_args__ = (
        UniqueConstraint("school_id", name="uq_library_settings_school"),
    )

    student_max_books = Column(Integer, nullable=False, default=2)
    student_loan_days = Column(Integer, nullable=False, default=14)
    student_fine_per_day = Column(Numeric(10, 2), nullable=False, default=1)
    student_max_renewals = Column(Integer, nullable=False, default=1)
    staff_max_books = Column(Integer, nullable=False, default=5)
    staff_loan_days = Column(Integer, nullable=False, default=30)
    staff_fine_per_day = Column(Numeric(10, 2), nullable=False, default=0)
    staff_max_renewals = Column(Integer, nullable=False, default=2)
    grace_period_days = Column(Integer, nullable=False, default=0)
    lost_book_processing_fee = Column(Numeric(10, 2), nullable=False, default=0)


class LibraryBookTitle(TenantScopedMixin, Base):
    __tablename__ = "library_book_titles"

    title = Column(String(500), nullable=False)
    subtitle = Column(String(500), nullable=True)
    authors = Column(JSON, nullable=False, default=list)
    publisher = Column(String(255), nullable=True)
    isbn = Column(String(20), nullable=True)
    category = Column(String(100), nullable=True)
    # circulation | reference
    book_type = Column(String(20), nullable=False, default="circulation")
    total_copies = Column(Integer, nullable=False, default=0)
    # Projection: total_copies - copies in issued/reserved
    available_copies = Column(Integer, nullable=False, default=0)

    copies = relationship("LibraryBookCopy", back_populates="book_title", cascade="all, delete-orphan")


class LibraryBookCopy(TenantScopedMixin, Base):
    __tablename__ = "library_book_copies"
    __table_args__ = (
        UniqueConstraint("school_id", "accession_number", name="uq_book_copy_accession"),
    )

    title_id = Column(Uuid, ForeignKey("library_book_titles.id", ondelete="CASCADE"), nullable=False, index=True)
    accession_number = Column(Integer, nullable=False)
    call_number = Column(String(100), nullable=True)
    copy_number = Column(Integer, nullable=False, default=1)
    barcode = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=LibraryBookStatus.AVAILABLE.value)
    condition = Column(String(100), nullable=True)
    is_reference = Column(Boolean, nullable=False, default=False)
    price = Column(Numeric(10, 2), nullable=True)
    withdrawn_date = Column(Date, nullable=True)
    withdrawn_reason = Column(Text, nullable=True)
    remarks = Column(Text, nullable=True)

    book_title = relationship("LibraryBookTitle", back_populates="copies")


class LibraryMember(TenantScopedMixin, Base):
    __tablename__ = "library_members"

    member_type = Column(String(20), nullable=False)
    full_name = Column(String(255), nullable=False)
    student_id = Column(Uuid, nullable=True)
    staff_id = Column(Uuid, nullable=True)
    library_card_number = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
    blocked_reason = Column(Text, nullable=True)
    current_borrowed = Column(Integer, nullable=False, default=0)
    total_borrowed = Column(Integer, nullable=False, default=0)
    total_fines_pending = Column(Numeric(10, 2), nullable=False, default=0)


class LibraryCirculation(TenantScopedMixin, Base):
    __tablename__ = "library_circulation"

    copy_id = Column(Uuid, ForeignKey("library_book_copies.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Uuid, ForeignKey("library_members.id", ondelete="CASCADE"), nullable=False, index=True)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    issued_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    return_date = Column(Date, nullable=True)
    returned_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    return_condition = Column(String(100), nullable=True)
    renewal_count = Column(Integer, nullable=False, default=0)
    last_renewed_date = Column(Date, nullable=True)
    is_overdue = Column(Boolean, nullable=False, default=False)
    overdue_days = Column(Integer, nullable=False, default=0)
    fine_amount = Column(Numeric(10, 2), nullable=True)
    status = Column(String(20), nullable=False, default=CirculationStatus.ISSUED.value)
    remarks = Column(Text, nullable=True)


class LibraryFine(TenantScopedMixin, Base):
    __tablename__ = "library_fines"

    member_id = Column(Uuid, ForeignKey("library_members.id", ondelete="CASCADE"), nullable=False, index=True)
    circulation_id = Column(Uuid, ForeignKey("library_circulation.id", ondelete="SET NULL"), nullable=True)
    copy_id = Column(Uuid, ForeignKey("library_book_copies.id", ondelete="SET NULL"), nullable=True)
    # overdue | lost | damage
    fine_type = Column(String(30), nullable=False)
    fine_amount = Column(Numeric(10, 2), nullable=False)
    paid_amount = Column(Numeric(10, 2), nullable=False, default=0)
    balance = Column(Numeric(10, 2), nullable=False)
    fine_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=LibraryFineStatus.PENDING.value)
    payment_date = Column(Date, nullable=True)
    payment_method = Column(String(30), nullable=True)
    receipt_number = Column(String(50), nullable=True)
    collected_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    remarks = Column(Text, nullable=True)
