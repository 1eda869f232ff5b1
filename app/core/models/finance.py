"""
Fees: outstanding balances, payment records, installment plans and cashier collection sessions.
outstanding_amount / paid_amount and installment plan status are projections of their source rows.
"""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid

from app.core.enums import CollectionSessionStatus, FeeStatus, InstallmentPlanStatus, InstallmentStatus, PaymentStatus
from app.db.mixins import TenantScopedMixin, utcnow
from app.db.session import Base


class OutstandingFee(TenantScopedMixin, Base):
    __tablename__ = "outstanding_fees"

    student_id = Column(Uuid, nullable=False, index=True)
    student_name = Column(String(255), nullable=False)
    year_group = Column(String(50), nullable=True)
    fee_type = Column(String(100), nullable=False)
    due_date = Column(Date, nullable=False)
    original_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    outstanding_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=FeeStatus.PENDING.value)
    payment_plan_id = Column(Uuid, ForeignKey("installment_plans.id", ondelete="SET NULL"), nullable=True)
    parent_name = Column(String(255), nullable=True)
    parent_email = Column(String(255), nullable=True)
    last_reminder_sent = Column(DateTime(timezone=True), nullable=True)


class CollectionSession(TenantScopedMixin, Base):
    """A cashier's till session. Balance-affecting writes serialize per session."""

    __tablename__ = "collection_sessions"

    cashier_id = Column(Uuid, ForeignKey("profiles.id"), nullable=False, index=True)
    session_start = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    session_end = Column(DateTime(timezone=True), nullable=True)
    opening_cash_amount = Column(Numeric(12, 2), nullable=False, default=0)
    expected_cash_amount = Column(Numeric(12, 2), nullable=False, default=0)
    closing_cash_amount = Column(Numeric(12, 2), nullable=True)
    variance_amount = Column(Numeric(12, 2), nullable=True)
    status = Column(String(20), nullable=False, default=CollectionSessionStatus.ACTIVE.value)
    notes = Column(Text, nullable=True)
    supervisor_approved_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    supervisor_approved_at = Column(DateTime(timezone=True), nullable=True)
    supervisor_notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


class PaymentRecord(TenantScopedMixin, Base):
    __tablename__ = "payment_records"
    __table_args__ = (
        # Natural key: a retried submission must not create a second payment
        UniqueConstraint("school_id", "receipt_number", name="uq_payment_school_receipt"),
    )

    receipt_number = Column(String(50), nullable=False)
    student_id = Column(Uuid, nullable=False, index=True)
    outstanding_fee_id = Column(Uuid, ForeignKey("outstanding_fees.id", ondelete="SET NULL"), nullable=True, index=True)
    installment_schedule_id = Column(Uuid, ForeignKey("installment_schedules.id", ondelete="SET NULL"), nullable=True)
    collection_session_id = Column(Uuid, ForeignKey("collection_sessions.id", ondelete="SET NULL"), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    # cash | card | bank_transfer | online
    payment_method = Column(String(30), nullable=False)
    payment_date = Column(Date, nullable=False)
    reference_number = Column(String(100), nullable=True)
    # Opaque payment gateway identifier
    payment_intent_id = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.COMPLETED.value)
    cashier_id = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)


class InstallmentPlan(TenantScopedMixin, Base):
    __tablename__ = "installment_plans"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    number_of_installments = Column(Integer, nullable=False)
    # monthly | quarterly | termly
    frequency = Column(String(20), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=InstallmentPlanStatus.ACTIVE.value)
    created_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)


class InstallmentSchedule(TenantScopedMixin, Base):
    __tablename__ = "installment_schedules"
    __table_args__ = (
        UniqueConstraint("plan_id", "installment_number", name="uq_installment_plan_number"),
    )

    plan_id = Column(Uuid, ForeignKey("installment_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=InstallmentStatus.PENDING.value)
