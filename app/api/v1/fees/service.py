"""Fees service: outstanding balances, payments, cashier sessions and installment plans. Financial logic with audit."""

import calendar
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import ROUND_DOWN, Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.auth import services as auth_service
from app.auth.schemas import CurrentUser
from app.core import audit_service, reconciliation
from app.core.enums import (
    CollectionSessionStatus,
    InstallmentPlanStatus,
    InstallmentStatus,
    PaymentStatus,
    ResourceType,
)
from app.core.errors import conflict_from_stale
from app.core.exceptions import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    PermissionDeniedError,
    SelfApprovalError,
    TransitionError,
    ValidationError,
)
from app.core.models import (
    CollectionSession,
    InstallmentPlan,
    InstallmentSchedule,
    OutstandingFee,
    PaymentRecord,
)
from app.core.workflows import collection
from app.core.workflows.base import INVALID_TRANSITION

from .schemas import (
    InstallmentPlanCreate,
    InstallmentPlanResponse,
    InstallmentScheduleResponse,
    OutstandingFeeCreate,
    PaymentCreate,
    SessionStart,
)

logger = logging.getLogger(__name__)

RESOURCE = ResourceType.FINANCIAL_DATA.value
FREQUENCY_MONTHS = {"monthly": 1, "quarterly": 3, "termly": 4}
CENT = Decimal("0.01")


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        raise conflict_from_stale(e)


# --- Projections ---

async def refresh_fee(db: AsyncSession, fee: OutstandingFee, as_of: Optional[date] = None) -> bool:
    """Rebuild paid/outstanding/status from payment records. Returns True when anything changed."""
    result = await db.execute(select(PaymentRecord).where(PaymentRecord.outstanding_fee_id == fee.id))
    balance = reconciliation.fee_balance(fee.original_amount, result.scalars().all(), fee.due_date, as_of or _today())
    changed = (
        _to_decimal(fee.paid_amount) != balance.paid_amount
        or _to_decimal(fee.outstanding_amount) != balance.outstanding_amount
        or fee.status != balance.status
    )
    fee.paid_amount = balance.paid_amount
    fee.outstanding_amount = balance.outstanding_amount
    fee.status = balance.status
    return changed


async def refresh_session(db: AsyncSession, session: CollectionSession) -> bool:
    result = await db.execute(select(PaymentRecord).where(PaymentRecord.collection_session_id == session.id))
    expected = reconciliation.session_expected_cash(session.opening_cash_amount, result.scalars().all())
    if _to_decimal(session.expected_cash_amount) == expected:
        return False
    session.expected_cash_amount = expected
    if session.closing_cash_amount is not None:
        session.variance_amount = collection.variance(session.closing_cash_amount, expected)
    return True


async def refresh_plan(db: AsyncSession, plan: InstallmentPlan, as_of: Optional[date] = None) -> bool:
    """Mark lapsed installments overdue and derive the plan status from its schedule."""
    as_of = as_of or _today()
    result = await db.execute(select(InstallmentSchedule).where(InstallmentSchedule.plan_id == plan.id))
    schedules = list(result.scalars().all())
    changed = False
    for schedule in schedules:
        new_status = reconciliation.installment_status(schedule.status, schedule.due_date, as_of)
        if new_status != schedule.status:
            schedule.status = new_status
            changed = True
    plan_status = reconciliation.installment_plan_status(plan.status, [s.status for s in schedules])
    if plan_status != plan.status:
        logger.info("installment plan %s: %s -> %s", plan.id, plan.status, plan_status)
        plan.status = plan_status
        changed = True
    return changed


# --- Outstanding fees ---

async def create_fee(db: AsyncSession, school_id: UUID, payload: OutstandingFeeCreate, user: CurrentUser) -> OutstandingFee:
    fee = OutstandingFee(
        school_id=school_id,
        student_id=payload.student_id,
        student_name=payload.student_name.strip(),
        year_group=payload.year_group,
        fee_type=payload.fee_type,
        due_date=payload.due_date,
        original_amount=payload.amount,
        paid_amount=Decimal("0"),
        outstanding_amount=payload.amount,
        parent_name=payload.parent_name,
        parent_email=payload.parent_email,
    )
    db.add(fee)
    await db.flush()
    await refresh_fee(db, fee)
    await audit_service.log_audit(
        db, school_id, RESOURCE, fee.id, "fee_created",
        user_id=user.id,
        new_values={"student_id": fee.student_id, "fee_type": fee.fee_type, "amount": payload.amount, "due_date": fee.due_date},
    )
    await db.commit()
    await db.refresh(fee)
    return fee


async def list_fees(
    db: AsyncSession,
    school_id: UUID,
    student_id: Optional[UUID] = None,
    status_filter: Optional[str] = None,
) -> List[OutstandingFee]:
    stmt = select(OutstandingFee).where(OutstandingFee.school_id == school_id)
    if student_id:
        stmt = stmt.where(OutstandingFee.student_id == student_id)
    if status_filter:
        stmt = stmt.where(OutstandingFee.status == status_filter)
    result = await db.execute(stmt.order_by(OutstandingFee.due_date))
    return list(result.scalars().all())


async def _get_fee(db: AsyncSession, school_id: UUID, fee_id: UUID) -> OutstandingFee:
    fee = await db.get(OutstandingFee, fee_id)
    if fee is None or fee.school_id != school_id:
        raise NotFoundError("Outstanding fee not found")
    return fee


# --- Collection sessions ---

async def _get_session(db: AsyncSession, school_id: UUID, session_id: UUID) -> CollectionSession:
    """Loads the session row locked; balance-affecting writes serialize on it."""
    stmt = (
        select(CollectionSession)
        .where(CollectionSession.id == session_id, CollectionSession.school_id == school_id)
        .with_for_update()
    )
    session = (await db.execute(stmt)).scalar_one_or_none()
    if session is None:
        raise NotFoundError("Collection session not found")
    return session


async def start_session(db: AsyncSession, school_id: UUID, payload: SessionStart, user: CurrentUser) -> CollectionSession:
    existing = await db.execute(
        select(CollectionSession).where(
            CollectionSession.school_id == school_id,
            CollectionSession.cashier_id == user.id,
            CollectionSession.status == CollectionSessionStatus.ACTIVE.value,
        )
    )
    if existing.scalars().first() is not None:
        raise DuplicateError("You already have an active collection session")
    session = CollectionSession(
        school_id=school_id,
        cashier_id=user.id,
        opening_cash_amount=payload.opening_cash_amount,
        expected_cash_amount=payload.opening_cash_amount,
        status=CollectionSessionStatus.ACTIVE.value,
        notes=payload.notes,
    )
    db.add(session)
    await db.flush()
    await audit_service.log_audit(
        db, school_id, RESOURCE, session.id, "collection_session_started",
        user_id=user.id, new_values={"opening_cash_amount": payload.opening_cash_amount},
    )
    await db.commit()
    await db.refresh(session)
    return session


async def list_sessions(
    db: AsyncSession,
    school_id: UUID,
    cashier_id: Optional[UUID] = None,
    status_filter: Optional[str] = None,
) -> List[CollectionSession]:
    stmt = select(CollectionSession).where(CollectionSession.school_id == school_id)
    if cashier_id:
        stmt = stmt.where(CollectionSession.cashier_id == cashier_id)
    if status_filter:
        stmt = stmt.where(CollectionSession.status == status_filter)
    result = await db.execute(stmt.order_by(CollectionSession.session_start.desc()))
    return list(result.scalars().all())


async def get_session(db: AsyncSession, school_id: UUID, session_id: UUID) -> CollectionSession:
    return await _get_session(db, school_id, session_id)


async def _move_session(
    db: AsyncSession,
    session: CollectionSession,
    requested: str,
    expected_version: int,
    user: CurrentUser,
    payload: Optional[dict] = None,
) -> str:
    if expected_version != session.version:
        raise ConflictError()
    actor = await auth_service.build_actor(
        db, user, session.school_id, RESOURCE, is_owner=session.cashier_id == user.id
    )
    result = collection.MACHINE.apply(session.status, requested, actor, payload or {})
    if not result.accepted:
        logger.info("session %s: rejected %s -> %s (%s)", session.id, session.status, requested, result.reason)
        result.raise_for_rejection()
    old_status = session.status
    session.status = result.new_state
    return old_status


async def close_session(
    db: AsyncSession,
    school_id: UUID,
    session_id: UUID,
    closing_cash_amount: Decimal,
    expected_version: int,
    user: CurrentUser,
    notes: Optional[str] = None,
) -> CollectionSession:
    session = await _get_session(db, school_id, session_id)
    old_status = await _move_session(
        db, session, CollectionSessionStatus.CLOSED.value, expected_version, user,
        {"closing_cash_amount": closing_cash_amount},
    )
    await refresh_session(db, session)
    session.closing_cash_amount = closing_cash_amount
    session.session_end = _now()
    session.variance_amount = collection.variance(closing_cash_amount, session.expected_cash_amount)
    if notes:
        session.notes = notes
    if session.variance_amount != 0:
        logger.warning("session %s closed with variance %s", session.id, session.variance_amount)
    await audit_service.log_audit(
        db, school_id, RESOURCE, session.id, "collection_session_closed",
        user_id=user.id,
        old_values={"status": old_status},
        new_values={
            "status": session.status,
            "expected_cash_amount": session.expected_cash_amount,
            "closing_cash_amount": closing_cash_amount,
            "variance_amount": session.variance_amount,
        },
    )
    await _commit(db)
    await db.refresh(session)
    return session


async def reconcile_session(
    db: AsyncSession,
    school_id: UUID,
    session_id: UUID,
    expected_version: int,
    user: CurrentUser,
    notes: Optional[str] = None,
) -> CollectionSession:
    session = await _get_session(db, school_id, session_id)
    old_status = await _move_session(db, session, CollectionSessionStatus.RECONCILED.value, expected_version, user)
    await refresh_session(db, session)
    if notes:
        session.supervisor_notes = notes
    await audit_service.log_audit(
        db, school_id, RESOURCE, session.id, "collection_session_reconciled",
        user_id=user.id,
        old_values={"status": old_status},
        new_values={"status": session.status, "variance_amount": session.variance_amount},
    )
    await _commit(db)
    await db.refresh(session)
    return session


async def approve_session(
    db: AsyncSession,
    school_id: UUID,
    session_id: UUID,
    expected_version: int,
    user: CurrentUser,
    notes: Optional[str] = None,
) -> CollectionSession:
    """Supervisor sign-off. The cashier can never approve their own session."""
    session = await _get_session(db, school_id, session_id)
    if session.cashier_id == user.id:
        raise SelfApprovalError("The cashier cannot approve their own collection session")
    old_status = await _move_session(db, session, CollectionSessionStatus.APPROVED.value, expected_version, user)
    session.supervisor_approved_by = user.id
    session.supervisor_approved_at = _now()
    if notes:
        session.supervisor_notes = notes
    await audit_service.log_audit(
        db, school_id, RESOURCE, session.id, "collection_session_approved",
        user_id=user.id,
        old_values={"status": old_status},
        new_values={"status": session.status, "variance_amount": session.variance_amount},
        elevated_privilege=True,
    )
    await _commit(db)
    await db.refresh(session)
    return session


# --- Payments ---

def _generate_receipt_number(today: date) -> str:
    return f"RCP-{today:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


async def _find_payment(db: AsyncSession, school_id: UUID, receipt_number: str) -> Optional[PaymentRecord]:
    result = await db.execute(
        select(PaymentRecord).where(PaymentRecord.school_id == school_id, PaymentRecord.receipt_number == receipt_number)
    )
    return result.scalar_one_or_none()


async def _ensure_replay_visible(db: AsyncSession, user: CurrentUser, school_id: UUID, payment: PaymentRecord) -> None:
    await auth_service.ensure_replay_visible(
        db, user, school_id, RESOURCE, f"Receipt number '{payment.receipt_number}'",
        is_owner=payment.cashier_id == user.id,
    )


async def record_payment(
    db: AsyncSession,
    school_id: UUID,
    payload: PaymentCreate,
    user: CurrentUser,
) -> Tuple[PaymentRecord, bool]:
    """
    Record a payment. Returns (payment, created); a repeated receipt_number returns
    the original record. Payments against a session lock the session row, so
    concurrent payments on one till apply one after the other.
    """
    receipt = (payload.receipt_number or "").strip() or _generate_receipt_number(_today())
    existing = await _find_payment(db, school_id, receipt)
    if existing is not None:
        logger.info("payment %s resubmitted; returning existing record", receipt)
        await _ensure_replay_visible(db, user, school_id, existing)
        return existing, False

    session = None
    if payload.collection_session_id is not None:
        session = await _get_session(db, school_id, payload.collection_session_id)
        if session.status != CollectionSessionStatus.ACTIVE.value:
            raise TransitionError(INVALID_TRANSITION, f"Collection session is {session.status}", field="collection_session_id")
        if session.cashier_id != user.id:
            raise PermissionDeniedError("Payments can only be taken on your own collection session")

    fee = None
    if payload.outstanding_fee_id is not None:
        fee = await _get_fee(db, school_id, payload.outstanding_fee_id)
        if fee.student_id != payload.student_id:
            raise ValidationError("Fee belongs to a different student", field="outstanding_fee_id")
        await refresh_fee(db, fee)
        if payload.amount > _to_decimal(fee.outstanding_amount):
            raise ValidationError("Payment amount cannot exceed remaining balance", field="amount")

    schedule = None
    if payload.installment_schedule_id is not None:
        schedule = await db.get(InstallmentSchedule, payload.installment_schedule_id)
        if schedule is None or schedule.school_id != school_id:
            raise NotFoundError("Installment not found")
        if schedule.status in (InstallmentStatus.PAID.value, InstallmentStatus.WAIVED.value):
            raise ValidationError(f"Installment is already {schedule.status}", field="installment_schedule_id")

    payment = PaymentRecord(
        school_id=school_id,
        receipt_number=receipt,
        student_id=payload.student_id,
        outstanding_fee_id=payload.outstanding_fee_id,
        installment_schedule_id=payload.installment_schedule_id,
        collection_session_id=payload.collection_session_id,
        amount=payload.amount,
        payment_method=payload.payment_method,
        payment_date=payload.payment_date or _today(),
        reference_number=payload.reference_number,
        payment_intent_id=payload.payment_intent_id,
        status=PaymentStatus.COMPLETED.value,
        cashier_id=user.id,
        notes=payload.notes,
    )
    db.add(payment)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        existing = await _find_payment(db, school_id, receipt)
        if existing is not None:
            logger.info("payment %s recorded concurrently; returning existing record", receipt)
            await _ensure_replay_visible(db, user, school_id, existing)
            return existing, False
        raise DuplicateError(f"Receipt number '{receipt}' is already in use")

    if fee is not None:
        await refresh_fee(db, fee)
    if schedule is not None:
        await _settle_installment(db, schedule)
    if session is not None:
        await refresh_session(db, session)

    await audit_service.log_audit(
        db, school_id, RESOURCE, payment.id, "payment_recorded",
        user_id=user.id,
        new_values={
            "receipt_number": receipt,
            "amount": payload.amount,
            "payment_method": payload.payment_method,
            "outstanding_fee_id": payload.outstanding_fee_id,
            "collection_session_id": payload.collection_session_id,
            "fee_status": fee.status if fee else None,
        },
    )
    await _commit(db)
    await db.refresh(payment)
    return payment, True


async def _settle_installment(db: AsyncSession, schedule: InstallmentSchedule) -> None:
    result = await db.execute(
        select(PaymentRecord).where(
            PaymentRecord.installment_schedule_id == schedule.id,
            PaymentRecord.status == PaymentStatus.COMPLETED.value,
        )
    )
    paid = sum((_to_decimal(p.amount) for p in result.scalars().all()), Decimal("0"))
    if paid >= _to_decimal(schedule.amount):
        schedule.status = InstallmentStatus.PAID.value
    plan = await db.get(InstallmentPlan, schedule.plan_id)
    if plan is not None:
        await refresh_plan(db, plan)


async def refund_payment(db: AsyncSession, school_id: UUID, payment_id: UUID, reason: str, user: CurrentUser) -> PaymentRecord:
    payment = await db.get(PaymentRecord, payment_id)
    if payment is None or payment.school_id != school_id:
        raise NotFoundError("Payment not found")
    if payment.status != PaymentStatus.COMPLETED.value:
        raise TransitionError(INVALID_TRANSITION, f"Payment is {payment.status} and cannot be refunded")
    session = None
    if payment.collection_session_id is not None:
        session = await _get_session(db, school_id, payment.collection_session_id)
        if session.status != CollectionSessionStatus.ACTIVE.value:
            raise TransitionError(INVALID_TRANSITION, "Payments on a closed session cannot be refunded")

    payment.status = PaymentStatus.REFUNDED.value
    payment.notes = reason
    if payment.outstanding_fee_id is not None:
        await refresh_fee(db, await _get_fee(db, school_id, payment.outstanding_fee_id))
    if payment.installment_schedule_id is not None:
        schedule = await db.get(InstallmentSchedule, payment.installment_schedule_id)
        if schedule is not None and schedule.status == InstallmentStatus.PAID.value:
            schedule.status = InstallmentStatus.PENDING.value
            plan = await db.get(InstallmentPlan, schedule.plan_id)
            if plan is not None:
                await refresh_plan(db, plan)
    if session is not None:
        await refresh_session(db, session)
    await audit_service.log_audit(
        db, school_id, RESOURCE, payment.id, "payment_refunded",
        user_id=user.id,
        old_values={"status": PaymentStatus.COMPLETED.value},
        new_values={"status": payment.status, "reason": reason},
        elevated_privilege=True,
    )
    await _commit(db)
    await db.refresh(payment)
    return payment


async def list_payments(
    db: AsyncSession,
    school_id: UUID,
    student_id: Optional[UUID] = None,
    collection_session_id: Optional[UUID] = None,
) -> List[PaymentRecord]:
    stmt = select(PaymentRecord).where(PaymentRecord.school_id == school_id)
    if student_id:
        stmt = stmt.where(PaymentRecord.student_id == student_id)
    if collection_session_id:
        stmt = stmt.where(PaymentRecord.collection_session_id == collection_session_id)
    result = await db.execute(stmt.order_by(PaymentRecord.created_at.desc()))
    return list(result.scalars().all())


# --- Installment plans ---

def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def split_installments(total: Decimal, count: int) -> List[Decimal]:
    """Even split rounded down to the cent; the last installment takes the remainder."""
    base = (_to_decimal(total) / count).quantize(CENT, rounding=ROUND_DOWN)
    amounts = [base] * count
    amounts[-1] = _to_decimal(total) - base * (count - 1)
    return amounts


async def _plan_response(db: AsyncSession, plan: InstallmentPlan) -> InstallmentPlanResponse:
    result = await db.execute(
        select(InstallmentSchedule)
        .where(InstallmentSchedule.plan_id == plan.id)
        .order_by(InstallmentSchedule.installment_number)
    )
    data = InstallmentPlanResponse.model_validate(plan)
    data.schedules = [InstallmentScheduleResponse.model_validate(s) for s in result.scalars().all()]
    return data


async def create_plan(db: AsyncSession, school_id: UUID, payload: InstallmentPlanCreate, user: CurrentUser) -> InstallmentPlanResponse:
    step = FREQUENCY_MONTHS[payload.frequency]
    amounts = split_installments(payload.total_amount, payload.number_of_installments)
    due_dates = [_add_months(payload.start_date, step * i) for i in range(payload.number_of_installments)]
    plan = InstallmentPlan(
        school_id=school_id,
        name=payload.name,
        description=payload.description,
        total_amount=payload.total_amount,
        number_of_installments=payload.number_of_installments,
        frequency=payload.frequency,
        start_date=payload.start_date,
        end_date=due_dates[-1],
        status=InstallmentPlanStatus.ACTIVE.value,
        created_by=user.id,
    )
    db.add(plan)
    await db.flush()
    for number, (amount, due) in enumerate(zip(amounts, due_dates), start=1):
        db.add(
            InstallmentSchedule(
                school_id=school_id,
                plan_id=plan.id,
                installment_number=number,
                amount=amount,
                due_date=due,
                status=InstallmentStatus.PENDING.value,
            )
        )
    for fee_id in payload.outstanding_fee_ids:
        fee = await _get_fee(db, school_id, fee_id)
        fee.payment_plan_id = plan.id
    await db.flush()
    await audit_service.log_audit(
        db, school_id, RESOURCE, plan.id, "installment_plan_created",
        user_id=user.id,
        new_values={
            "total_amount": payload.total_amount,
            "number_of_installments": payload.number_of_installments,
            "frequency": payload.frequency,
            "outstanding_fee_ids": payload.outstanding_fee_ids,
        },
    )
    await db.commit()
    await db.refresh(plan)
    return await _plan_response(db, plan)


async def list_plans(db: AsyncSession, school_id: UUID, status_filter: Optional[str] = None) -> List[InstallmentPlanResponse]:
    stmt = select(InstallmentPlan).where(InstallmentPlan.school_id == school_id)
    if status_filter:
        stmt = stmt.where(InstallmentPlan.status == status_filter)
    result = await db.execute(stmt.order_by(InstallmentPlan.start_date.desc()))
    return [await _plan_response(db, p) for p in result.scalars().all()]


async def _get_plan(db: AsyncSession, school_id: UUID, plan_id: UUID) -> InstallmentPlan:
    plan = await db.get(InstallmentPlan, plan_id)
    if plan is None or plan.school_id != school_id:
        raise NotFoundError("Installment plan not found")
    return plan


async def get_plan(db: AsyncSession, school_id: UUID, plan_id: UUID) -> InstallmentPlanResponse:
    return await _plan_response(db, await _get_plan(db, school_id, plan_id))


async def waive_installment(
    db: AsyncSession,
    school_id: UUID,
    schedule_id: UUID,
    reason: str,
    user: CurrentUser,
) -> InstallmentPlanResponse:
    schedule = await db.get(InstallmentSchedule, schedule_id)
    if schedule is None or schedule.school_id != school_id:
        raise NotFoundError("Installment not found")
    if schedule.status == InstallmentStatus.PAID.value:
        raise TransitionError(INVALID_TRANSITION, "A paid installment cannot be waived")
    old_status = schedule.status
    schedule.status = InstallmentStatus.WAIVED.value
    plan = await _get_plan(db, school_id, schedule.plan_id)
    await refresh_plan(db, plan)
    await audit_service.log_audit(
        db, school_id, RESOURCE, schedule.id, "installment_waived",
        user_id=user.id,
        old_values={"status": old_status},
        new_values={"status": schedule.status, "reason": reason, "plan_status": plan.status},
        elevated_privilege=True,
    )
    await db.commit()
    await db.refresh(plan)
    return await _plan_response(db, plan)


async def cancel_plan(db: AsyncSession, school_id: UUID, plan_id: UUID, user: CurrentUser) -> InstallmentPlanResponse:
    plan = await _get_plan(db, school_id, plan_id)
    if plan.status != InstallmentPlanStatus.ACTIVE.value:
        raise TransitionError(INVALID_TRANSITION, f"Plan is {plan.status}")
    plan.status = InstallmentPlanStatus.CANCELLED.value
    await audit_service.log_audit(
        db, school_id, RESOURCE, plan.id, "installment_plan_cancelled",
        user_id=user.id, old_values={"status": InstallmentPlanStatus.ACTIVE.value}, new_values={"status": plan.status},
    )
    await db.commit()
    await db.refresh(plan)
    return await _plan_response(db, plan)
