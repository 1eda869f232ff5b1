"""
Library catalogue, members, circulation and fines.

Copy, loan and fine statuses move only through the library state machines.
Title availability and member counters are projections: every write here
refreshes them, and the reconciliation pass rebuilds them from scratch.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import services as auth_service
from app.auth.schemas import CurrentUser
from app.core import audit_service, reconciliation
from app.core.config import settings as app_settings
from app.core.enums import (
    CirculationStatus,
    LibraryBookStatus,
    LibraryFineStatus,
    LibraryMemberType,
    ResourceType,
)
from app.core.exceptions import NotFoundError, TransitionError, ValidationError
from app.core.models import (
    LibraryBookCopy,
    LibraryBookTitle,
    LibraryCirculation,
    LibraryFine,
    LibraryMember,
    LibrarySettings,
)
from app.core.workflows import library
from app.core.workflows.base import INVALID_TRANSITION, Actor

from .schemas import (
    BookCopyCreate,
    BookTitleCreate,
    FinePayment,
    IssueRequest,
    LibrarySettingsUpdate,
    MemberCreate,
    ReturnRequest,
)

logger = logging.getLogger(__name__)

MODULE_KEY = "LIBRARY"
# Loans are records about students and staff; access rides on the students resource
RESOURCE = ResourceType.STUDENTS.value
DAMAGED_CONDITIONS = frozenset({"damaged", "needs_repair"})


def _today() -> date:
    return datetime.now(timezone.utc).date()


async def _actor(db: AsyncSession, user: CurrentUser, school_id: UUID) -> Actor:
    return await auth_service.build_actor(db, user, school_id, RESOURCE)


# ----- Settings -----

async def get_settings(db: AsyncSession, school_id: UUID) -> LibrarySettings:
    """The school's circulation policy, created from configured defaults on first use."""
    result = await db.execute(select(LibrarySettings).where(LibrarySettings.school_id == school_id))
    row = result.scalar_one_or_none()
    if row is None:
        row = LibrarySettings(
            school_id=school_id,
            student_max_books=2,
            student_loan_days=app_settings.library_default_loan_days,
            student_fine_per_day=Decimal(app_settings.library_default_fine_per_day),
            student_max_renewals=1,
            staff_max_books=5,
            staff_loan_days=30,
            staff_fine_per_day=Decimal("0"),
            staff_max_renewals=2,
            grace_period_days=app_settings.library_grace_period_days,
            lost_book_processing_fee=Decimal("0"),
        )
        db.add(row)
        await db.flush()
    return row


def _policy(policy: LibrarySettings, member_type: str) -> Dict[str, object]:
    if member_type == LibraryMemberType.STAFF.value:
        return {
            "max_books": policy.staff_max_books,
            "loan_days": policy.staff_loan_days,
            "fine_per_day": Decimal(policy.staff_fine_per_day),
            "max_renewals": policy.staff_max_renewals,
        }
    return {
        "max_books": policy.student_max_books,
        "loan_days": policy.student_loan_days,
        "fine_per_day": Decimal(policy.student_fine_per_day),
        "max_renewals": policy.student_max_renewals,
    }


async def update_settings(db: AsyncSession, school_id: UUID, payload: LibrarySettingsUpdate, user: CurrentUser) -> LibrarySettings:
    row = await get_settings(db, school_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    old_values = {k: getattr(row, k) for k in changes}
    for key, value in changes.items():
        setattr(row, key, value)
    await audit_service.log_audit(
        db, school_id, RESOURCE, row.id, "library_settings_updated",
        user_id=user.id, old_values=old_values, new_values=changes,
    )
    await db.commit()
    await db.refresh(row)
    return row


# ----- Projections -----

async def refresh_title(db: AsyncSession, title: LibraryBookTitle) -> bool:
    """Rebuild available_copies from copy statuses. Returns True when the stored value changed."""
    result = await db.execute(select(LibraryBookCopy.status).where(LibraryBookCopy.title_id == title.id))
    available = reconciliation.available_copies(title.total_copies, result.scalars().all())
    if title.available_copies == available:
        return False
    logger.debug("title %s available_copies %s -> %s", title.id, title.available_copies, available)
    title.available_copies = available
    return True


async def refresh_member(db: AsyncSession, member: LibraryMember) -> bool:
    """Rebuild current_borrowed and total_fines_pending. Returns True when either changed."""
    loans = await db.execute(select(LibraryCirculation.status).where(LibraryCirculation.member_id == member.id))
    fines = await db.execute(select(LibraryFine).where(LibraryFine.member_id == member.id))
    borrowed = reconciliation.member_current_borrowed(loans.scalars().all())
    pending = reconciliation.member_fines_pending(fines.scalars().all())
    changed = member.current_borrowed != borrowed or Decimal(member.total_fines_pending or 0) != pending
    member.current_borrowed = borrowed
    member.total_fines_pending = pending
    return changed


# ----- Titles and copies -----

async def _next_accession_number(db: AsyncSession, school_id: UUID) -> int:
    result = await db.execute(
        select(func.max(LibraryBookCopy.accession_number)).where(LibraryBookCopy.school_id == school_id)
    )
    return (result.scalar() or 0) + 1


async def _add_copy(db: AsyncSession, title: LibraryBookTitle, payload: BookCopyCreate) -> LibraryBookCopy:
    if payload.status not in (LibraryBookStatus.AVAILABLE, LibraryBookStatus.PROCESSING):
        raise ValidationError("New copies start as available or processing", field="status", code="invalid_enum_value")
    count = await db.execute(select(func.count()).select_from(LibraryBookCopy).where(LibraryBookCopy.title_id == title.id))
    copy = LibraryBookCopy(
        school_id=title.school_id,
        title_id=title.id,
        accession_number=await _next_accession_number(db, title.school_id),
        copy_number=(count.scalar() or 0) + 1,
        call_number=payload.call_number,
        barcode=payload.barcode,
        condition=payload.condition,
        price=payload.price,
        status=payload.status.value,
        is_reference=title.book_type == "reference",
    )
    db.add(copy)
    title.total_copies = (title.total_copies or 0) + 1
    await db.flush()
    return copy


async def create_title(db: AsyncSession, school_id: UUID, payload: BookTitleCreate, user: CurrentUser) -> LibraryBookTitle:
    title = LibraryBookTitle(
        school_id=school_id,
        title=payload.title.strip(),
        subtitle=payload.subtitle,
        authors=payload.authors,
        publisher=payload.publisher,
        isbn=payload.isbn,
        category=payload.category,
        book_type=payload.book_type,
        total_copies=0,
        available_copies=0,
    )
    db.add(title)
    await db.flush()
    for _ in range(payload.copies):
        await _add_copy(db, title, BookCopyCreate(price=payload.price))
    await refresh_title(db, title)
    await audit_service.log_audit(
        db, school_id, RESOURCE, title.id, "book_title_created",
        user_id=user.id, new_values={"title": title.title, "copies": payload.copies},
    )
    await db.commit()
    await db.refresh(title)
    return title


async def list_titles(db: AsyncSession, school_id: UUID, search: Optional[str] = None) -> List[LibraryBookTitle]:
    stmt = select(LibraryBookTitle).where(LibraryBookTitle.school_id == school_id)
    if search:
        stmt = stmt.where(LibraryBookTitle.title.ilike(f"%{search}%"))
    result = await db.execute(stmt.order_by(LibraryBookTitle.title))
    return list(result.scalars().all())


async def get_title(db: AsyncSession, school_id: UUID, title_id: UUID) -> LibraryBookTitle:
    title = await db.get(LibraryBookTitle, title_id)
    if title is None or title.school_id != school_id:
        raise NotFoundError("Book title not found")
    return title


async def add_copy(db: AsyncSession, school_id: UUID, title_id: UUID, payload: BookCopyCreate, user: CurrentUser) -> LibraryBookCopy:
    title = await get_title(db, school_id, title_id)
    copy = await _add_copy(db, title, payload)
    await refresh_title(db, title)
    await audit_service.log_audit(
        db, school_id, RESOURCE, copy.id, "book_copy_added",
        user_id=user.id, new_values={"title_id": title.id, "accession_number": copy.accession_number},
    )
    await db.commit()
    await db.refresh(copy)
    return copy


async def list_copies(db: AsyncSession, school_id: UUID, title_id: UUID) -> List[LibraryBookCopy]:
    await get_title(db, school_id, title_id)
    result = await db.execute(
        select(LibraryBookCopy).where(LibraryBookCopy.title_id == title_id).order_by(LibraryBookCopy.copy_number)
    )
    return list(result.scalars().all())


async def _get_copy(db: AsyncSession, school_id: UUID, copy_id: UUID) -> LibraryBookCopy:
    stmt = (
        select(LibraryBookCopy)
        .where(LibraryBookCopy.id == copy_id, LibraryBookCopy.school_id == school_id)
        .with_for_update()
    )
    copy = (await db.execute(stmt)).scalar_one_or_none()
    if copy is None:
        raise NotFoundError("Book copy not found")
    return copy


def _move_copy(copy: LibraryBookCopy, requested: str, actor: Actor) -> None:
    result = library.COPY_MACHINE.apply(copy.status, requested, actor)
    result.raise_for_rejection()
    copy.status = result.new_state


async def set_copy_status(
    db: AsyncSession,
    school_id: UUID,
    copy_id: UUID,
    requested: LibraryBookStatus,
    user: CurrentUser,
    reason: Optional[str] = None,
) -> LibraryBookCopy:
    """Shelving, repair, reservation and withdrawal. Issue and return go through circulation."""
    copy = await _get_copy(db, school_id, copy_id)
    if requested == LibraryBookStatus.ISSUED or copy.status == LibraryBookStatus.ISSUED.value:
        raise TransitionError(INVALID_TRANSITION, "Issued copies change status through circulation", field="status")
    old_status = copy.status
    _move_copy(copy, requested.value, await _actor(db, user, school_id))
    title = await get_title(db, school_id, copy.title_id)
    if requested == LibraryBookStatus.WITHDRAWN:
        copy.withdrawn_date = _today()
        copy.withdrawn_reason = reason
        title.total_copies = max(0, (title.total_copies or 0) - 1)
    await refresh_title(db, title)
    await audit_service.log_audit(
        db, school_id, RESOURCE, copy.id, "book_copy_status_changed",
        user_id=user.id, old_values={"status": old_status}, new_values={"status": copy.status, "reason": reason},
    )
    await db.commit()
    await db.refresh(copy)
    return copy


# ----- Members -----

async def create_member(db: AsyncSession, school_id: UUID, payload: MemberCreate, user: CurrentUser) -> LibraryMember:
    if payload.member_type == LibraryMemberType.STUDENT and payload.student_id is None:
        raise ValidationError("student_id is required for student members", field="student_id", code="missing_required_field")
    if payload.member_type == LibraryMemberType.STAFF and payload.staff_id is None:
        raise ValidationError("staff_id is required for staff members", field="staff_id", code="missing_required_field")
    member = LibraryMember(
        school_id=school_id,
        member_type=payload.member_type.value,
        full_name=payload.full_name.strip(),
        student_id=payload.student_id,
        staff_id=payload.staff_id,
        library_card_number=payload.library_card_number,
        total_fines_pending=Decimal("0"),
    )
    db.add(member)
    await db.flush()
    await audit_service.log_audit(
        db, school_id, RESOURCE, member.id, "library_member_created",
        user_id=user.id, new_values={"member_type": member.member_type, "full_name": member.full_name},
    )
    await db.commit()
    await db.refresh(member)
    return member


async def list_members(db: AsyncSession, school_id: UUID, member_type: Optional[str] = None) -> List[LibraryMember]:
    stmt = select(LibraryMember).where(LibraryMember.school_id == school_id)
    if member_type:
        stmt = stmt.where(LibraryMember.member_type == member_type)
    result = await db.execute(stmt.order_by(LibraryMember.full_name))
    return list(result.scalars().all())


async def get_member(db: AsyncSession, school_id: UUID, member_id: UUID) -> LibraryMember:
    member = await db.get(LibraryMember, member_id)
    if member is None or member.school_id != school_id:
        raise NotFoundError("Library member not found")
    return member


async def set_member_blocked(
    db: AsyncSession,
    school_id: UUID,
    member_id: UUID,
    is_blocked: bool,
    user: CurrentUser,
    reason: Optional[str] = None,
) -> LibraryMember:
    member = await get_member(db, school_id, member_id)
    if member.is_blocked != is_blocked:
        member.is_blocked = is_blocked
        member.blocked_reason = reason if is_blocked else None
        await audit_service.log_audit(
            db, school_id, RESOURCE, member.id, "library_member_blocked" if is_blocked else "library_member_unblocked",
            user_id=user.id, new_values={"is_blocked": is_blocked, "reason": reason},
        )
        await db.commit()
        await db.refresh(member)
    return member


# ----- Circulation -----

async def _get_circulation(db: AsyncSession, school_id: UUID, circulation_id: UUID) -> LibraryCirculation:
    stmt = (
        select(LibraryCirculation)
        .where(LibraryCirculation.id == circulation_id, LibraryCirculation.school_id == school_id)
        .with_for_update()
    )
    circulation = (await db.execute(stmt)).scalar_one_or_none()
    if circulation is None:
        raise NotFoundError("Circulation record not found")
    return circulation


async def issue_copy(db: AsyncSession, school_id: UUID, payload: IssueRequest, user: CurrentUser) -> LibraryCirculation:
    copy = await _get_copy(db, school_id, payload.copy_id)
    member = await get_member(db, school_id, payload.member_id)
    title = await get_title(db, school_id, copy.title_id)

    if copy.is_reference or title.book_type == "reference":
        raise ValidationError("Reference copies cannot be issued", field="copy_id", code="reference_copy")
    if copy.status != LibraryBookStatus.AVAILABLE.value:
        raise TransitionError(INVALID_TRANSITION, f"Copy is {copy.status}, not available", field="copy_id")
    if not member.is_active or member.is_blocked:
        raise ValidationError("Member is blocked or inactive", field="member_id", code="member_blocked")

    policy = _policy(await get_settings(db, school_id), member.member_type)
    active = await db.execute(
        select(func.count())
        .select_from(LibraryCirculation)
        .where(LibraryCirculation.member_id == member.id, LibraryCirculation.status == CirculationStatus.ISSUED.value)
    )
    if (active.scalar() or 0) >= policy["max_books"]:
        raise ValidationError(
            f"Borrowing limit of {policy['max_books']} reached",
            field="member_id",
            code="borrowing_limit_reached",
        )

    today = _today()
    due = payload.due_date or library.renewed_due_date(today, today, policy["loan_days"])
    if due < today:
        raise ValidationError("Due date cannot be in the past", field="due_date")
    _move_copy(copy, LibraryBookStatus.ISSUED.value, await _actor(db, user, school_id))
    circulation = LibraryCirculation(
        school_id=school_id,
        copy_id=copy.id,
        member_id=member.id,
        issue_date=today,
        due_date=due,
        issued_by=user.id,
        status=CirculationStatus.ISSUED.value,
        remarks=payload.remarks,
    )
    db.add(circulation)
    member.total_borrowed = (member.total_borrowed or 0) + 1
    await db.flush()
    await refresh_title(db, title)
    await refresh_member(db, member)
    await audit_service.log_audit(
        db, school_id, RESOURCE, circulation.id, "book_issued",
        user_id=user.id, new_values={"copy_id": copy.id, "member_id": member.id, "due_date": due},
    )
    await db.commit()
    await db.refresh(circulation)
    logger.info("copy %s issued to member %s until %s", copy.accession_number, member.id, due)
    return circulation


async def renew_loan(db: AsyncSession, school_id: UUID, circulation_id: UUID, user: CurrentUser) -> LibraryCirculation:
    circulation = await _get_circulation(db, school_id, circulation_id)
    if circulation.status != CirculationStatus.ISSUED.value:
        raise TransitionError(INVALID_TRANSITION, f"Loan is {circulation.status} and cannot be renewed")
    member = await get_member(db, school_id, circulation.member_id)
    policy = _policy(await get_settings(db, school_id), member.member_type)
    if circulation.renewal_count >= policy["max_renewals"]:
        raise ValidationError(
            f"Renewal limit of {policy['max_renewals']} reached",
            field="renewal_count",
            code="renewal_limit_reached",
        )
    today = _today()
    old_due = circulation.due_date
    circulation.due_date = library.renewed_due_date(old_due, today, policy["loan_days"])
    circulation.renewal_count += 1
    circulation.last_renewed_date = today
    circulation.is_overdue = False
    circulation.overdue_days = 0
    await audit_service.log_audit(
        db, school_id, RESOURCE, circulation.id, "loan_renewed",
        user_id=user.id, old_values={"due_date": old_due}, new_values={"due_date": circulation.due_date},
    )
    await db.commit()
    await db.refresh(circulation)
    return circulation


async def _raise_fine(
    db: AsyncSession,
    circulation: LibraryCirculation,
    fine_type: str,
    amount: Decimal,
    remarks: Optional[str] = None,
) -> LibraryFine:
    fine = LibraryFine(
        school_id=circulation.school_id,
        member_id=circulation.member_id,
        circulation_id=circulation.id,
        copy_id=circulation.copy_id,
        fine_type=fine_type,
        fine_amount=amount,
        paid_amount=Decimal("0"),
        balance=amount,
        fine_date=_today(),
        status=LibraryFineStatus.PENDING.value,
        remarks=remarks,
    )
    db.add(fine)
    await db.flush()
    return fine


async def return_copy(
    db: AsyncSession,
    school_id: UUID,
    circulation_id: UUID,
    payload: ReturnRequest,
    user: CurrentUser,
) -> LibraryCirculation:
    """Close a loan. A late return raises an overdue fine; a damaged one sends the copy to repair."""
    circulation = await _get_circulation(db, school_id, circulation_id)
    actor = await _actor(db, user, school_id)
    result = library.CIRCULATION_MACHINE.apply(circulation.status, CirculationStatus.RETURNED.value, actor)
    result.raise_for_rejection()

    copy = await _get_copy(db, school_id, circulation.copy_id)
    member = await get_member(db, school_id, circulation.member_id)
    policy_row = await get_settings(db, school_id)
    policy = _policy(policy_row, member.member_type)

    today = _today()
    days = library.overdue_days(circulation.due_date, today, policy_row.grace_period_days)
    fine_amount = library.overdue_fine(days, policy["fine_per_day"])

    circulation.status = result.new_state
    circulation.return_date = today
    circulation.returned_by = user.id
    circulation.return_condition = payload.return_condition
    circulation.overdue_days = days
    circulation.is_overdue = days > 0
    if payload.remarks:
        circulation.remarks = payload.remarks
    if fine_amount > 0:
        circulation.fine_amount = fine_amount
        await _raise_fine(db, circulation, "overdue", fine_amount, f"{days} day(s) overdue")

    damaged = (payload.return_condition or "").lower() in DAMAGED_CONDITIONS
    _move_copy(copy, LibraryBookStatus.REPAIR.value if damaged else LibraryBookStatus.AVAILABLE.value, actor)
    if payload.return_condition:
        copy.condition = payload.return_condition

    await refresh_title(db, await get_title(db, school_id, copy.title_id))
    await refresh_member(db, member)
    await audit_service.log_audit(
        db, school_id, RESOURCE, circulation.id, "book_returned",
        user_id=user.id,
        old_values={"status": CirculationStatus.ISSUED.value},
        new_values={"status": circulation.status, "overdue_days": days, "fine_amount": fine_amount},
    )
    await db.commit()
    await db.refresh(circulation)
    return circulation


async def mark_lost(db: AsyncSession, school_id: UUID, circulation_id: UUID, user: CurrentUser) -> LibraryCirculation:
    """Close a loan as lost and charge the copy price plus the processing fee."""
    circulation = await _get_circulation(db, school_id, circulation_id)
    actor = await _actor(db, user, school_id)
    result = library.CIRCULATION_MACHINE.apply(circulation.status, CirculationStatus.LOST.value, actor)
    result.raise_for_rejection()

    copy = await _get_copy(db, school_id, circulation.copy_id)
    member = await get_member(db, school_id, circulation.member_id)
    policy_row = await get_settings(db, school_id)

    circulation.status = result.new_state
    _move_copy(copy, LibraryBookStatus.LOST.value, actor)
    amount = Decimal(copy.price or 0) + Decimal(policy_row.lost_book_processing_fee or 0)
    if amount > 0:
        circulation.fine_amount = amount
        await _raise_fine(db, circulation, "lost", amount, "Lost book")

    await refresh_title(db, await get_title(db, school_id, copy.title_id))
    await refresh_member(db, member)
    await audit_service.log_audit(
        db, school_id, RESOURCE, circulation.id, "book_lost",
        user_id=user.id,
        old_values={"status": CirculationStatus.ISSUED.value},
        new_values={"status": circulation.status, "fine_amount": amount},
    )
    await db.commit()
    await db.refresh(circulation)
    return circulation


async def list_circulations(
    db: AsyncSession,
    school_id: UUID,
    *,
    member_id: Optional[UUID] = None,
    status_filter: Optional[str] = None,
    overdue_only: bool = False,
) -> List[LibraryCirculation]:
    stmt = select(LibraryCirculation).where(LibraryCirculation.school_id == school_id)
    if member_id:
        stmt = stmt.where(LibraryCirculation.member_id == member_id)
    if status_filter:
        stmt = stmt.where(LibraryCirculation.status == status_filter)
    if overdue_only:
        stmt = stmt.where(
            LibraryCirculation.status == CirculationStatus.ISSUED.value,
            LibraryCirculation.due_date < _today(),
        )
    result = await db.execute(stmt.order_by(LibraryCirculation.due_date))
    return list(result.scalars().all())


# ----- Fines -----

async def _get_fine(db: AsyncSession, school_id: UUID, fine_id: UUID) -> LibraryFine:
    fine = await db.get(LibraryFine, fine_id)
    if fine is None or fine.school_id != school_id:
        raise NotFoundError("Fine not found")
    return fine


async def list_fines(
    db: AsyncSession,
    school_id: UUID,
    member_id: Optional[UUID] = None,
    status_filter: Optional[str] = None,
) -> List[LibraryFine]:
    stmt = select(LibraryFine).where(LibraryFine.school_id == school_id)
    if member_id:
        stmt = stmt.where(LibraryFine.member_id == member_id)
    if status_filter:
        stmt = stmt.where(LibraryFine.status == status_filter)
    result = await db.execute(stmt.order_by(LibraryFine.fine_date.desc()))
    return list(result.scalars().all())


async def pay_fine(db: AsyncSession, school_id: UUID, fine_id: UUID, payload: FinePayment, user: CurrentUser) -> LibraryFine:
    fine = await _get_fine(db, school_id, fine_id)
    balance = Decimal(fine.balance)
    if payload.amount > balance:
        raise ValidationError(f"Payment exceeds the outstanding balance of {balance}", field="amount")
    new_balance = balance - payload.amount
    result = library.FINE_MACHINE.apply(
        fine.status, library.fine_status_after_payment(new_balance), await _actor(db, user, school_id)
    )
    result.raise_for_rejection()

    old_status = fine.status
    fine.status = result.new_state
    fine.paid_amount = Decimal(fine.paid_amount or 0) + payload.amount
    fine.balance = new_balance
    fine.payment_date = _today()
    fine.payment_method = payload.payment_method
    fine.receipt_number = payload.receipt_number
    fine.collected_by = user.id
    await refresh_member(db, await get_member(db, school_id, fine.member_id))
    await audit_service.log_audit(
        db, school_id, RESOURCE, fine.id, "fine_paid",
        user_id=user.id,
        old_values={"status": old_status, "balance": balance},
        new_values={"status": fine.status, "balance": new_balance, "amount": payload.amount},
    )
    await db.commit()
    await db.refresh(fine)
    return fine


async def waive_fine(db: AsyncSession, school_id: UUID, fine_id: UUID, reason: str, user: CurrentUser) -> LibraryFine:
    fine = await _get_fine(db, school_id, fine_id)
    result = library.FINE_MACHINE.apply(fine.status, LibraryFineStatus.WAIVED.value, await _actor(db, user, school_id))
    result.raise_for_rejection()
    old_status = fine.status
    fine.status = result.new_state
    fine.remarks = reason
    await refresh_member(db, await get_member(db, school_id, fine.member_id))
    await audit_service.log_audit(
        db, school_id, RESOURCE, fine.id, "fine_waived",
        user_id=user.id,
        old_values={"status": old_status},
        new_values={"status": fine.status, "balance": fine.balance, "reason": reason},
        elevated_privilege=True,
    )
    await db.commit()
    await db.refresh(fine)
    return fine
