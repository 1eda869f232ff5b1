"""
Reconciliation passes. Each pass reloads the source rows for one school, rebuilds
the cached projections and writes back only what drifted. Running a pass twice
in a row corrects nothing the second time.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fees import service as fees_service
from app.api.v1.library import service as library_service
from app.api.v1.transport import service as transport_service
from app.auth.schemas import CurrentUser
from app.core import audit_service, reconciliation
from app.core.enums import CirculationStatus, InstallmentPlanStatus, ResourceType, TripStatus
from app.core.exceptions import ConsistencyError, ValidationError
from app.core.models import (
    CollectionSession,
    InstallmentPlan,
    LibraryBookTitle,
    LibraryCirculation,
    LibraryMember,
    OutstandingFee,
    TripInstance,
)

from .schemas import PassResult, ReconciliationResponse

logger = logging.getLogger(__name__)

LIBRARY = "library"
FINANCE = "finance"
TRANSPORT = "transport"


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _warn_drift(school_id: UUID, name: str, result: PassResult) -> None:
    drifted = {k: v for k, v in result.corrected.items() if v}
    if drifted:
        logger.warning("reconciliation %s school=%s corrected %s", name, school_id, drifted)


async def reconcile_library(db: AsyncSession, school_id: UUID, as_of: Optional[date] = None) -> PassResult:
    as_of = as_of or _today()
    result = PassResult()
    policy = await library_service.get_settings(db, school_id)

    titles = (await db.execute(select(LibraryBookTitle).where(LibraryBookTitle.school_id == school_id))).scalars().all()
    result.examined["titles"] = len(titles)
    result.corrected["titles"] = sum([await library_service.refresh_title(db, t) for t in titles])

    loans = (
        await db.execute(
            select(LibraryCirculation).where(
                LibraryCirculation.school_id == school_id,
                LibraryCirculation.status == CirculationStatus.ISSUED.value,
            )
        )
    ).scalars().all()
    result.examined["circulations"] = len(loans)
    corrected = 0
    for loan in loans:
        state = reconciliation.circulation_overdue(loan.status, loan.due_date, as_of, policy.grace_period_days)
        if loan.is_overdue != state.is_overdue or loan.overdue_days != state.overdue_days:
            loan.is_overdue = state.is_overdue
            loan.overdue_days = state.overdue_days
            corrected += 1
    result.corrected["circulations"] = corrected

    members = (await db.execute(select(LibraryMember).where(LibraryMember.school_id == school_id))).scalars().all()
    result.examined["members"] = len(members)
    result.corrected["members"] = sum([await library_service.refresh_member(db, m) for m in members])
    return result


async def reconcile_finance(db: AsyncSession, school_id: UUID, as_of: Optional[date] = None) -> PassResult:
    as_of = as_of or _today()
    result = PassResult()

    fees = (await db.execute(select(OutstandingFee).where(OutstandingFee.school_id == school_id))).scalars().all()
    result.examined["outstanding_fees"] = len(fees)
    corrected = unresolved = 0
    for fee in fees:
        try:
            corrected += await fees_service.refresh_fee(db, fee, as_of)
        except ConsistencyError as e:
            logger.error("reconciliation finance school=%s fee=%s: %s", school_id, fee.id, e.message)
            unresolved += 1
    result.corrected["outstanding_fees"] = corrected
    result.unresolved["outstanding_fees"] = unresolved

    plans = (
        await db.execute(
            select(InstallmentPlan).where(
                InstallmentPlan.school_id == school_id,
                InstallmentPlan.status == InstallmentPlanStatus.ACTIVE.value,
            )
        )
    ).scalars().all()
    result.examined["installment_plans"] = len(plans)
    result.corrected["installment_plans"] = sum([await fees_service.refresh_plan(db, p, as_of) for p in plans])

    sessions = (await db.execute(select(CollectionSession).where(CollectionSession.school_id == school_id))).scalars().all()
    result.examined["collection_sessions"] = len(sessions)
    result.corrected["collection_sessions"] = sum([await fees_service.refresh_session(db, s) for s in sessions])
    return result


async def reconcile_transport(db: AsyncSession, school_id: UUID, as_of: Optional[date] = None) -> PassResult:
    """Headcounts for today's trips plus any earlier trip still running."""
    as_of = as_of or _today()
    result = PassResult()
    stmt = select(TripInstance).where(
        TripInstance.school_id == school_id,
        (TripInstance.instance_date == as_of)
        | TripInstance.status.in_((TripStatus.IN_PROGRESS.value, TripStatus.DELAYED.value)),
    )
    trips = (await db.execute(stmt)).scalars().all()
    result.examined["trips"] = len(trips)
    corrected = 0
    for trip in trips:
        boarded, dropped = trip.total_students_boarded, trip.total_students_dropped
        if await transport_service.reconcile_trip(db, trip) is not None:
            result.alerts_opened += 1
        if (boarded, dropped) != (trip.total_students_boarded, trip.total_students_dropped):
            corrected += 1
    result.corrected["trips"] = corrected
    return result


PASSES: Dict[str, Callable] = {
    LIBRARY: reconcile_library,
    FINANCE: reconcile_finance,
    TRANSPORT: reconcile_transport,
}


async def run(
    db: AsyncSession,
    school_id: UUID,
    user: Optional[CurrentUser] = None,
    passes: Optional[Iterable[str]] = None,
    as_of: Optional[date] = None,
) -> ReconciliationResponse:
    names = list(passes) if passes else list(PASSES)
    unknown = [n for n in names if n not in PASSES]
    if unknown:
        raise ValidationError(f"Unknown reconciliation pass: {', '.join(unknown)}", field="passes")

    started_at = datetime.now(timezone.utc)
    results: Dict[str, PassResult] = {}
    for name in names:
        results[name] = await PASSES[name](db, school_id, as_of)
        _warn_drift(school_id, name, results[name])

    await audit_service.log_audit(
        db, school_id, ResourceType.SYSTEM_SETTINGS.value, None, "reconciliation_run",
        user_id=user.id if user else None,
        new_values={name: r.model_dump() for name, r in results.items()},
    )
    await db.commit()
    logger.info("reconciliation school=%s passes=%s done", school_id, names)
    return ReconciliationResponse(started_at=started_at, finished_at=datetime.now(timezone.utc), results=results)
