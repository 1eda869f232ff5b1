"""
Safeguarding concerns. Everything here is behind safeguarding_logs, which reports
denials as not found so the existence of a concern never leaks.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.auth import services as auth_service
from app.auth.schemas import CurrentUser
from app.core import audit_service
from app.core.enums import RecordStatus, ResourceType
from app.core.errors import conflict_from_stale
from app.core.exceptions import ConflictError, DuplicateError, NotFoundError, TransitionError
from app.core.models import SafeguardingConcern
from app.core.workflows import safeguarding
from app.core.workflows.base import INVALID_TRANSITION

from .schemas import ConcernCreate, ConcernResponse, ConcernTransition, ConcernUpdate

logger = logging.getLogger(__name__)

RESOURCE = ResourceType.SAFEGUARDING_LOGS.value


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_concern_number(now: datetime) -> str:
    return f"SG-{now.year}-{uuid.uuid4().hex[:8].upper()}"


def to_response(concern: SafeguardingConcern) -> ConcernResponse:
    data = ConcernResponse.model_validate(concern)
    data.allowed_transitions = sorted(safeguarding.MACHINE.allowed_transitions(concern.status))
    return data


async def _find_by_number(db: AsyncSession, school_id: UUID, number: str) -> Optional[SafeguardingConcern]:
    result = await db.execute(
        select(SafeguardingConcern).where(
            SafeguardingConcern.school_id == school_id, SafeguardingConcern.concern_number == number
        )
    )
    return result.scalar_one_or_none()


async def _ensure_replay_visible(db: AsyncSession, user: CurrentUser, school_id: UUID, concern: SafeguardingConcern) -> None:
    await auth_service.ensure_replay_visible(
        db, user, school_id, RESOURCE, f"Concern number '{concern.concern_number}'",
        is_owner=concern.reported_by == user.id,
    )


async def _get_concern(db: AsyncSession, school_id: UUID, concern_id: UUID) -> SafeguardingConcern:
    stmt = (
        select(SafeguardingConcern)
        .where(SafeguardingConcern.id == concern_id, SafeguardingConcern.school_id == school_id)
        .with_for_update()
    )
    concern = (await db.execute(stmt)).scalar_one_or_none()
    if concern is None:
        raise NotFoundError()
    return concern


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        raise conflict_from_stale(e)


async def report_concern(
    db: AsyncSession,
    school_id: UUID,
    payload: ConcernCreate,
    user: CurrentUser,
) -> Tuple[SafeguardingConcern, bool]:
    """Record a concern. Returns (concern, created); a repeated concern_number returns the existing one."""
    number = (payload.concern_number or "").strip() or generate_concern_number(_now())
    existing = await _find_by_number(db, school_id, number)
    if existing is not None:
        logger.info("concern %s resubmitted; returning existing record", number)
        await _ensure_replay_visible(db, user, school_id, existing)
        return existing, False

    concern = SafeguardingConcern(
        school_id=school_id,
        concern_number=number,
        student_id=payload.student_id,
        concern_type=payload.concern_type.value,
        risk_level=payload.risk_level.value,
        concern_details=payload.concern_details,
        incident_date=payload.incident_date,
        location=payload.location,
        witnesses=payload.witnesses,
        immediate_action_taken=payload.immediate_action_taken,
        dsl_assigned=payload.dsl_assigned,
        reported_by=user.id,
        status=RecordStatus.OPEN.value,
    )
    db.add(concern)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        existing = await _find_by_number(db, school_id, number)
        if existing is not None:
            await _ensure_replay_visible(db, user, school_id, existing)
            return existing, False
        raise DuplicateError(f"Concern number '{number}' is already in use")

    # Details stay out of the audit trail
    await audit_service.log_audit(
        db, school_id, RESOURCE, concern.id, "concern_reported",
        user_id=user.id,
        new_values={"concern_number": number, "concern_type": concern.concern_type, "risk_level": concern.risk_level},
    )
    if concern.risk_level in ("high", "critical"):
        logger.warning("%s risk safeguarding concern %s reported in school %s", concern.risk_level, concern.id, school_id)
    await db.commit()
    await db.refresh(concern)
    return concern, True


async def list_concerns(
    db: AsyncSession,
    school_id: UUID,
    student_id: Optional[UUID] = None,
    status_filter: Optional[str] = None,
    risk_level: Optional[str] = None,
) -> List[SafeguardingConcern]:
    stmt = select(SafeguardingConcern).where(SafeguardingConcern.school_id == school_id)
    if student_id:
        stmt = stmt.where(SafeguardingConcern.student_id == student_id)
    if status_filter:
        stmt = stmt.where(SafeguardingConcern.status == status_filter)
    if risk_level:
        stmt = stmt.where(SafeguardingConcern.risk_level == risk_level)
    result = await db.execute(stmt.order_by(SafeguardingConcern.created_at.desc()))
    return list(result.scalars().all())


async def get_concern(db: AsyncSession, school_id: UUID, concern_id: UUID) -> SafeguardingConcern:
    return await _get_concern(db, school_id, concern_id)


async def update_concern(
    db: AsyncSession,
    school_id: UUID,
    concern_id: UUID,
    payload: ConcernUpdate,
    user: CurrentUser,
) -> SafeguardingConcern:
    concern = await _get_concern(db, school_id, concern_id)
    if payload.expected_version != concern.version:
        raise ConflictError()
    if safeguarding.MACHINE.is_terminal(concern.status):
        raise TransitionError(INVALID_TRANSITION, "Closed concerns cannot be edited")

    changes = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
    if "risk_level" in changes and changes["risk_level"] is not None:
        changes["risk_level"] = changes["risk_level"].value
    old_values = {k: getattr(concern, k) for k in changes}
    for key, value in changes.items():
        setattr(concern, key, value)
    await audit_service.log_audit(
        db, school_id, RESOURCE, concern.id, "concern_updated",
        user_id=user.id,
        old_values={k: v for k, v in old_values.items() if k != "case_notes"},
        new_values={k: v for k, v in changes.items() if k != "case_notes"},
    )
    await _commit(db)
    await db.refresh(concern)
    return concern


async def transition_concern(
    db: AsyncSession,
    school_id: UUID,
    concern_id: UUID,
    payload: ConcernTransition,
    user: CurrentUser,
) -> SafeguardingConcern:
    concern = await _get_concern(db, school_id, concern_id)
    if payload.expected_version != concern.version:
        raise ConflictError()

    actor = await auth_service.build_actor(db, user, school_id, RESOURCE, is_owner=concern.reported_by == user.id)
    result = safeguarding.MACHINE.apply(concern.status, payload.status, actor, payload.model_dump(exclude_none=True))
    if not result.accepted:
        logger.info("concern %s: rejected %s -> %s (%s)", concern.id, concern.status, payload.status, result.reason)
        result.raise_for_rejection()

    old_status = concern.status
    concern.status = result.new_state
    if payload.outcome is not None:
        concern.outcome = payload.outcome
    if payload.case_notes is not None:
        concern.case_notes = payload.case_notes
    for effect in result.effects:
        if effect == "set_closed_at":
            concern.closed_at = _now()
        elif effect == "clear_outcome":
            concern.outcome = None

    await audit_service.log_audit(
        db, school_id, RESOURCE, concern.id, "status_changed",
        user_id=user.id,
        old_values={"status": old_status},
        new_values={"status": concern.status, "effects": list(result.effects)},
        elevated_privilege=result.new_state == RecordStatus.ESCALATED.value,
    )
    await _commit(db)
    await db.refresh(concern)
    return concern
