"""Recruitment pipeline for job applications."""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.auth import services as auth_service
from app.auth.schemas import CurrentUser
from app.core import audit_service
from app.core.enums import RecruitmentStatus, ResourceType
from app.core.errors import conflict_from_stale
from app.core.exceptions import ConflictError, NotFoundError, TransitionError
from app.core.models import JobApplication
from app.core.workflows import recruitment
from app.core.workflows.base import INVALID_TRANSITION

from .schemas import JobApplicationCreate, JobApplicationResponse, JobApplicationTransition, JobApplicationUpdate

logger = logging.getLogger(__name__)

RESOURCE = ResourceType.STAFF_MANAGEMENT.value


def to_response(application: JobApplication) -> JobApplicationResponse:
    data = JobApplicationResponse.model_validate(application)
    data.allowed_transitions = sorted(recruitment.MACHINE.allowed_transitions(application.application_status))
    return data


def _is_applicant(application: JobApplication, user: CurrentUser) -> bool:
    return application.applicant_email.lower() == user.email.lower()


async def _get_application(db: AsyncSession, school_id: UUID, application_id: UUID) -> JobApplication:
    stmt = (
        select(JobApplication)
        .where(JobApplication.id == application_id, JobApplication.school_id == school_id)
        .with_for_update()
    )
    application = (await db.execute(stmt)).scalar_one_or_none()
    if application is None:
        raise NotFoundError("Job application not found")
    return application


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        raise conflict_from_stale(e)


async def create_application(
    db: AsyncSession, school_id: UUID, payload: JobApplicationCreate, user: CurrentUser
) -> JobApplication:
    application = JobApplication(
        school_id=school_id,
        application_status=RecruitmentStatus.SUBMITTED.value,
        **payload.model_dump(),
    )
    db.add(application)
    await db.flush()
    await audit_service.log_audit(
        db, school_id, RESOURCE, application.id, "job_application_created",
        user_id=user.id,
        new_values={"job_posting_id": payload.job_posting_id, "applicant_email": payload.applicant_email},
    )
    await db.commit()
    await db.refresh(application)
    return application


async def list_applications(
    db: AsyncSession,
    school_id: UUID,
    job_posting_id: Optional[UUID] = None,
    status_filter: Optional[str] = None,
) -> List[JobApplication]:
    stmt = select(JobApplication).where(JobApplication.school_id == school_id)
    if job_posting_id:
        stmt = stmt.where(JobApplication.job_posting_id == job_posting_id)
    if status_filter:
        stmt = stmt.where(JobApplication.application_status == status_filter)
    result = await db.execute(stmt.order_by(JobApplication.created_at.desc()))
    return list(result.scalars().all())


async def get_application(db: AsyncSession, school_id: UUID, application_id: UUID) -> JobApplication:
    return await _get_application(db, school_id, application_id)


async def update_application(
    db: AsyncSession,
    school_id: UUID,
    application_id: UUID,
    payload: JobApplicationUpdate,
    user: CurrentUser,
) -> JobApplication:
    application = await _get_application(db, school_id, application_id)
    if payload.expected_version != application.version:
        raise ConflictError()
    if recruitment.MACHINE.is_terminal(application.application_status):
        raise TransitionError(INVALID_TRANSITION, f"Application is {application.application_status}")

    changes = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
    old_values = {k: getattr(application, k) for k in changes}
    for key, value in changes.items():
        setattr(application, key, value)
    await audit_service.log_audit(
        db, school_id, RESOURCE, application.id, "job_application_updated",
        user_id=user.id, old_values=old_values, new_values=changes,
    )
    await _commit(db)
    await db.refresh(application)
    return application


async def transition_application(
    db: AsyncSession,
    school_id: UUID,
    application_id: UUID,
    payload: JobApplicationTransition,
    user: CurrentUser,
) -> JobApplication:
    """Move an application along the pipeline. The applicant may withdraw their own application."""
    application = await _get_application(db, school_id, application_id)
    if payload.expected_version != application.version:
        raise ConflictError()

    actor = await auth_service.build_actor(db, user, school_id, RESOURCE, is_owner=_is_applicant(application, user))
    result = recruitment.MACHINE.apply(
        application.application_status, payload.status, actor, payload.model_dump(exclude_none=True)
    )
    if not result.accepted:
        logger.info(
            "job application %s: rejected %s -> %s (%s)",
            application.id, application.application_status, payload.status, result.reason,
        )
        result.raise_for_rejection()

    old_status = application.application_status
    application.application_status = result.new_state
    application.last_transition_by = user.id
    application.last_transition_at = datetime.now(timezone.utc)
    if result.new_state == RecruitmentStatus.REJECTED.value:
        application.rejection_reason = payload.rejection_reason
        application.rejection_feedback = payload.rejection_feedback

    await audit_service.log_audit(
        db, school_id, RESOURCE, application.id, "status_changed",
        user_id=user.id,
        old_values={"application_status": old_status},
        new_values={"application_status": application.application_status, "rejection_reason": payload.rejection_reason},
    )
    await _commit(db)
    await db.refresh(application)
    return application
