"""
Enrollment applications. Status moves only along the enrollment graph (or through an
approved override); every accepted change bumps the version and is audited.
Workflow steps are created at submission and drive the completion percentage.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.auth import services as auth_service
from app.auth.permissions import ensure_fields_editable, ensure_required_fields
from app.auth.schemas import CurrentUser
from app.core import audit_service
from app.core.enums import EnrollmentPathway, EnrollmentStatus, PermissionType, ResourceType
from app.core.errors import conflict_from_stale
from app.core.exceptions import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    SelfApprovalError,
    TransitionError,
    ValidationError,
)
from app.core.models import (
    EnrollmentApplication,
    EnrollmentDocument,
    EnrollmentOverride,
    EnrollmentType,
    EnrollmentWorkflow,
    EnrollmentWorkflowStep,
)
from app.core.workflows import enrollment
from app.core.workflows.base import INVALID_TRANSITION, Actor, TransitionResult

from .schemas import (
    ApplicationCreate,
    ApplicationResponse,
    ApplicationUpdate,
    DocumentCreate,
    EnrollmentTypeUpsert,
    OverrideCreate,
    WorkflowStepResponse,
    WorkflowTemplateUpsert,
)

logger = logging.getLogger(__name__)

MODULE_KEY = "admissions"
RESOURCE = ResourceType.ADMISSIONS.value
_ALL_ACTIONS = frozenset(p.value for p in PermissionType)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _context(app: EnrollmentApplication, user: CurrentUser) -> Dict[str, Any]:
    return {"year_group": app.year_group, "own_records": app.submitted_by == user.id}


def _is_owner(app: EnrollmentApplication, user: CurrentUser) -> bool:
    return app.submitted_by is not None and app.submitted_by == user.id


# ----- Loading -----

async def _get_application(db: AsyncSession, school_id: UUID, application_id: UUID) -> EnrollmentApplication:
    stmt = (
        select(EnrollmentApplication)
        .where(EnrollmentApplication.id == application_id, EnrollmentApplication.school_id == school_id)
        .with_for_update()
    )
    app = (await db.execute(stmt)).scalar_one_or_none()
    if app is None:
        raise NotFoundError("Application not found")
    return app


async def _find_by_number(db: AsyncSession, school_id: UUID, number: str) -> Optional[EnrollmentApplication]:
    stmt = select(EnrollmentApplication).where(
        EnrollmentApplication.school_id == school_id,
        EnrollmentApplication.application_number == number,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _load_steps(db: AsyncSession, application_id: UUID) -> List[EnrollmentWorkflowStep]:
    stmt = (
        select(EnrollmentWorkflowStep)
        .where(EnrollmentWorkflowStep.application_id == application_id)
        .order_by(EnrollmentWorkflowStep.order_index)
    )
    return list((await db.execute(stmt)).scalars().all())


async def _load_documents(db: AsyncSession, application_id: UUID) -> List[EnrollmentDocument]:
    stmt = select(EnrollmentDocument).where(EnrollmentDocument.application_id == application_id)
    return list((await db.execute(stmt)).scalars().all())


async def get_requirements(db: AsyncSession, school_id: UUID, pathway: str) -> Dict[str, bool]:
    """School's enrollment type for the pathway, else the platform default row, else built-in defaults."""
    stmt = select(EnrollmentType).where(
        EnrollmentType.pathway == pathway,
        EnrollmentType.is_active.is_(True),
        or_(EnrollmentType.school_id == school_id, EnrollmentType.school_id.is_(None)),
    )
    rows = list((await db.execute(stmt)).scalars().all())
    rows.sort(key=lambda r: r.school_id is None)
    if rows:
        row = rows[0]
        return {
            "requires_assessment": row.requires_assessment,
            "requires_interview": row.requires_interview,
            "requires_payment": row.requires_payment,
            "auto_approve_siblings": row.auto_approve_siblings,
        }
    return dict(enrollment.DEFAULT_REQUIREMENTS.get(pathway, enrollment.DEFAULT_REQUIREMENTS[EnrollmentPathway.STANDARD_DIGITAL.value]))


# ----- Access -----

async def _ensure_access(
    db: AsyncSession,
    user: CurrentUser,
    school_id: UUID,
    app: EnrollmentApplication,
    action: str,
) -> None:
    """Applicants can read their own application and edit it while in draft; everyone else needs the permission."""
    if _is_owner(app, user):
        if action == PermissionType.READ.value:
            return
        if action == PermissionType.WRITE.value and app.status == EnrollmentStatus.DRAFT.value:
            return
    await auth_service.authorize(db, user, school_id, RESOURCE, action, _context(app, user))


async def _actor(db: AsyncSession, user: CurrentUser, school_id: UUID, app: EnrollmentApplication) -> Actor:
    return await auth_service.build_actor(
        db,
        user,
        school_id,
        RESOURCE,
        context=_context(app, user),
        is_owner=_is_owner(app, user),
    )


def _system_actor(user_id: UUID) -> Actor:
    """Used for automatic follow-on transitions once the triggering one was authorized."""
    return Actor(user_id=user_id, actions=_ALL_ACTIONS)


async def _ensure_replay_visible(db: AsyncSession, user: CurrentUser, school_id: UUID, app: EnrollmentApplication) -> None:
    await auth_service.ensure_replay_visible(
        db, user, school_id, RESOURCE, f"Application number '{app.application_number}'",
        is_owner=_is_owner(app, user), context=_context(app, user),
    )


# ----- Response -----

async def to_response(db: AsyncSession, app: EnrollmentApplication, user: Optional[CurrentUser] = None) -> ApplicationResponse:
    steps = await _load_steps(db, app.id)
    data = {
        column.key: getattr(app, column.key)
        for column in EnrollmentApplication.__table__.columns
        if column.key in ApplicationResponse.model_fields
    }
    if steps:
        # Completion is recomputed on every read
        data["workflow_completion_percentage"] = enrollment.completion_percentage(steps)
        data["current_workflow_step"] = enrollment.current_step(steps)
    data["allowed_transitions"] = sorted(enrollment.MACHINE.allowed_transitions(app.status))
    data["steps"] = [WorkflowStepResponse.model_validate(s) for s in steps]
    if user is not None:
        access = await auth_service.get_field_access(db, user, MODULE_KEY)
        for name, rule in access.items():
            if not rule.is_visible and name in data and name not in ("id", "school_id", "status", "version"):
                data[name] = None
    return ApplicationResponse(**data)


# ----- Steps -----

async def _workflow_template(db: AsyncSession, school_id: UUID, pathway: str) -> Optional[EnrollmentWorkflow]:
    """The school's active template for the pathway, else the platform one; defaults win within each."""
    stmt = select(EnrollmentWorkflow).where(
        EnrollmentWorkflow.pathway == pathway,
        EnrollmentWorkflow.is_active.is_(True),
        or_(EnrollmentWorkflow.school_id == school_id, EnrollmentWorkflow.school_id.is_(None)),
    )
    rows = list((await db.execute(stmt)).scalars().all())
    rows.sort(key=lambda r: (r.school_id is None, not r.is_default))
    return rows[0] if rows else None


async def _ensure_steps(db: AsyncSession, app: EnrollmentApplication, requirements: Dict[str, bool]) -> List[EnrollmentWorkflowStep]:
    steps = await _load_steps(db, app.id)
    if steps:
        return steps
    template = None
    if app.workflow_id is not None:
        workflow = await db.get(EnrollmentWorkflow, app.workflow_id)
    else:
        workflow = await _workflow_template(db, app.school_id, app.pathway)
    if workflow is not None:
        app.workflow_id = workflow.id
        template = workflow.steps_config
    for spec in enrollment.build_steps(requirements, template):
        db.add(EnrollmentWorkflowStep(application_id=app.id, **spec))
    await db.flush()
    return await _load_steps(db, app.id)


async def _mark_step(db: AsyncSession, application_id: UUID, step_type: str, user_id: UUID, step_data: Optional[dict] = None) -> Optional[EnrollmentWorkflowStep]:
    stmt = select(EnrollmentWorkflowStep).where(
        EnrollmentWorkflowStep.application_id == application_id,
        EnrollmentWorkflowStep.step_type == step_type,
    )
    step = (await db.execute(stmt)).scalar_one_or_none()
    if step is None or step.is_completed:
        return step
    step.is_completed = True
    step.completed_at = _now()
    step.completed_by = user_id
    if step_data is not None:
        step.step_data = step_data
    return step


async def _refresh_completion(db: AsyncSession, app: EnrollmentApplication) -> None:
    await db.flush()
    steps = await _load_steps(db, app.id)
    if not steps:
        return
    percentage = enrollment.completion_percentage(steps)
    step = enrollment.current_step(steps)
    if app.workflow_completion_percentage != percentage:
        app.workflow_completion_percentage = percentage
    if app.current_workflow_step != step:
        app.current_workflow_step = step


# ----- Transitions -----

async def _status_override(db: AsyncSession, app: EnrollmentApplication, requested: str) -> Optional[EnrollmentOverride]:
    stmt = select(EnrollmentOverride).where(
        EnrollmentOverride.application_id == app.id,
        EnrollmentOverride.field_name == "status",
        EnrollmentOverride.override_value == requested,
        EnrollmentOverride.original_value == app.status,
        EnrollmentOverride.is_active.is_(True),
        EnrollmentOverride.applied_at.is_(None),
    )
    return (await db.execute(stmt)).scalars().first()


def _override_state(override: Optional[EnrollmentOverride]) -> Optional[str]:
    if override is None:
        return None
    if not override.requires_approval or override.approved_at is not None:
        return "approved"
    return "pending"


async def _transition_payload(db: AsyncSession, app: EnrollmentApplication, requested: str) -> Tuple[Dict[str, Any], Optional[EnrollmentOverride]]:
    requirements = await get_requirements(db, app.school_id, app.pathway)
    documents = await _load_documents(db, app.id)
    steps = await _load_steps(db, app.id)
    override = await _status_override(db, app, requested)
    payload = dict(requirements)
    payload.update(
        {
            "pathway": app.pathway,
            "held_from_status": app.held_from_status,
            "missing_documents": [d.document_type for d in documents if d.is_required and not d.is_verified],
            "payment_completed": any(s.step_type == enrollment.STEP_PAYMENT and s.is_completed for s in steps),
            "status_override": _override_state(override),
        }
    )
    return payload, override


async def _record_transition(
    db: AsyncSession,
    app: EnrollmentApplication,
    result: TransitionResult,
    user_id: UUID,
    *,
    notes: Optional[str] = None,
    override: Optional[EnrollmentOverride] = None,
) -> None:
    old_status = app.status
    now = _now()
    app.held_from_status = enrollment.hold_origin(old_status, result.new_state, app.held_from_status)
    app.status = result.new_state
    app.last_activity_at = now
    if result.new_state == EnrollmentStatus.SUBMITTED.value and app.submitted_at is None:
        app.submitted_at = now

    for effect in result.effects:
        if effect == "create_steps":
            await _ensure_steps(db, app, await get_requirements(db, app.school_id, app.pathway))
        elif effect.startswith("complete_step:"):
            await _mark_step(db, app.id, effect.split(":", 1)[1], user_id)
    if override is not None:
        override.applied_at = now

    await _refresh_completion(db, app)
    await audit_service.log_audit(
        db,
        app.school_id,
        RESOURCE,
        app.id,
        "status_changed",
        user_id=user_id,
        old_values={"status": old_status},
        new_values={"status": app.status, "notes": notes, "effects": list(result.effects)},
        elevated_privilege=override is not None,
    )
    logger.info("application %s: %s -> %s by %s", app.application_number, old_status, app.status, user_id)


async def _apply_transition(
    db: AsyncSession,
    app: EnrollmentApplication,
    requested: str,
    actor: Actor,
    *,
    notes: Optional[str] = None,
) -> List[str]:
    """Validate and record one transition plus any automatic follow-ons. Returns every effect applied."""
    payload, override = await _transition_payload(db, app, requested)
    result = enrollment.apply(app.status, requested, actor, payload)
    if not result.accepted:
        logger.info(
            "application %s: rejected %s -> %s (%s)", app.application_number, app.status, requested, result.reason
        )
        result.raise_for_rejection()
    await _record_transition(
        db, app, result, actor.user_id, notes=notes, override=override if "override_applied" in result.effects else None
    )
    applied = list(result.effects)

    for effect in result.effects:
        if not effect.startswith("auto_advance:"):
            continue
        target = effect.split(":", 1)[1]
        follow_payload, _ = await _transition_payload(db, app, target)
        follow = enrollment.apply(app.status, target, _system_actor(actor.user_id), follow_payload)
        if follow.accepted:
            await _record_transition(db, app, follow, actor.user_id, notes="automatic")
            applied.extend(follow.effects)
        else:
            logger.debug("application %s: auto advance to %s not yet possible (%s)", app.application_number, target, follow.reason)
    return applied


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        raise conflict_from_stale(e)


# ----- Public operations -----

async def create_application(
    db: AsyncSession,
    school_id: UUID,
    payload: ApplicationCreate,
    user: CurrentUser,
) -> Tuple[EnrollmentApplication, bool]:
    """Create (or, for a repeated application_number, return) an application. Returns (application, created)."""
    number = (payload.application_number or "").strip() or enrollment.generate_application_number(_now())
    existing = await _find_by_number(db, school_id, number)
    if existing is not None:
        logger.info("application %s resubmitted; returning existing record", number)
        await _ensure_replay_visible(db, user, school_id, existing)
        return existing, False

    fields = payload.model_dump(exclude={"application_number", "submit", "pathway"})
    app = EnrollmentApplication(
        school_id=school_id,
        application_number=number,
        pathway=payload.pathway.value,
        status=EnrollmentStatus.DRAFT.value,
        submitted_by=user.id,
        **fields,
    )
    db.add(app)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        existing = await _find_by_number(db, school_id, number)
        if existing is not None:
            logger.info("application %s created concurrently; returning existing record", number)
            await _ensure_replay_visible(db, user, school_id, existing)
            return existing, False
        raise DuplicateError(f"Application number '{number}' is already in use")

    await audit_service.log_audit(
        db,
        school_id,
        RESOURCE,
        app.id,
        "application_created",
        user_id=user.id,
        new_values={"application_number": number, "pathway": app.pathway, "year_group": app.year_group},
    )
    if payload.submit:
        actor = await _actor(db, user, school_id, app)
        await _apply_transition(db, app, EnrollmentStatus.SUBMITTED.value, actor)
    await _commit(db)
    await db.refresh(app)
    return app, True


async def get_application(db: AsyncSession, school_id: UUID, application_id: UUID, user: CurrentUser) -> EnrollmentApplication:
    app = await _get_application(db, school_id, application_id)
    await _ensure_access(db, user, school_id, app, PermissionType.READ.value)
    return app


async def list_applications(
    db: AsyncSession,
    school_id: UUID,
    user: CurrentUser,
    *,
    status_filter: Optional[str] = None,
    pathway: Optional[str] = None,
    year_group: Optional[str] = None,
) -> List[EnrollmentApplication]:
    """Staff with read see every application; applicants see their own."""
    stmt = select(EnrollmentApplication).where(EnrollmentApplication.school_id == school_id)
    decision = await auth_service.evaluate(db, user, school_id, RESOURCE, PermissionType.READ.value, {"year_group": year_group})
    if not decision.allowed:
        stmt = stmt.where(EnrollmentApplication.submitted_by == user.id)
    if status_filter:
        stmt = stmt.where(EnrollmentApplication.status == status_filter)
    if pathway:
        stmt = stmt.where(EnrollmentApplication.pathway == pathway)
    if year_group:
        stmt = stmt.where(EnrollmentApplication.year_group == year_group)
    stmt = stmt.order_by(EnrollmentApplication.created_at.desc())
    return list((await db.execute(stmt)).scalars().all())


async def update_application(
    db: AsyncSession,
    school_id: UUID,
    application_id: UUID,
    payload: ApplicationUpdate,
    user: CurrentUser,
) -> EnrollmentApplication:
    app = await _get_application(db, school_id, application_id)
    changes = payload.model_dump(exclude_unset=True)
    expected_version = changes.pop("expected_version", None)
    if expected_version is not None and expected_version != app.version:
        raise ConflictError()
    if enrollment.MACHINE.is_terminal(app.status):
        raise ValidationError(f"Application is {app.status} and can no longer be edited", field="status")
    await _ensure_access(db, user, school_id, app, PermissionType.WRITE.value)

    access = await auth_service.get_field_access(db, user, MODULE_KEY)
    ensure_fields_editable(changes.keys(), access)
    ensure_required_fields(changes, access)

    old_values = {k: getattr(app, k) for k in changes}
    for key, value in changes.items():
        setattr(app, key, value)
    app.last_activity_at = _now()
    await audit_service.log_audit(
        db,
        school_id,
        RESOURCE,
        app.id,
        "application_updated",
        user_id=user.id,
        old_values=old_values,
        new_values=changes,
    )
    await _commit(db)
    await db.refresh(app)
    return app


async def transition_application(
    db: AsyncSession,
    school_id: UUID,
    application_id: UUID,
    requested: str,
    expected_version: int,
    user: CurrentUser,
    notes: Optional[str] = None,
) -> Tuple[EnrollmentApplication, List[str]]:
    """Move an application to `requested`. A stale expected_version is a conflict; nothing is written."""
    app = await _get_application(db, school_id, application_id)
    if expected_version != app.version:
        logger.info("application %s: stale version %s (current %s)", app.application_number, expected_version, app.version)
        raise ConflictError()
    actor = await _actor(db, user, school_id, app)
    effects = await _apply_transition(db, app, requested, actor, notes=notes)
    await _commit(db)
    await db.refresh(app)
    return app, effects


async def complete_step(
    db: AsyncSession,
    school_id: UUID,
    application_id: UUID,
    step_type: str,
    user: CurrentUser,
    step_data: Optional[dict] = None,
) -> EnrollmentApplication:
    app = await _get_application(db, school_id, application_id)
    await auth_service.authorize(db, user, school_id, RESOURCE, PermissionType.WRITE.value, _context(app, user))
    step = await _mark_step(db, app.id, step_type, user.id, step_data)
    if step is None:
        raise NotFoundError(f"Workflow step '{step_type}' not found for this application")
    await _refresh_completion(db, app)
    app.last_activity_at = _now()
    await audit_service.log_audit(
        db,
        school_id,
        RESOURCE,
        app.id,
        "workflow_step_completed",
        user_id=user.id,
        new_values={"step_type": step_type, "completion": app.workflow_completion_percentage},
    )

    # Completing payment may unblock a waiting offer_accepted -> enrolled
    if app.status == EnrollmentStatus.OFFER_ACCEPTED.value:
        payload, _ = await _transition_payload(db, app, EnrollmentStatus.ENROLLED.value)
        follow = enrollment.apply(app.status, EnrollmentStatus.ENROLLED.value, _system_actor(user.id), payload)
        if follow.accepted:
            await _record_transition(db, app, follow, user.id, notes="automatic")
    await _commit(db)
    await db.refresh(app)
    return app


# ----- Documents -----

async def add_document(
    db: AsyncSession,
    school_id: UUID,
    application_id: UUID,
    payload: DocumentCreate,
    user: CurrentUser,
) -> EnrollmentDocument:
    app = await _get_application(db, school_id, application_id)
    if not _is_owner(app, user):
        await auth_service.authorize(db, user, school_id, RESOURCE, PermissionType.WRITE.value, _context(app, user))
    doc = EnrollmentDocument(
        application_id=app.id,
        document_type=payload.document_type,
        file_path=payload.file_path,
        is_required=payload.is_required,
    )
    db.add(doc)
    await db.flush()
    await audit_service.log_audit(
        db, school_id, RESOURCE, app.id, "document_added",
        user_id=user.id, new_values={"document_id": doc.id, "document_type": doc.document_type},
    )
    await db.commit()
    await db.refresh(doc)
    return doc


async def list_documents(db: AsyncSession, school_id: UUID, application_id: UUID, user: CurrentUser) -> List[EnrollmentDocument]:
    app = await get_application(db, school_id, application_id, user)
    return await _load_documents(db, app.id)


async def verify_document(
    db: AsyncSession,
    school_id: UUID,
    application_id: UUID,
    document_id: UUID,
    user: CurrentUser,
) -> EnrollmentDocument:
    app = await _get_application(db, school_id, application_id)
    await auth_service.authorize(db, user, school_id, RESOURCE, PermissionType.WRITE.value, _context(app, user))
    doc = await db.get(EnrollmentDocument, document_id)
    if doc is None or doc.application_id != app.id:
        raise NotFoundError("Document not found")
    if not doc.is_verified:
        doc.is_verified = True
        doc.verified_by = user.id
        doc.verified_at = _now()
        await audit_service.log_audit(
            db, school_id, RESOURCE, app.id, "document_verified",
            user_id=user.id, new_values={"document_id": doc.id, "document_type": doc.document_type},
        )
        await db.commit()
        await db.refresh(doc)
    return doc


# ----- Overrides -----

def _coerce_override_value(field_name: str, value: str) -> Any:
    if field_name == "status":
        try:
            return EnrollmentStatus(value).value
        except ValueError:
            raise ValidationError(f"'{value}' is not a valid status", field="override_value", code="invalid_enum_value")
    if field_name == "pathway":
        try:
            return EnrollmentPathway(value).value
        except ValueError:
            raise ValidationError(f"'{value}' is not a valid pathway", field="override_value", code="invalid_enum_value")
    if field_name == "priority_score":
        try:
            return int(value)
        except ValueError:
            raise ValidationError("priority_score must be an integer", field="override_value", code="malformed_override")
    return value


async def _apply_override(db: AsyncSession, app: EnrollmentApplication, override: EnrollmentOverride, user_id: UUID) -> None:
    value = _coerce_override_value(override.field_name, override.override_value)
    if override.field_name == "status":
        if app.status != override.original_value:
            raise TransitionError(
                INVALID_TRANSITION,
                f"Status is now '{app.status}', not '{override.original_value}'; the override no longer applies",
            )
        result = TransitionResult.accept(value, ["override_applied", "recompute_completion"])
        await _record_transition(db, app, result, user_id, notes=f"override {override.id}", override=override)
        return

    old = getattr(app, override.field_name)
    setattr(app, override.field_name, value)
    override.applied_at = _now()
    app.last_activity_at = _now()
    await audit_service.log_audit(
        db,
        app.school_id,
        RESOURCE,
        app.id,
        "override_applied",
        user_id=user_id,
        old_values={override.field_name: old},
        new_values={override.field_name: value, "override_id": override.id},
        elevated_privilege=True,
    )


async def create_override(
    db: AsyncSession,
    school_id: UUID,
    application_id: UUID,
    payload: OverrideCreate,
    user: CurrentUser,
) -> EnrollmentOverride:
    app = await _get_application(db, school_id, application_id)
    await auth_service.authorize(db, user, school_id, RESOURCE, PermissionType.APPROVE.value, _context(app, user))
    if payload.field_name not in enrollment.OVERRIDABLE_FIELDS:
        raise ValidationError(
            f"'{payload.field_name}' cannot be overridden; allowed: {', '.join(sorted(enrollment.OVERRIDABLE_FIELDS))}",
            field="field_name",
            code="malformed_override",
        )
    if payload.field_name in enrollment.APPROVAL_REQUIRED_FIELDS:
        if not payload.requires_approval:
            raise ValidationError(
                f"Overrides of '{payload.field_name}' always require a second approver",
                field="requires_approval",
                code="malformed_override",
            )
        if not (payload.justification or "").strip():
            raise ValidationError(
                f"Overrides of '{payload.field_name}' need a justification",
                field="justification",
                code="missing_required_field",
            )
    _coerce_override_value(payload.field_name, payload.override_value)
    original = getattr(app, payload.field_name)

    override = EnrollmentOverride(
        application_id=app.id,
        field_name=payload.field_name,
        original_value=None if original is None else str(original),
        override_value=payload.override_value,
        override_type=payload.override_type.value,
        reason=payload.reason,
        justification=payload.justification,
        supporting_evidence=payload.supporting_evidence,
        requires_approval=payload.requires_approval,
        requested_by=user.id,
    )
    db.add(override)
    await db.flush()
    await audit_service.log_audit(
        db,
        school_id,
        RESOURCE,
        app.id,
        "override_requested",
        user_id=user.id,
        new_values={
            "override_id": override.id,
            "field_name": override.field_name,
            "original_value": override.original_value,
            "override_value": override.override_value,
            "requires_approval": override.requires_approval,
        },
        elevated_privilege=True,
    )
    if not payload.requires_approval:
        override.approved_by = user.id
        override.approved_at = _now()
        await _apply_override(db, app, override, user.id)
    await _commit(db)
    await db.refresh(override)
    return override


async def _get_override(db: AsyncSession, school_id: UUID, override_id: UUID) -> Tuple[EnrollmentOverride, EnrollmentApplication]:
    override = await db.get(EnrollmentOverride, override_id)
    if override is None:
        raise NotFoundError("Override not found")
    app = await _get_application(db, school_id, override.application_id)
    return override, app


async def approve_override(db: AsyncSession, school_id: UUID, override_id: UUID, user: CurrentUser) -> EnrollmentOverride:
    """Second-person approval. The requester can never approve their own override."""
    override, app = await _get_override(db, school_id, override_id)
    await auth_service.authorize(db, user, school_id, RESOURCE, PermissionType.APPROVE.value, _context(app, user))
    if not override.is_active:
        raise ValidationError("Override has been rejected", field="override_id")
    if override.approved_at is not None or override.applied_at is not None:
        return override
    if override.requested_by == user.id:
        raise SelfApprovalError("The requester of an override cannot approve it")

    override.approved_by = user.id
    override.approved_at = _now()
    await audit_service.log_audit(
        db, school_id, RESOURCE, app.id, "override_approved",
        user_id=user.id, new_values={"override_id": override.id}, elevated_privilege=True,
    )
    await _apply_override(db, app, override, user.id)
    await _commit(db)
    await db.refresh(override)
    return override


async def reject_override(db: AsyncSession, school_id: UUID, override_id: UUID, user: CurrentUser) -> EnrollmentOverride:
    override, app = await _get_override(db, school_id, override_id)
    await auth_service.authorize(db, user, school_id, RESOURCE, PermissionType.APPROVE.value, _context(app, user))
    if override.applied_at is not None:
        raise ValidationError("Override has already been applied", field="override_id")
    if override.is_active:
        override.is_active = False
        await audit_service.log_audit(
            db, school_id, RESOURCE, app.id, "override_rejected",
            user_id=user.id, new_values={"override_id": override.id}, elevated_privilege=True,
        )
        await db.commit()
        await db.refresh(override)
    return override


async def list_overrides(db: AsyncSession, school_id: UUID, application_id: UUID, user: CurrentUser) -> List[EnrollmentOverride]:
    app = await get_application(db, school_id, application_id, user)
    stmt = select(EnrollmentOverride).where(EnrollmentOverride.application_id == app.id).order_by(EnrollmentOverride.requested_at)
    return list((await db.execute(stmt)).scalars().all())


# ----- Enrollment types -----

async def list_enrollment_types(db: AsyncSession, school_id: UUID) -> List[EnrollmentType]:
    stmt = select(EnrollmentType).where(
        or_(EnrollmentType.school_id == school_id, EnrollmentType.school_id.is_(None))
    ).order_by(EnrollmentType.pathway)
    return list((await db.execute(stmt)).scalars().all())


async def upsert_enrollment_type(
    db: AsyncSession,
    school_id: UUID,
    pathway: EnrollmentPathway,
    payload: EnrollmentTypeUpsert,
    user: CurrentUser,
) -> EnrollmentType:
    stmt = select(EnrollmentType).where(EnrollmentType.school_id == school_id, EnrollmentType.pathway == pathway.value)
    row = (await db.execute(stmt)).scalar_one_or_none()
    if row is None:
        row = EnrollmentType(school_id=school_id, pathway=pathway.value)
        db.add(row)
    for key, value in payload.model_dump().items():
        setattr(row, key, value)
    row.is_active = True
    await db.flush()
    await audit_service.log_audit(
        db, school_id, RESOURCE, row.id, "enrollment_type_updated",
        user_id=user.id, new_values={"pathway": pathway.value, **payload.model_dump()},
    )
    await db.commit()
    await db.refresh(row)
    return row


# ----- Workflow templates -----

async def list_workflows(db: AsyncSession, school_id: UUID) -> List[EnrollmentWorkflow]:
    stmt = select(EnrollmentWorkflow).where(
        or_(EnrollmentWorkflow.school_id == school_id, EnrollmentWorkflow.school_id.is_(None))
    ).order_by(EnrollmentWorkflow.pathway, EnrollmentWorkflow.name)
    return list((await db.execute(stmt)).scalars().all())


async def upsert_workflow(
    db: AsyncSession,
    school_id: UUID,
    pathway: EnrollmentPathway,
    payload: WorkflowTemplateUpsert,
    user: CurrentUser,
) -> EnrollmentWorkflow:
    """One template per school and pathway. Applications keep the steps they were created with."""
    steps_config = [step.model_dump(exclude_none=True) for step in payload.steps_config]
    enrollment.validate_steps_config(steps_config)
    stmt = select(EnrollmentWorkflow).where(EnrollmentWorkflow.school_id == school_id, EnrollmentWorkflow.pathway == pathway.value)
    row = (await db.execute(stmt)).scalars().first()
    if row is None:
        row = EnrollmentWorkflow(school_id=school_id, pathway=pathway.value)
        db.add(row)
    row.name = payload.name
    row.steps_config = steps_config
    row.is_default = payload.is_default
    row.is_active = True
    await db.flush()
    await audit_service.log_audit(
        db, school_id, RESOURCE, row.id, "workflow_template_updated",
        user_id=user.id, new_values={"pathway": pathway.value, "name": row.name, "steps": [s["step_type"] for s in steps_config]},
    )
    await db.commit()
    await db.refresh(row)
    return row
