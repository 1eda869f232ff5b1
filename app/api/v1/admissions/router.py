from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user, require_school
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import EnrollmentPathway
from app.core.errors import to_http_exception
from app.core.exceptions import ServiceError
from app.core.workflows import enrollment
from app.core.workflows.base import describe
from app.db.session import get_db

from .schemas import (
    ApplicationCreate,
    ApplicationResponse,
    ApplicationUpdate,
    DocumentCreate,
    DocumentResponse,
    EnrollmentTypeResponse,
    EnrollmentTypeUpsert,
    OverrideCreate,
    OverrideResponse,
    StepComplete,
    TransitionRequest,
    TransitionResponse,
    WorkflowTemplateResponse,
    WorkflowTemplateUpsert,
)
from . import service

router = APIRouter(prefix="/api/v1/admissions", tags=["admissions"])


@router.get(
    "/status-graph",
    response_model=Dict[str, List[str]],
    dependencies=[Depends(check_permission("admissions", "read"))],
)
async def get_status_graph() -> Dict[str, List[str]]:
    """Every enrollment status and the statuses it may move to."""
    return describe(enrollment.MACHINE)


# ----- Applications -----

@router.post("/applications", response_model=ApplicationResponse, status_code=status.HTTP_201_CREATED)
async def create_application(
    payload: ApplicationCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApplicationResponse:
    """Start an application. Repeating a request with the same application_number returns the original (200)."""
    try:
        app, created = await service.create_application(db, school_id, payload, current_user)
        if not created:
            response.status_code = status.HTTP_200_OK
        return await service.to_response(db, app, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/applications", response_model=List[ApplicationResponse])
async def list_applications(
    status_filter: Optional[str] = Query(None, alias="status"),
    pathway: Optional[EnrollmentPathway] = None,
    year_group: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[ApplicationResponse]:
    try:
        apps = await service.list_applications(
            db,
            school_id,
            current_user,
            status_filter=status_filter,
            pathway=pathway.value if pathway else None,
            year_group=year_group,
        )
        return [await service.to_response(db, a, current_user) for a in apps]
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApplicationResponse:
    try:
        app = await service.get_application(db, school_id, application_id, current_user)
        return await service.to_response(db, app, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.patch("/applications/{application_id}", response_model=ApplicationResponse)
async def update_application(
    application_id: UUID,
    payload: ApplicationUpdate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApplicationResponse:
    try:
        app = await service.update_application(db, school_id, application_id, payload, current_user)
        return await service.to_response(db, app, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/applications/{application_id}/transition", response_model=TransitionResponse)
async def transition_application(
    application_id: UUID,
    payload: TransitionRequest,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> TransitionResponse:
    """Request a status change. Rejections carry a machine-readable reason code."""
    try:
        app, effects = await service.transition_application(
            db,
            school_id,
            application_id,
            payload.status,
            payload.expected_version,
            current_user,
            notes=payload.notes,
        )
        return TransitionResponse(application=await service.to_response(db, app, current_user), effects=effects)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/applications/{application_id}/steps/{step_type}/complete", response_model=ApplicationResponse)
async def complete_step(
    application_id: UUID,
    step_type: str,
    payload: Optional[StepComplete] = None,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApplicationResponse:
    try:
        app = await service.complete_step(
            db, school_id, application_id, step_type, current_user, payload.step_data if payload else None
        )
        return await service.to_response(db, app, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Documents -----

@router.post(
    "/applications/{application_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_document(
    application_id: UUID,
    payload: DocumentCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> DocumentResponse:
    try:
        return await service.add_document(db, school_id, application_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/applications/{application_id}/documents", response_model=List[DocumentResponse])
async def list_documents(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[DocumentResponse]:
    try:
        return await service.list_documents(db, school_id, application_id, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/applications/{application_id}/documents/{document_id}/verify", response_model=DocumentResponse)
async def verify_document(
    application_id: UUID,
    document_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> DocumentResponse:
    try:
        return await service.verify_document(db, school_id, application_id, document_id, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Overrides -----

@router.post(
    "/applications/{application_id}/overrides",
    response_model=OverrideResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_override(
    application_id: UUID,
    payload: OverrideCreate,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> OverrideResponse:
    try:
        return await service.create_override(db, school_id, application_id, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.get("/applications/{application_id}/overrides", response_model=List[OverrideResponse])
async def list_overrides(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[OverrideResponse]:
    try:
        return await service.list_overrides(db, school_id, application_id, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/overrides/{override_id}/approve", response_model=OverrideResponse)
async def approve_override(
    override_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> OverrideResponse:
    try:
        return await service.approve_override(db, school_id, override_id, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


@router.post("/overrides/{override_id}/reject", response_model=OverrideResponse)
async def reject_override(
    override_id: UUID,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> OverrideResponse:
    try:
        return await service.reject_override(db, school_id, override_id, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Enrollment types -----

@router.get(
    "/enrollment-types",
    response_model=List[EnrollmentTypeResponse],
    dependencies=[Depends(check_permission("admissions", "read"))],
)
async def list_enrollment_types(
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[EnrollmentTypeResponse]:
    return await service.list_enrollment_types(db, school_id)


@router.put(
    "/enrollment-types/{pathway}",
    response_model=EnrollmentTypeResponse,
    dependencies=[Depends(check_permission("admissions", "approve"))],
)
async def upsert_enrollment_type(
    pathway: EnrollmentPathway,
    payload: EnrollmentTypeUpsert,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> EnrollmentTypeResponse:
    try:
        return await service.upsert_enrollment_type(db, school_id, pathway, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)


# ----- Workflow templates -----

@router.get(
    "/workflows",
    response_model=List[WorkflowTemplateResponse],
    dependencies=[Depends(check_permission("admissions", "read"))],
)
async def list_workflows(
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[WorkflowTemplateResponse]:
    return await service.list_workflows(db, school_id)


@router.put(
    "/workflows/{pathway}",
    response_model=WorkflowTemplateResponse,
    dependencies=[Depends(check_permission("admissions", "approve"))],
)
async def upsert_workflow(
    pathway: EnrollmentPathway,
    payload: WorkflowTemplateUpsert,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> WorkflowTemplateResponse:
    try:
        return await service.upsert_workflow(db, school_id, pathway, payload, current_user)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
