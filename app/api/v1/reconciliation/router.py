from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user, require_school
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import ResourceType
from app.core.errors import to_http_exception
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import ReconciliationRequest, ReconciliationResponse
from . import service

router = APIRouter(prefix="/api/v1/reconciliation", tags=["reconciliation"])


@router.post(
    "/run",
    response_model=ReconciliationResponse,
    dependencies=[Depends(check_permission(ResourceType.SYSTEM_SETTINGS.value, "write"))],
)
async def run_reconciliation(
    payload: Optional[ReconciliationRequest] = None,
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
    current_user: CurrentUser = Depends(get_current_user),
) -> ReconciliationResponse:
    """Rebuild library, finance and transport projections for the active school."""
    try:
        return await service.run(db, school_id, current_user, payload.passes if payload else None)
    except ServiceError as e:
        raise to_http_exception(e, current_user)
