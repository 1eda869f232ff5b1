from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import require_school
from app.auth.rbac import check_permission
from app.core import audit_service
from app.core.enums import ResourceType
from app.db.session import get_db

router = APIRouter(prefix="/api/v1/audit", tags=["audit"])


class AuditLogResponse(BaseModel):
    id: UUID
    school_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    action: str
    resource_type: str
    resource_id: Optional[UUID] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    elevated_privilege: bool
    created_at: datetime

    class Config:
        from_attributes = True


@router.get(
    "",
    response_model=List[AuditLogResponse],
    dependencies=[Depends(check_permission(ResourceType.SYSTEM_SETTINGS.value, "read"))],
)
async def list_audit_logs(
    resource_type: Optional[str] = None,
    resource_id: Optional[UUID] = None,
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    school_id: UUID = Depends(require_school),
) -> List[AuditLogResponse]:
    """Most recent entries first. The trail itself is append-only."""
    return await audit_service.list_audit_logs(
        db, school_id, resource_type=resource_type, resource_id=resource_id, action=action, limit=limit
    )
