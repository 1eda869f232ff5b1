"""
Audit logging for state changes and denied access. Call on every state change.
"""

import logging
from typing import Any, Mapping, Optional
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import AuditLog

logger = logging.getLogger(__name__)


async def log_audit(
    db: AsyncSession,
    school_id: Optional[UUID],
    resource_type: str,
    resource_id: Optional[UUID],
    action: str,
    *,
    user_id: Optional[UUID] = None,
    old_values: Optional[Mapping[str, Any]] = None,
    new_values: Optional[Mapping[str, Any]] = None,
    elevated_privilege: bool = False,
) -> AuditLog:
    """Append one audit log entry. Caller must commit."""
    entry = AuditLog(
        school_id=school_id,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        old_values=jsonable_encoder(old_values) if old_values is not None else None,
        new_values=jsonable_encoder(new_values) if new_values is not None else None,
        elevated_privilege=elevated_privilege,
    )
    db.add(entry)
    return entry


async def list_audit_logs(
    db: AsyncSession,
    school_id: UUID,
    *,
    resource_type: Optional[str] = None,
    resource_id: Optional[UUID] = None,
    action: Optional[str] = None,
    limit: int = 100,
) -> list:
    stmt = select(AuditLog).where(AuditLog.school_id == school_id)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)
    if resource_id:
        stmt = stmt.where(AuditLog.resource_id == resource_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    stmt = stmt.order_by(AuditLog.created_at.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())
