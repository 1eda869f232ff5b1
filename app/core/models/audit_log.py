"""
Audit log: immutable record of every state change and denied access.
Append-only; the ORM refuses updates and deletes.
"""

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Uuid, event

from app.db.mixins import utcnow
from app.db.session import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Null only for platform-level actions (e.g. school creation by super admin)
    school_id = Column(Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(Uuid, nullable=True, index=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    elevated_privilege = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AuditLogImmutableError(RuntimeError):
    pass


@event.listens_for(AuditLog, "before_update")
def _refuse_update(mapper, connection, target) -> None:
    raise AuditLogImmutableError("audit_logs rows are append-only")


@event.listens_for(AuditLog, "before_delete")
def _refuse_delete(mapper, connection, target) -> None:
    raise AuditLogImmutableError("audit_logs rows are append-only")
