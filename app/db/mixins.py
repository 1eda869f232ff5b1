"""Columns shared by tenant-scoped tables."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import declared_attr


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class TenantScopedMixin(TimestampMixin):
    """id + school_id + timestamps. Every row is owned by exactly one school."""

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    @declared_attr
    def school_id(cls):
        return Column(Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)


