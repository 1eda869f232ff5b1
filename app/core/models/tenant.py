import uuid

from sqlalchemy import JSON, Boolean, Column, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.mixins import TimestampMixin
from app.db.session import Base


class School(TimestampMixin, Base):
    """
    Tenant (school) in the multi-tenant platform.

    - id: primary key, the isolation boundary; every tenant-scoped row carries it as school_id.
    - code: public human-readable identifier. Never used as a foreign key.
    Schools are never hard-deleted, only deactivated.
    """

    __tablename__ = "schools"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # academic_year_start / academic_year_end (ISO dates), branding, ...
    settings = Column(JSON, nullable=True, default=dict)

    modules = relationship("SchoolModule", back_populates="school", cascade="all, delete-orphan")


class Module(TimestampMixin, Base):
    """System-defined functional area (e.g. ADMISSIONS, LIBRARY).

    A module gates one resource type, or (resource_type null) only the endpoints that
    check its key. Disabling makes it read-only; revoking removes access entirely.
    """

    __tablename__ = "modules"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Stable programmatic key, used in code & foreign keys (e.g. 'ADMISSIONS')
    module_key = Column(String(100), nullable=False, unique=True)
    module_name = Column(String(255), nullable=False)
    resource_type = Column(String(50), nullable=True, index=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    school_mappings = relationship("SchoolModule", back_populates="module", cascade="all, delete-orphan")


class SchoolModule(TimestampMixin, Base):
    """Per-school module flag. No row means the module is enabled."""

    __tablename__ = "school_modules"
    __table_args__ = (
        UniqueConstraint("school_id", "module_key", name="uq_school_module"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    module_key = Column(String(100), ForeignKey("modules.module_key"), nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)
    # Fully revoked: not even readable for audit
    is_revoked = Column(Boolean, default=False, nullable=False)

    school = relationship("School", back_populates="modules")
    module = relationship("Module", back_populates="school_mappings")
