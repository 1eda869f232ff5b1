import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.db.mixins import TimestampMixin, utcnow
from app.db.session import Base


class Profile(TimestampMixin, Base):
    """A person identity, independent of role. One profile may hold roles in several schools."""

    __tablename__ = "profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    password_hash = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    roles = relationship(
        "UserRole",
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="UserRole.user_id",
    )


class UserRole(Base):
    """
    Role assignment: (user, school, role, optional department/year_group scope, active flag).
    A scope restricts the base role, never expands it. super_admin may have a null school_id (global).
    """

    __tablename__ = "user_roles"
    __table_args__ = (
        Index("ix_user_roles_user_school", "user_id", "school_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    school_id = Column(Uuid, ForeignKey("schools.id", ondelete="CASCADE"), nullable=True)
    role = Column(String(50), nullable=False)
    department = Column(String(100), nullable=True)
    year_group = Column(String(50), nullable=True)
    # cashier | supervisor | admin, for fee collection desks
    fee_collection_role = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    assigned_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("Profile", back_populates="roles", foreign_keys=[user_id])


class RolePermission(Base):
    """
    Permission rule: (role, resource, permission, optional conditions).
    No rule for a (role, resource, permission) triple means deny.

    Example conditions:
        {"department": "$department"}   record department must equal the assignment's scope
        {"own_records": true}           context must carry own_records=true
    """

    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role", "resource", "permission", name="uq_role_resource_permission"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    role = Column(String(50), nullable=False)
    resource = Column(String(50), nullable=False)
    permission = Column(String(20), nullable=False)
    conditions = Column(JSON, nullable=True)


class FieldPermission(Base):
    """Per role, per module field visibility / editability / requiredness."""

    __tablename__ = "field_permissions"
    __table_args__ = (
        UniqueConstraint("role", "module_key", "field_name", name="uq_field_permission"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    role = Column(String(50), nullable=False)
    module_key = Column(String(100), nullable=False)
    field_name = Column(String(100), nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)
    is_editable = Column(Boolean, default=True, nullable=False)
    is_required = Column(Boolean, default=False, nullable=False)
