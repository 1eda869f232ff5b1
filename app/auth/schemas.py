from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.core.enums import ADMIN_ROLES, AppRole, PermissionType, ResourceType


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    # Optional school to embed in the token as the default active tenant
    school_id: Optional[UUID] = None


class UserInfo(BaseModel):
    id: UUID
    name: str
    email: EmailStr


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserInfo
    school_id: Optional[UUID] = None
    issued_at: datetime


class RoleAssignmentInfo(BaseModel):
    id: UUID
    role: str
    school_id: Optional[UUID] = None
    department: Optional[str] = None
    year_group: Optional[str] = None
    fee_collection_role: Optional[str] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CurrentUser(BaseModel):
    """Authenticated caller plus the active school and their live role assignments in it."""

    id: UUID
    email: str
    full_name: str
    school_id: Optional[UUID] = None
    assignments: List[RoleAssignmentInfo] = Field(default_factory=list)

    @property
    def roles(self) -> List[str]:
        return sorted({a.role for a in self.assignments})

    @property
    def is_admin(self) -> bool:
        return any(a.role in ADMIN_ROLES for a in self.assignments)

    @property
    def is_super_admin(self) -> bool:
        return any(a.role == AppRole.SUPER_ADMIN.value for a in self.assignments)


class MeResponse(BaseModel):
    user: UserInfo
    school_id: Optional[UUID] = None
    assignments: List[RoleAssignmentInfo]


# ----- Role assignments & permission rules -----

class RoleAssignmentCreate(BaseModel):
    user_id: UUID
    role: AppRole
    department: Optional[str] = None
    year_group: Optional[str] = None
    fee_collection_role: Optional[str] = Field(None, pattern="^(cashier|supervisor|admin)$")
    expires_at: Optional[datetime] = None


class RoleAssignmentResponse(BaseModel):
    id: UUID
    user_id: UUID
    school_id: Optional[UUID] = None
    role: str
    department: Optional[str] = None
    year_group: Optional[str] = None
    fee_collection_role: Optional[str] = None
    is_active: bool
    expires_at: Optional[datetime] = None
    assigned_by: Optional[UUID] = None
    assigned_at: datetime

    class Config:
        from_attributes = True


class PermissionRuleCreate(BaseModel):
    role: AppRole
    resource: ResourceType
    permission: PermissionType
    conditions: Optional[Dict[str, Any]] = None


class PermissionRuleResponse(BaseModel):
    id: UUID
    role: str
    resource: str
    permission: str
    conditions: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class FieldPermissionUpsert(BaseModel):
    role: AppRole
    module_key: str
    field_name: str
    is_visible: bool = True
    is_editable: bool = True
    is_required: bool = False


class FieldPermissionResponse(FieldPermissionUpsert):
    id: UUID
    role: str

    class Config:
        from_attributes = True


class PermissionCheckRequest(BaseModel):
    resource: str
    action: str
    context: Dict[str, Any] = Field(default_factory=dict)


class PermissionCheckResponse(BaseModel):
    allowed: bool
    reason: str
    role: Optional[str] = None
