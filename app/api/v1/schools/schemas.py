from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.core.enums import ResourceType


class SchoolCreate(BaseModel):
    name: str = Field(..., min_length=2)
    code: str = Field(..., min_length=2, max_length=20)
    address: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)


class SchoolSettingsUpdate(BaseModel):
    """Merged into the stored settings; keys set to null are removed."""

    settings: Dict[str, Any]


class SchoolResponse(BaseModel):
    id: UUID
    code: str
    name: str
    address: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    is_active: bool
    settings: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ModuleCreate(BaseModel):
    module_key: str = Field(..., min_length=2, max_length=100)
    module_name: str
    resource_type: Optional[ResourceType] = None
    description: Optional[str] = None


class ModuleResponse(BaseModel):
    id: UUID
    module_key: str
    module_name: str
    resource_type: Optional[str] = None
    description: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class SchoolModuleUpdate(BaseModel):
    is_enabled: bool = True
    is_revoked: bool = False


class SchoolModuleState(BaseModel):
    module_key: str
    module_name: str
    resource_type: Optional[str] = None
    is_enabled: bool
    is_revoked: bool
    # enabled | disabled | revoked, as seen by the permission resolver
    access: str


class SchoolModulesResponse(BaseModel):
    school_id: UUID
    modules: List[SchoolModuleState]
