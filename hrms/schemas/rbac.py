"""
HRMS Core - RBAC Schemas

Pydantic schemas for the permission catalogue and role management.
"""

import re
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


SEGMENT_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


def _normalize_segment(value: str) -> str:
    value = value.strip().lower()
    if not SEGMENT_PATTERN.match(value):
        raise ValueError("must be lowercase letters, digits and underscores, starting with a letter")
    return value


# ===========================================
# PERMISSIONS
# ===========================================

class PermissionCreate(BaseModel):
    """Schema for creating a permission. The code is derived as module.action."""
    module: str = Field(..., min_length=1, max_length=50)
    action: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("module", "action")
    @classmethod
    def validate_segment(cls, v: str) -> str:
        return _normalize_segment(v)


class PermissionBulkCreate(BaseModel):
    """Schema for creating several permissions at once."""
    permissions: List[PermissionCreate] = Field(..., min_length=1, max_length=200)


class PermissionUpdate(BaseModel):
    """Only the description of a permission is mutable."""
    description: Optional[str] = Field(None, max_length=500)


class PermissionResponse(BaseModel):
    """Schema for permission response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    module: str
    action: str
    code: str
    description: Optional[str] = None
    created_at: datetime


class PermissionModuleGroup(BaseModel):
    """Permissions of one module."""
    module: str
    permissions: List[PermissionResponse]


class BulkCreateError(BaseModel):
    code: str
    error: str


class BulkCreateResult(BaseModel):
    """Outcome of a bulk create."""
    created: int
    failed: int
    permissions: List[PermissionResponse] = []
    errors: List[BulkCreateError] = []


class SeedResult(BaseModel):
    """Outcome of seeding defaults."""
    created: int
    existing: int


# ===========================================
# ROLES
# ===========================================

class RoleCreate(BaseModel):
    """Schema for creating a role."""
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    company_id: Optional[UUID] = Field(
        None,
        description="Target company; only honoured for super admins",
    )
    is_system: bool = Field(False, description="System roles can only be created by super admins")
    permission_ids: List[UUID] = []

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _normalize_segment(v)


class RoleUpdate(BaseModel):
    """Schema for updating a role."""
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)


class RoleClone(BaseModel):
    """Schema for cloning a role under a new name."""
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _normalize_segment(v)


class RoleResponse(BaseModel):
    """Schema for role response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: Optional[UUID] = None
    name: str
    display_name: str
    description: Optional[str] = None
    is_system: bool
    created_at: datetime
    updated_at: datetime


class RoleDetailResponse(RoleResponse):
    """Role with its grants and the number of users holding it."""
    permissions: List[PermissionResponse] = []
    user_count: int = 0


class RolePermissionsRequest(BaseModel):
    """Permission ids to grant."""
    permission_ids: List[UUID] = Field(..., min_length=1)


class GrantResult(BaseModel):
    """Outcome of a permission grant."""
    granted: int
    already_granted: int


class RoleAssignRequest(BaseModel):
    """Schema for assigning a role to a user."""
    user_id: UUID


class RoleUserResponse(BaseModel):
    """A user holding a role."""
    user_id: UUID
    email: str
    first_name: str
    last_name: str
    role: str
    assigned_at: datetime
