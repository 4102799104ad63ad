"""
Pydantic schemas for permission management.

Request and response models for permissions, roles, membership roles and checks.
"""
import re
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


_ROLE_KEY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_\-]*$")


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionResponse(BaseModel):
    """Schema for permission response."""
    id: str
    key: str
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleCreate(BaseModel):
    """Schema for creating a role in the caller's current organization."""
    key: str = Field(..., min_length=1, max_length=100, description="Role key, unique within the organization")
    name: str = Field(..., min_length=1, max_length=150, description="Display name")
    description: Optional[str] = Field(None, max_length=1000)

    @field_validator('key')
    @classmethod
    def key_format(cls, v: str) -> str:
        """Role keys are lowercase alphanumerics, hyphens and underscores."""
        v = v.strip().lower()
        if not _ROLE_KEY_PATTERN.match(v):
            raise ValueError('Role key must contain only lowercase letters, digits, hyphens and underscores')
        return v


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    organization_id: str
    key: str
    name: str
    description: Optional[str] = None
    is_system: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignPermissionToRole(BaseModel):
    permission_key: str = Field(..., min_length=1, max_length=150)


class AssignRoleToMembership(BaseModel):
    role_id: str = Field(..., min_length=1, max_length=26)


class SetMembershipRoles(BaseModel):
    role_keys: List[str] = Field(default_factory=list, description="Replaces every role of the membership")


class AssignmentResult(BaseModel):
    changed: bool


class MembershipRolesResponse(BaseModel):
    membership_id: str
    roles: List[RoleResponse]


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Single key, or a list of keys with any-of semantics."""
    permission_key: Optional[str] = None
    permission_keys: Optional[List[str]] = None

    @model_validator(mode="after")
    def one_of_key_or_keys(self) -> "PermissionCheckRequest":
        if not self.permission_key and not self.permission_keys:
            raise ValueError("permission_key or permission_keys is required")
        return self

    def requested_keys(self) -> tuple[str, ...]:
        if self.permission_keys:
            return tuple(self.permission_keys)
        return (self.permission_key,)


class PermissionCheckResponse(BaseModel):
    """Only the outcome; the reason stays server-side."""
    granted: bool


class EffectivePermissionsResponse(BaseModel):
    user_id: str
    organization_id: Optional[str]
    permissions: List[str]
