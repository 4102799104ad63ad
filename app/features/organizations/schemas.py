"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field


# Organization Schemas
class OrganizationCreate(BaseModel):
    """Schema for creating a new organization (super-admin only)."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100, pattern="^[a-z0-9][a-z0-9-]*$")
    owner_user_id: str | None = Field(None, description="User that becomes the organization's owner")


class OrganizationResponse(BaseModel):
    """Schema for organization responses."""
    id: str
    name: str
    slug: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# Membership Schemas
class AddMember(BaseModel):
    """Schema for adding a user to an organization."""
    user_id: str = Field(..., min_length=1, max_length=26)


class MembershipResponse(BaseModel):
    """Schema for membership responses."""
    id: str
    user_id: str
    organization_id: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
