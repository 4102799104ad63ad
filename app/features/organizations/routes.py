"""
Organization feature routes.

Creating an organization is a platform operation; member administration
happens inside the organization the caller is acting in.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.rate_limit import admin_rate_limit, limiter
from app.features.users.dependencies import AuthContext
from app.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationResponse,
    AddMember,
    MembershipResponse,
)
from app.features.permissions import store
from app.features.permissions.dependencies import require_permission, require_super_admin
from app.features.permissions.exceptions import CrossTenantViolationError, EntityNotFoundError
from app.features.permissions.service import AccessAdministration


router = APIRouter(tags=["organizations"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


def _require_acting_organization(context: AuthContext, organization_id: str) -> None:
    if context.organization_id != organization_id:
        raise CrossTenantViolationError(
            "Organization in path differs from the current organization",
            expected_organization_id=context.organization_id,
            actual_organization_id=organization_id,
        )


@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    context: Annotated[AuthContext, Depends(require_super_admin())],
    db: DbSession,
):
    """Create a new organization with its default roles (super-admin only)."""
    admin = AccessAdministration(db, actor_id=context.user_id)
    try:
        return await admin.create_organization(org_data.name, org_data.slug, owner_user_id=org_data.owner_user_id)
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Organization with this slug already exists"
        )


@router.post(
    "/{organization_id}/members",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(admin_rate_limit)
async def add_member(
    request: Request,
    organization_id: str,
    body: AddMember,
    context: Annotated[AuthContext, Depends(require_permission("users.create"))],
    db: DbSession,
):
    """Add a user to the current organization, or reactivate their membership."""
    _require_acting_organization(context, organization_id)
    admin = AccessAdministration(db, actor_id=context.user_id)
    return await admin.add_member(body.user_id, organization_id)


@router.delete("/{organization_id}/members/{user_id}", response_model=MembershipResponse)
@limiter.limit(admin_rate_limit)
async def remove_member(
    request: Request,
    organization_id: str,
    user_id: str,
    context: Annotated[AuthContext, Depends(require_permission("users.delete"))],
    db: DbSession,
):
    """
    Deactivate a member of the current organization.

    The membership and its role rows are kept; they stop granting anything
    right away.
    """
    _require_acting_organization(context, organization_id)
    if user_id == context.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot remove yourself from the organization"
        )

    membership = await store.get_membership(db, user_id, organization_id)
    if membership is None:
        raise EntityNotFoundError("Membership", f"{user_id}@{organization_id}")

    admin = AccessAdministration(db, actor_id=context.user_id)
    return await admin.deactivate_membership(membership.id, organization_id=organization_id)
