"""
Permission management API routes.

Role administration runs in the caller's current organization; every route
here is guarded by the authorization gate.
"""
from typing import Annotated, List
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.rate_limit import admin_rate_limit, limiter
from app.features.users.dependencies import AuthContext, get_auth_context
from app.features.permissions import store
from app.features.permissions.dependencies import AuthorizationGate, get_gate, require_permission
from app.features.permissions.exceptions import EntityNotFoundError
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.schemas import (
    PermissionResponse,
    RoleCreate,
    RoleResponse,
    AssignPermissionToRole,
    AssignRoleToMembership,
    SetMembershipRoles,
    AssignmentResult,
    MembershipRolesResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    EffectivePermissionsResponse,
)
from app.features.permissions.service import AccessAdministration
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

ManageContext = Annotated[AuthContext, Depends(require_permission("users.manage"))]
ViewContext = Annotated[AuthContext, Depends(require_permission("users.view"))]
DbSession = Annotated[AsyncSession, Depends(get_db)]


def _administration(db: AsyncSession, context: AuthContext) -> AccessAdministration:
    return AccessAdministration(db, actor_id=context.user_id)


# ============================================================================
# Self-service
# ============================================================================

@router.get("/me", response_model=EffectivePermissionsResponse)
async def my_permissions(
    context: Annotated[AuthContext, Depends(get_auth_context)],
    db: DbSession,
):
    """Permission keys the caller holds in their current organization."""
    permissions = await PermissionResolver(db).effective_permissions(
        context.user_id, context.organization_id
    )
    return EffectivePermissionsResponse(
        user_id=context.user_id,
        organization_id=context.organization_id,
        permissions=sorted(permissions),
    )


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    body: PermissionCheckRequest,
    context: Annotated[AuthContext, Depends(get_auth_context)],
    gate: Annotated[AuthorizationGate, Depends(get_gate)],
):
    """Check whether the caller holds a permission (or any of several)."""
    decision = await gate.check(context, *body.requested_keys())
    return PermissionCheckResponse(granted=decision.granted)


@router.get("/catalog", response_model=List[PermissionResponse])
async def list_permission_catalog(context: ViewContext, db: DbSession):
    """The shared permission vocabulary."""
    return await store.list_permissions(db)


# ============================================================================
# Role Routes
# ============================================================================

@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(admin_rate_limit)
async def create_role(request: Request, role: RoleCreate, context: ManageContext, db: DbSession):
    """Create a role in the current organization."""
    return await _administration(db, context).create_role(
        context.organization_id, role.key, role.name, role.description
    )


@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(context: ViewContext, db: DbSession):
    """Roles of the current organization."""
    return await store.list_roles(db, context.organization_id)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(admin_rate_limit)
async def delete_role(request: Request, role_id: str, context: ManageContext, db: DbSession):
    """Delete a role together with its grants and assignments."""
    await _administration(db, context).delete_role(role_id, context.organization_id)
    return None


@router.post("/default-roles", response_model=List[RoleResponse])
@limiter.limit(admin_rate_limit)
async def ensure_default_roles(request: Request, context: ManageContext, db: DbSession):
    """Create the owner/admin/member roles if the organization lacks them."""
    return await _administration(db, context).ensure_default_roles(context.organization_id)


@router.get("/roles/{role_id}/permissions", response_model=List[PermissionResponse])
async def list_role_permissions(role_id: str, context: ViewContext, db: DbSession):
    """Permissions granted through a role of the current organization."""
    role = await store.get_role(db, role_id)
    if role is None or role.organization_id != context.organization_id:
        raise EntityNotFoundError("Role", role_id)
    return await store.get_role_permissions(db, role_id, context.organization_id)


@router.post("/roles/{role_id}/permissions", response_model=AssignmentResult)
@limiter.limit(admin_rate_limit)
async def attach_permission_to_role(
    request: Request,
    role_id: str,
    assignment: AssignPermissionToRole,
    context: ManageContext,
    db: DbSession,
):
    """Grant a permission through a role."""
    changed = await _administration(db, context).attach_permission_to_role(
        role_id, assignment.permission_key, context.organization_id
    )
    return AssignmentResult(changed=changed)


@router.delete("/roles/{role_id}/permissions/{permission_key}", response_model=AssignmentResult)
@limiter.limit(admin_rate_limit)
async def detach_permission_from_role(
    request: Request,
    role_id: str,
    permission_key: str,
    context: ManageContext,
    db: DbSession,
):
    """Remove a permission from a role."""
    changed = await _administration(db, context).detach_permission_from_role(
        role_id, permission_key, context.organization_id
    )
    return AssignmentResult(changed=changed)


# ============================================================================
# Membership Role Routes
# ============================================================================

@router.get("/memberships/{membership_id}/roles", response_model=MembershipRolesResponse)
async def list_membership_roles(membership_id: str, context: ViewContext, db: DbSession):
    """Roles attached to a membership of the current organization."""
    membership = await store.get_membership_by_id(db, membership_id)
    if membership is None or membership.organization_id != context.organization_id:
        raise EntityNotFoundError("Membership", membership_id)
    roles = await store.get_membership_roles(db, membership_id, context.organization_id)
    return MembershipRolesResponse(membership_id=membership_id, roles=roles)


@router.post("/memberships/{membership_id}/roles", response_model=AssignmentResult)
@limiter.limit(admin_rate_limit)
async def attach_role_to_membership(
    request: Request,
    membership_id: str,
    assignment: AssignRoleToMembership,
    context: ManageContext,
    db: DbSession,
):
    """Attach a role to a membership of the same organization."""
    changed = await _administration(db, context).attach_role_to_membership(
        membership_id,
        assignment.role_id,
        assigned_by_id=context.user_id,
        organization_id=context.organization_id,
    )
    return AssignmentResult(changed=changed)


@router.put("/memberships/{membership_id}/roles", response_model=MembershipRolesResponse)
@limiter.limit(admin_rate_limit)
async def set_membership_roles(
    request: Request,
    membership_id: str,
    body: SetMembershipRoles,
    context: ManageContext,
    db: DbSession,
):
    """Replace every role of a membership."""
    roles = await _administration(db, context).set_membership_roles(
        membership_id, body.role_keys, organization_id=context.organization_id
    )
    return MembershipRolesResponse(membership_id=membership_id, roles=roles)


@router.delete("/memberships/{membership_id}/roles/{role_id}", response_model=AssignmentResult)
@limiter.limit(admin_rate_limit)
async def detach_role_from_membership(
    request: Request,
    membership_id: str,
    role_id: str,
    context: ManageContext,
    db: DbSession,
):
    """Detach a role from a membership."""
    changed = await _administration(db, context).detach_role_from_membership(
        membership_id, role_id, organization_id=context.organization_id
    )
    return AssignmentResult(changed=changed)
