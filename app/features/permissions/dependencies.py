"""
Authorization gate and FastAPI dependencies for route protection.

Implements:
- AuthorizationGate: request-time enforcement around the resolver
- require_permission / require_any_permission / require_super_admin guards

The gate fails closed: if the resolver cannot finish, the request is denied.
Denials are logged and counted in Prometheus with their internal reason, but callers only
ever see a uniform 403.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.metrics import record_denial
from app.features.users.dependencies import AuthContext, get_auth_context
from app.features.permissions.exceptions import PermissionDeniedError
from app.features.permissions.resolver import Decision, DecisionReason, PermissionResolver
from app.utils import get_logger


log = get_logger(__name__)


class AuthorizationGate:
    """
    Enforcement point for one request.

    Usage:
        gate = AuthorizationGate(db)
        await gate.authorize(context, "hr.employees.view")       # raises on deny
        decision = await gate.check(context, "a.view", "a.admin")  # any-of
    """

    def __init__(self, db: AsyncSession):
        self.resolver = PermissionResolver(db)

    async def check(self, context: AuthContext, *permission_keys: str) -> Decision:
        if not context.organization_id:
            decision = Decision.deny(DecisionReason.NO_ORG_CONTEXT)
        else:
            try:
                decision = await self.resolver.resolve_any(
                    context.user_id, context.organization_id, permission_keys
                )
            except Exception:
                log.error(
                    f"Permission resolution failed for user={context.user_id} "
                    f"org={context.organization_id} permissions={list(permission_keys)}; denying",
                    exc_info=True,
                )
                decision = Decision.deny(DecisionReason.RESOLUTION_ERROR)

        self._record(context, permission_keys, decision)
        return decision

    async def authorize(self, context: AuthContext, *permission_keys: str) -> Decision:
        """Like check(), but raises PermissionDeniedError on denial."""
        decision = await self.check(context, *permission_keys)
        if not decision.granted:
            raise PermissionDeniedError(decision.reason, tuple(permission_keys))
        return decision

    async def authorize_super_admin(self, context: AuthContext) -> None:
        try:
            is_super_admin = await self.resolver.is_super_admin(context.user_id)
        except Exception:
            log.error(f"Super-admin check failed for user={context.user_id}; denying", exc_info=True)
            is_super_admin = False
            reason = DecisionReason.RESOLUTION_ERROR
        else:
            reason = DecisionReason.PERMISSION_NOT_GRANTED

        if not is_super_admin:
            self._record(context, ("super-admin",), Decision.deny(reason))
            raise PermissionDeniedError(reason, ("super-admin",))

    @staticmethod
    def _record(context: AuthContext, permission_keys: tuple[str, ...], decision: Decision) -> None:
        if decision.granted:
            log.debug(
                f"Access granted: user={context.user_id} org={context.organization_id} "
                f"permissions={list(permission_keys)} reason={decision.reason.value}"
            )
            return
        record_denial(decision.reason.value)
        log.info(
            f"Access denied: user={context.user_id} org={context.organization_id} "
            f"permissions={list(permission_keys)} reason={decision.reason.value}"
        )


async def get_gate(db: Annotated[AsyncSession, Depends(get_db)]) -> AuthorizationGate:
    return AuthorizationGate(db)


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def require_permission(permission_key: str):
    """
    FastAPI dependency to require a specific permission in the request's organization.

    Usage:
        @router.get("/employees")
        async def list_employees(
            context: AuthContext = Depends(require_permission("hr.employees.view"))
        ):
            ...

    Returns:
        Dependency function that returns the AuthContext if access is granted

    Raises:
        PermissionDeniedError: rendered as a uniform 403
    """
    async def permission_dependency(
        context: Annotated[AuthContext, Depends(get_auth_context)],
        gate: Annotated[AuthorizationGate, Depends(get_gate)],
    ) -> AuthContext:
        await gate.authorize(context, permission_key)
        return context

    return permission_dependency


def require_any_permission(*permission_keys: str):
    """
    FastAPI dependency to require ANY of the specified permissions.

    Usage:
        @router.get("/reports")
        async def get_reports(
            context: AuthContext = Depends(require_any_permission("hr.payroll.view", "hr.payroll.approve"))
        ):
            ...
    """
    async def permission_dependency(
        context: Annotated[AuthContext, Depends(get_auth_context)],
        gate: Annotated[AuthorizationGate, Depends(get_gate)],
    ) -> AuthContext:
        await gate.authorize(context, *permission_keys)
        return context

    return permission_dependency


def require_super_admin():
    """FastAPI dependency for platform-level routes that need no organization."""
    async def super_admin_dependency(
        context: Annotated[AuthContext, Depends(get_auth_context)],
        gate: Annotated[AuthorizationGate, Depends(get_gate)],
    ) -> AuthContext:
        await gate.authorize_super_admin(context)
        return context

    return super_admin_dependency
