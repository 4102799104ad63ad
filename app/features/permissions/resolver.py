"""
Permission resolution.

Decides whether a user acting inside an organization holds a permission key:

1. Super-admins are granted everywhere, before any organization data is read.
2. Otherwise the user needs an active membership in the organization,
3. with at least one role of that same organization,
4. whose permissions include the key.

Resolution is read-only. Role lookups always go through the membership and
are filtered by the requested organization.
"""
import enum
from dataclasses import dataclass
from typing import Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations.models import Membership
from app.features.permissions import store


@dataclass(frozen=True)
class MembershipGrants:
    """Roles and permission keys a membership derives inside its organization."""
    role_ids: frozenset[str]
    permission_keys: frozenset[str]

    @property
    def has_roles(self) -> bool:
        return bool(self.role_ids)


class DecisionReason(str, enum.Enum):
    SUPER_ADMIN_BYPASS = "SUPER_ADMIN_BYPASS"
    ROLE_GRANT = "ROLE_GRANT"
    NOT_A_MEMBER = "NOT_A_MEMBER"
    NO_ROLES = "NO_ROLES"
    PERMISSION_NOT_GRANTED = "PERMISSION_NOT_GRANTED"
    NO_ORG_CONTEXT = "NO_ORG_CONTEXT"
    RESOLUTION_ERROR = "RESOLUTION_ERROR"


@dataclass(frozen=True)
class Decision:
    granted: bool
    reason: DecisionReason

    @classmethod
    def allow(cls, reason: DecisionReason) -> "Decision":
        return cls(granted=True, reason=reason)

    @classmethod
    def deny(cls, reason: DecisionReason) -> "Decision":
        return cls(granted=False, reason=reason)


class PermissionResolver:
    """
    Resolve (user, organization, permission key) to a Decision.

    Usage:
        resolver = PermissionResolver(db)
        decision = await resolver.resolve(user_id, org_id, "hr.employees.view")
        if decision.granted:
            ...
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(self, user_id: str, organization_id: Optional[str], permission_key: str) -> Decision:
        return await self.resolve_any(user_id, organization_id, (permission_key,))

    async def resolve_any(
        self,
        user_id: str,
        organization_id: Optional[str],
        permission_keys: Iterable[str],
    ) -> Decision:
        """Granted when any of `permission_keys` is granted."""
        permission_keys = tuple(permission_keys)

        user = await store.get_user(self.db, user_id)
        if user is not None and user.is_active and user.is_super_admin:
            return Decision.allow(DecisionReason.SUPER_ADMIN_BYPASS)
        if user is None or not user.is_active:
            return Decision.deny(DecisionReason.NOT_A_MEMBER)

        if not organization_id:
            return Decision.deny(DecisionReason.NO_ORG_CONTEXT)

        membership = await store.get_membership(self.db, user_id, organization_id)
        if membership is None or not membership.is_active:
            return Decision.deny(DecisionReason.NOT_A_MEMBER)

        grants = await self.membership_grants(membership)
        if not grants.has_roles:
            return Decision.deny(DecisionReason.NO_ROLES)

        for permission_key in permission_keys:
            if permission_key and permission_key in grants.permission_keys:
                return Decision.allow(DecisionReason.ROLE_GRANT)
        return Decision.deny(DecisionReason.PERMISSION_NOT_GRANTED)

    async def is_super_admin(self, user_id: str) -> bool:
        user = await store.get_user(self.db, user_id)
        return user is not None and user.is_active and user.is_super_admin

    async def membership_grants(self, membership: Membership) -> MembershipGrants:
        role_ids, permission_keys = await store.get_membership_grants(
            self.db, membership.id, membership.organization_id
        )
        return MembershipGrants(role_ids=frozenset(role_ids), permission_keys=frozenset(permission_keys))

    async def effective_permissions(self, user_id: str, organization_id: Optional[str]) -> set[str]:
        """
        Every permission key the user holds in the organization.

        Super-admins hold every key in the vocabulary.
        """
        user = await store.get_user(self.db, user_id)
        if user is None or not user.is_active:
            return set()
        if user.is_super_admin:
            return await store.get_all_permission_keys(self.db)
        if not organization_id:
            return set()

        membership = await store.get_membership(self.db, user_id, organization_id)
        if membership is None or not membership.is_active:
            return set()
        grants = await self.membership_grants(membership)
        return set(grants.permission_keys)
