"""
Role and permission administration.

Every public mutation runs in its own transaction: it is either fully applied
and committed, or rolled back and raised. Tenant boundaries are checked here,
before anything is written:

- a role only ever attaches to memberships of its own organization
- a role is only edited through the organization that owns it
"""
import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import Iterable, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations.models import Organization, Membership
from app.features.permissions import store
from app.features.permissions.catalog import DEFAULT_ROLES, PERMISSION_CATALOG, OWNER_ROLE, default_grants
from app.features.permissions.exceptions import (
    CrossTenantViolationError,
    DuplicateRoleError,
    EntityNotFoundError,
)
from app.features.permissions.models import Permission, Role
from app.utils import get_logger


log = get_logger(__name__)

# Serializes ensure_default_roles per organization inside this process;
# across processes the (organization_id, key) unique constraint decides.
# Entries disappear once no caller holds the lock.
_default_role_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _default_role_lock(organization_id: str) -> asyncio.Lock:
    lock = _default_role_locks.get(organization_id)
    if lock is None:
        lock = asyncio.Lock()
        _default_role_locks[organization_id] = lock
    return lock


class AccessAdministration:
    """
    Mutations over the role/permission graph.

    Usage:
        admin = AccessAdministration(db, actor_id=user.id)
        role = await admin.create_role(org_id, "hr-manager", "HR Manager")
        await admin.attach_permission_to_role(role.id, "hr.employees.view", org_id)
        await admin.attach_role_to_membership(membership.id, role.id)
    """

    def __init__(self, db: AsyncSession, actor_id: Optional[str] = None):
        self.db = db
        self.actor_id = actor_id

    @asynccontextmanager
    async def _transaction(self):
        try:
            yield
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    def _audit(self, action: str, resource_type: str, resource_id: Optional[str],
               organization_id: Optional[str], details: Optional[dict] = None) -> None:
        store.add_audit_log(
            self.db,
            user_id=self.actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            organization_id=organization_id,
            details=details,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _require_organization(self, organization_id: str) -> Organization:
        organization = await store.get_organization(self.db, organization_id)
        if organization is None:
            raise EntityNotFoundError("Organization", organization_id)
        return organization

    async def _require_membership(self, membership_id: str) -> Membership:
        membership = await store.get_membership_by_id(self.db, membership_id)
        if membership is None:
            raise EntityNotFoundError("Membership", membership_id)
        return membership

    async def _require_role(self, role_id: str, organization_id: str) -> Role:
        role = await store.get_role(self.db, role_id)
        if role is None:
            raise EntityNotFoundError("Role", role_id)
        if role.organization_id != organization_id:
            log.warning(
                f"Cross-tenant role access: role {role_id} belongs to org {role.organization_id}, "
                f"requested from org {organization_id}"
            )
            raise CrossTenantViolationError(
                "Role belongs to a different organization",
                expected_organization_id=organization_id,
                actual_organization_id=role.organization_id,
            )
        return role

    async def _require_permission(self, permission_key: str) -> Permission:
        permission = await store.get_permission_by_key(self.db, permission_key)
        if permission is None:
            raise EntityNotFoundError("Permission", permission_key)
        return permission

    @staticmethod
    def _check_acting_organization(membership: Membership, organization_id: Optional[str]) -> None:
        if organization_id is not None and membership.organization_id != organization_id:
            raise CrossTenantViolationError(
                "Membership belongs to a different organization",
                expected_organization_id=organization_id,
                actual_organization_id=membership.organization_id,
            )

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def create_role(
        self,
        organization_id: str,
        key: str,
        name: str,
        description: Optional[str] = None,
    ) -> Role:
        """
        Create an organization-scoped role.

        Raises:
            EntityNotFoundError: unknown organization
            DuplicateRoleError: (organization_id, key) already exists
        """
        try:
            async with self._transaction():
                await self._require_organization(organization_id)
                if await store.get_role_by_key(self.db, organization_id, key) is not None:
                    raise DuplicateRoleError(organization_id, key)

                role = Role(organization_id=organization_id, key=key, name=name, description=description)
                self.db.add(role)
                await self.db.flush()
                self._audit("create", "role", role.id, organization_id, {"key": key, "name": name})
        except IntegrityError:
            # Lost a race with a concurrent create of the same key
            raise DuplicateRoleError(organization_id, key)

        await self.db.refresh(role)
        log.info(f"Created role '{key}' ({role.id}) in org {organization_id}")
        return role

    async def delete_role(self, role_id: str, organization_id: str) -> None:
        """Delete a role and every grant and assignment row that references it."""
        async with self._transaction():
            role = await self._require_role(role_id, organization_id)
            role_key = role.key
            await store.delete_role_cascade(self.db, role_id)
            self._audit("delete", "role", role_id, organization_id, {"key": role_key})
        log.info(f"Deleted role '{role_key}' ({role_id}) in org {organization_id}")

    async def attach_permission_to_role(self, role_id: str, permission_key: str, organization_id: str) -> bool:
        """
        Grant a permission through a role owned by `organization_id`.

        Returns False when the role already had it.
        """
        async with self._transaction():
            role = await self._require_role(role_id, organization_id)
            permission = await self._require_permission(permission_key)
            added = await store.add_role_permissions(self.db, role.id, [permission.id])
            if added:
                self._audit("assign_permission", "role", role.id, organization_id,
                            {"permission_key": permission.key})
        if added:
            log.info(f"Attached permission '{permission_key}' to role {role_id} in org {organization_id}")
        return bool(added)

    async def detach_permission_from_role(self, role_id: str, permission_key: str, organization_id: str) -> bool:
        async with self._transaction():
            role = await self._require_role(role_id, organization_id)
            permission = await self._require_permission(permission_key)
            removed = await store.remove_role_permission(self.db, role.id, permission.id)
            if removed:
                self._audit("remove_permission", "role", role.id, organization_id,
                            {"permission_key": permission.key})
        if removed:
            log.info(f"Detached permission '{permission_key}' from role {role_id} in org {organization_id}")
        return bool(removed)

    # ------------------------------------------------------------------
    # Membership roles
    # ------------------------------------------------------------------

    async def attach_role_to_membership(
        self,
        membership_id: str,
        role_id: str,
        assigned_by_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> bool:
        """
        Attach a role to a membership of the same organization.

        `organization_id`, when given, is the organization the caller acts in;
        the membership must belong to it too.

        Raises:
            CrossTenantViolationError: the role, the membership and the acting
                organization do not all agree
        """
        membership = await self._require_membership(membership_id)
        self._check_acting_organization(membership, organization_id)

        async with self._transaction():
            role = await store.get_role(self.db, role_id)
            if role is None:
                raise EntityNotFoundError("Role", role_id)
            if role.organization_id != membership.organization_id:
                log.warning(
                    f"Rejected cross-tenant assignment of role {role_id} (org {role.organization_id}) "
                    f"to membership {membership_id} (org {membership.organization_id})"
                )
                raise CrossTenantViolationError(
                    "Role and membership belong to different organizations",
                    expected_organization_id=membership.organization_id,
                    actual_organization_id=role.organization_id,
                )
            if not await store.add_membership_role(self.db, membership, role, assigned_by_id or self.actor_id):
                return False
            self._audit("assign_role", "membership", membership.id, membership.organization_id,
                        {"role_id": role.id, "role_key": role.key})

        log.info(f"Attached role '{role.key}' to membership {membership_id} in org {membership.organization_id}")
        return True

    async def detach_role_from_membership(
        self,
        membership_id: str,
        role_id: str,
        organization_id: Optional[str] = None,
    ) -> bool:
        membership = await self._require_membership(membership_id)
        self._check_acting_organization(membership, organization_id)

        async with self._transaction():
            removed = await store.remove_membership_role(self.db, membership.id, role_id)
            if removed:
                self._audit("remove_role", "membership", membership.id, membership.organization_id,
                            {"role_id": role_id})
        if removed:
            log.info(f"Detached role {role_id} from membership {membership_id}")
        return bool(removed)

    async def set_membership_roles(
        self,
        membership_id: str,
        role_keys: Iterable[str],
        organization_id: Optional[str] = None,
    ) -> list[Role]:
        """
        Replace the roles of a membership with the roles of `role_keys`.

        Keys are looked up in the membership's own organization only.

        Raises:
            EntityNotFoundError: a key has no role in that organization
        """
        role_keys = list(dict.fromkeys(role_keys))
        membership = await self._require_membership(membership_id)
        self._check_acting_organization(membership, organization_id)

        async with self._transaction():
            roles = await store.get_roles_by_keys(self.db, membership.organization_id, role_keys)
            missing = set(role_keys) - {role.key for role in roles}
            if missing:
                raise EntityNotFoundError("Role", ", ".join(sorted(missing)))

            await store.clear_membership_roles(self.db, membership.id)
            for role in roles:
                await store.add_membership_role(self.db, membership, role, self.actor_id)
            self._audit("set_roles", "membership", membership.id, membership.organization_id,
                        {"role_keys": sorted(role_keys)})

        log.info(f"Set roles {sorted(role_keys)} on membership {membership_id}")
        return sorted(roles, key=lambda role: role.key)

    # ------------------------------------------------------------------
    # Defaults and vocabulary
    # ------------------------------------------------------------------

    async def _ensure_default_roles(self, organization_id: str) -> list[str]:
        """Create missing default roles inside the current transaction; returns created keys."""
        created_keys = []
        permissions = None
        for key, (name, description) in DEFAULT_ROLES.items():
            created = await store.insert_role_if_absent(
                self.db, organization_id, key, name, description=description, is_system=True
            )
            if not created:
                continue
            created_keys.append(key)

            if permissions is None:
                permissions = {permission.key: permission.id for permission in await store.list_permissions(self.db)}
            grant_keys = default_grants(key, set(permissions))
            if grant_keys:
                role = await store.get_role_by_key(self.db, organization_id, key)
                await store.add_role_permissions(self.db, role.id, [permissions[k] for k in sorted(grant_keys)])
        return created_keys

    async def ensure_default_roles(self, organization_id: str) -> list[Role]:
        """
        Make sure the organization has its default roles.

        Idempotent: existing roles are left untouched and a second call is a
        no-op. A concurrent caller that loses the insert race treats the
        existing row as success.
        """
        async with _default_role_lock(organization_id):
            async with self._transaction():
                await self._require_organization(organization_id)
                created_keys = await self._ensure_default_roles(organization_id)
                if created_keys:
                    self._audit("ensure_default_roles", "organization", organization_id, organization_id,
                                {"created": created_keys})

        if created_keys:
            log.info(f"Created default roles {created_keys} in org {organization_id}")
        roles = await store.get_roles_by_keys(self.db, organization_id, DEFAULT_ROLES.keys())
        return sorted(roles, key=lambda role: role.key)

    async def ensure_permission(self, key: str, name: str, description: Optional[str] = None) -> Permission:
        """Add a key to the permission vocabulary unless it is already there."""
        async with self._transaction():
            created = await store.insert_permission_if_absent(self.db, key, name, description)
            if created:
                self._audit("create", "permission", None, None, {"key": key})
        if created:
            log.info(f"Created permission '{key}'")
        return await self._require_permission(key)

    async def ensure_permission_catalog(self, catalog: Iterable[tuple[str, str]] = PERMISSION_CATALOG) -> int:
        """Upsert the permission vocabulary. Returns the number of new keys."""
        created = 0
        async with self._transaction():
            for key, name in catalog:
                if await store.insert_permission_if_absent(self.db, key, name):
                    created += 1
        log.info(f"Permission catalog ensured ({created} new)")
        return created

    # ------------------------------------------------------------------
    # Organizations and memberships
    # ------------------------------------------------------------------

    async def create_organization(self, name: str, slug: str, owner_user_id: Optional[str] = None) -> Organization:
        """
        Create an organization with its default roles.

        When `owner_user_id` is given, that user becomes an active member
        holding the owner role.
        """
        async with self._transaction():
            organization = Organization(name=name, slug=slug)
            self.db.add(organization)
            await self.db.flush()
            await self._ensure_default_roles(organization.id)

            if owner_user_id is not None:
                if await store.get_user(self.db, owner_user_id) is None:
                    raise EntityNotFoundError("User", owner_user_id)
                membership = Membership(user_id=owner_user_id, organization_id=organization.id, is_active=True)
                self.db.add(membership)
                await self.db.flush()
                owner_role = await store.get_role_by_key(self.db, organization.id, OWNER_ROLE)
                await store.add_membership_role(self.db, membership, owner_role, self.actor_id)

            self._audit("create", "organization", organization.id, organization.id,
                        {"slug": slug, "owner_user_id": owner_user_id})

        await self.db.refresh(organization)
        log.info(f"Created organization '{slug}' ({organization.id})")
        return organization

    async def add_member(self, user_id: str, organization_id: str) -> Membership:
        """
        Add a user to an organization, reactivating an earlier membership.

        Roles are attached separately.
        """
        async with self._transaction():
            await self._require_organization(organization_id)
            if await store.get_user(self.db, user_id) is None:
                raise EntityNotFoundError("User", user_id)

            inserted = await store.insert_membership_if_absent(self.db, user_id, organization_id)
            membership = await store.get_membership(self.db, user_id, organization_id)
            if inserted:
                self._audit("add_member", "membership", membership.id, organization_id, {"user_id": user_id})
            elif not membership.is_active:
                membership.is_active = True
                self._audit("reactivate", "membership", membership.id, organization_id, {"user_id": user_id})

        await self.db.refresh(membership)
        return membership

    async def deactivate_membership(self, membership_id: str, organization_id: Optional[str] = None) -> Membership:
        """
        Deactivate a membership. Its role rows are kept; they stop granting
        anything immediately.
        """
        return await self._set_membership_active(membership_id, False, organization_id)

    async def reactivate_membership(self, membership_id: str, organization_id: Optional[str] = None) -> Membership:
        return await self._set_membership_active(membership_id, True, organization_id)

    async def _set_membership_active(self, membership_id: str, is_active: bool,
                                     organization_id: Optional[str]) -> Membership:
        membership = await self._require_membership(membership_id)
        self._check_acting_organization(membership, organization_id)

        async with self._transaction():
            if membership.is_active != is_active:
                membership.is_active = is_active
                self._audit("activate" if is_active else "deactivate", "membership", membership.id,
                            membership.organization_id, {"user_id": membership.user_id})

        await self.db.refresh(membership)
        log.info(f"Membership {membership_id} is_active={is_active}")
        return membership
