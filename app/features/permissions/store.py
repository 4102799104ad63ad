"""
Entitlement store queries.

Read and write helpers over users, memberships, roles and permissions.
Every role lookup that feeds an authorization decision is filtered by the
organization in the request context, never by role id alone.
"""
from typing import Iterable, Optional
from sqlalchemy import select, delete, and_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import generate_ulid
from app.features.users.models import User
from app.features.organizations.models import Organization, Membership
from app.features.permissions.models import (
    Permission,
    Role,
    AuditLog,
    role_permissions,
    membership_roles,
)


# ============================================================================
# Reads
# ============================================================================

async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    # Reload even when the row is already in the session
    result = await db.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def get_organization(db: AsyncSession, organization_id: str) -> Optional[Organization]:
    result = await db.execute(select(Organization).where(Organization.id == organization_id))
    return result.scalar_one_or_none()


async def get_organization_by_slug(db: AsyncSession, slug: str) -> Optional[Organization]:
    result = await db.execute(select(Organization).where(Organization.slug == slug))
    return result.scalar_one_or_none()


async def list_organization_ids(db: AsyncSession) -> list[str]:
    result = await db.execute(select(Organization.id).order_by(Organization.created_at))
    return list(result.scalars().all())


async def get_membership(db: AsyncSession, user_id: str, organization_id: str) -> Optional[Membership]:
    """Membership for (user, organization), active or not."""
    result = await db.execute(
        select(Membership).where(
            and_(
                Membership.user_id == user_id,
                Membership.organization_id == organization_id,
            )
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_membership_by_id(db: AsyncSession, membership_id: str) -> Optional[Membership]:
    result = await db.execute(select(Membership).where(Membership.id == membership_id))
    return result.scalar_one_or_none()


async def get_role(db: AsyncSession, role_id: str) -> Optional[Role]:
    result = await db.execute(select(Role).where(Role.id == role_id))
    return result.scalar_one_or_none()


async def get_role_by_key(db: AsyncSession, organization_id: str, key: str) -> Optional[Role]:
    result = await db.execute(
        select(Role).where(and_(Role.organization_id == organization_id, Role.key == key))
    )
    return result.scalar_one_or_none()


async def list_roles(db: AsyncSession, organization_id: str) -> list[Role]:
    result = await db.execute(
        select(Role).where(Role.organization_id == organization_id).order_by(Role.key)
    )
    return list(result.scalars().all())


async def get_roles_by_keys(db: AsyncSession, organization_id: str, keys: Iterable[str]) -> list[Role]:
    keys = list(keys)
    if not keys:
        return []
    result = await db.execute(
        select(Role).where(and_(Role.organization_id == organization_id, Role.key.in_(keys)))
    )
    return list(result.scalars().all())


async def get_permission_by_key(db: AsyncSession, key: str) -> Optional[Permission]:
    result = await db.execute(select(Permission).where(Permission.key == key))
    return result.scalar_one_or_none()


async def list_permissions(db: AsyncSession) -> list[Permission]:
    result = await db.execute(select(Permission).order_by(Permission.key))
    return list(result.scalars().all())


async def get_all_permission_keys(db: AsyncSession) -> set[str]:
    result = await db.execute(select(Permission.key))
    return set(result.scalars().all())


async def get_membership_grants(
    db: AsyncSession,
    membership_id: str,
    organization_id: str,
) -> tuple[set[str], set[str]]:
    """
    Role ids and permission keys held by a membership, in one query.

    Both the assignment row and the role must belong to organization_id, so a
    role from another tenant never contributes even if a stray row exists.
    Roles without permissions still appear in the role id set.
    """
    stmt = (
        select(Role.id, Permission.key)
        .select_from(membership_roles)
        .join(
            Role,
            and_(
                Role.id == membership_roles.c.role_id,
                Role.organization_id == organization_id,
            ),
        )
        .outerjoin(role_permissions, role_permissions.c.role_id == Role.id)
        .outerjoin(Permission, Permission.id == role_permissions.c.permission_id)
        .where(
            and_(
                membership_roles.c.membership_id == membership_id,
                membership_roles.c.organization_id == organization_id,
            )
        )
    )
    result = await db.execute(stmt)
    role_ids: set[str] = set()
    keys: set[str] = set()
    for role_id, key in result.all():
        role_ids.add(role_id)
        if key is not None:
            keys.add(key)
    return role_ids, keys


async def get_role_permissions(db: AsyncSession, role_id: str, organization_id: str) -> list[Permission]:
    """Permissions granted to a role, empty when the role is not in organization_id."""
    stmt = (
        select(Permission)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .join(Role, Role.id == role_permissions.c.role_id)
        .where(
            and_(
                Role.id == role_id,
                Role.organization_id == organization_id,
            )
        )
        .order_by(Permission.key)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_membership_roles(db: AsyncSession, membership_id: str, organization_id: str) -> list[Role]:
    stmt = (
        select(Role)
        .join(membership_roles, membership_roles.c.role_id == Role.id)
        .where(
            and_(
                membership_roles.c.membership_id == membership_id,
                Role.organization_id == organization_id,
            )
        )
        .order_by(Role.key)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_membership_role_rows(db: AsyncSession, membership_id: str) -> int:
    result = await db.execute(
        select(membership_roles.c.role_id).where(membership_roles.c.membership_id == membership_id)
    )
    return len(result.all())


async def count_role_permission_rows(db: AsyncSession, role_id: str) -> int:
    result = await db.execute(
        select(role_permissions.c.permission_id).where(role_permissions.c.role_id == role_id)
    )
    return len(result.all())


# ============================================================================
# Writes
# ============================================================================

def _insert_ignoring_conflicts(db: AsyncSession, table):
    """
    INSERT that silently skips rows violating a unique constraint.

    Returns None for dialects without ON CONFLICT support; callers fall back
    to a plain insert and handle IntegrityError themselves.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(table).on_conflict_do_nothing()
    if dialect == "postgresql":
        return postgresql.insert(table).on_conflict_do_nothing()
    return None


async def _insert_if_absent(db: AsyncSession, table, values: dict) -> bool:
    """
    Insert one row unless it collides with a unique key.

    Returns True when this call wrote the row. Concurrent callers race on the
    constraint inside the database, so exactly one of them sees True.
    """
    stmt = _insert_ignoring_conflicts(db, table)
    if stmt is None:
        try:
            async with db.begin_nested():
                await db.execute(table.insert().values(**values))
        except IntegrityError:
            return False
        return True
    result = await db.execute(stmt.values(**values))
    return result.rowcount == 1


async def insert_role_if_absent(
    db: AsyncSession,
    organization_id: str,
    key: str,
    name: str,
    description: Optional[str] = None,
    is_system: bool = False,
) -> bool:
    """Insert a role unless (organization_id, key) already exists."""
    return await _insert_if_absent(
        db,
        Role.__table__,
        dict(
            id=generate_ulid(),
            organization_id=organization_id,
            key=key,
            name=name,
            description=description,
            is_system=is_system,
        ),
    )


async def insert_permission_if_absent(
    db: AsyncSession,
    key: str,
    name: str,
    description: Optional[str] = None,
) -> bool:
    return await _insert_if_absent(
        db,
        Permission.__table__,
        dict(id=generate_ulid(), key=key, name=name, description=description),
    )


async def insert_membership_if_absent(db: AsyncSession, user_id: str, organization_id: str) -> bool:
    """Create an active membership unless the user already belongs to the organization."""
    return await _insert_if_absent(
        db,
        Membership.__table__,
        dict(id=generate_ulid(), user_id=user_id, organization_id=organization_id, is_active=True),
    )


async def add_role_permissions(db: AsyncSession, role_id: str, permission_ids: Iterable[str]) -> int:
    """Attach permissions to a role, skipping ones already attached. Returns rows added."""
    added = 0
    for permission_id in permission_ids:
        if await _insert_if_absent(
            db, role_permissions, dict(role_id=role_id, permission_id=permission_id)
        ):
            added += 1
    return added


async def remove_role_permission(db: AsyncSession, role_id: str, permission_id: str) -> int:
    result = await db.execute(
        delete(role_permissions).where(
            and_(
                role_permissions.c.role_id == role_id,
                role_permissions.c.permission_id == permission_id,
            )
        )
    )
    return result.rowcount


async def add_membership_role(
    db: AsyncSession,
    membership: Membership,
    role: Role,
    assigned_by_id: Optional[str] = None,
) -> bool:
    """Assign a role to a membership. Returns False when it was already assigned."""
    return await _insert_if_absent(
        db,
        membership_roles,
        dict(
            membership_id=membership.id,
            role_id=role.id,
            organization_id=role.organization_id,
            assigned_by_id=assigned_by_id,
        ),
    )


async def remove_membership_role(db: AsyncSession, membership_id: str, role_id: str) -> int:
    result = await db.execute(
        delete(membership_roles).where(
            and_(
                membership_roles.c.membership_id == membership_id,
                membership_roles.c.role_id == role_id,
            )
        )
    )
    return result.rowcount


async def clear_membership_roles(db: AsyncSession, membership_id: str) -> int:
    result = await db.execute(
        delete(membership_roles).where(membership_roles.c.membership_id == membership_id)
    )
    return result.rowcount


async def delete_role_cascade(db: AsyncSession, role_id: str) -> None:
    """Delete a role together with its grant and assignment rows."""
    await db.execute(delete(membership_roles).where(membership_roles.c.role_id == role_id))
    await db.execute(delete(role_permissions).where(role_permissions.c.role_id == role_id))
    await db.execute(delete(Role).where(Role.id == role_id))


def add_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[dict] = None,
) -> AuditLog:
    """Stage an audit row in the current transaction."""
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
    )
    db.add(audit_log)
    return audit_log
