"""Factories that write entitlement rows straight through the store."""

from collections.abc import Iterable
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import generate_ulid
from app.features.organizations.models import Membership, Organization
from app.features.permissions import store
from app.features.permissions.models import Role
from app.features.users.auth import create_access_token
from app.features.users.models import User


def _suffix() -> str:
    return generate_ulid().lower()


async def make_user(
    db: AsyncSession,
    *,
    email: Optional[str] = None,
    is_super_admin: bool = False,
    is_active: bool = True,
) -> User:
    user = User(
        email=email or f"user-{_suffix()}@example.com",
        is_super_admin=is_super_admin,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    return user


async def make_organization(db: AsyncSession, *, slug: Optional[str] = None) -> Organization:
    slug = slug or f"org-{_suffix()}"
    organization = Organization(name=slug, slug=slug)
    db.add(organization)
    await db.commit()
    return organization


async def make_membership(
    db: AsyncSession,
    user: User,
    organization: Organization,
    *,
    is_active: bool = True,
) -> Membership:
    membership = Membership(user_id=user.id, organization_id=organization.id, is_active=is_active)
    db.add(membership)
    await db.commit()
    return membership


async def make_permissions(db: AsyncSession, keys: Iterable[str]) -> None:
    for key in keys:
        await store.insert_permission_if_absent(db, key, key)
    await db.commit()


async def make_role(
    db: AsyncSession,
    organization: Organization,
    key: str,
    permission_keys: Iterable[str] = (),
) -> Role:
    permission_keys = list(permission_keys)
    await make_permissions(db, permission_keys)

    role = Role(organization_id=organization.id, key=key, name=key.title())
    db.add(role)
    await db.flush()
    permission_ids = [(await store.get_permission_by_key(db, k)).id for k in permission_keys]
    await store.add_role_permissions(db, role.id, permission_ids)
    await db.commit()
    return role


async def assign_role(db: AsyncSession, membership: Membership, role: Role) -> None:
    await store.add_membership_role(db, membership, role)
    await db.commit()


def auth_headers(user: User, organization: Optional[Organization] = None) -> dict[str, str]:
    token = create_access_token(user.id, organization.id if organization else None)
    return {"Authorization": f"Bearer {token}"}
