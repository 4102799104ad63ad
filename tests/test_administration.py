from __future__ import annotations

import asyncio
import gc

import pytest
from sqlalchemy import event, func, inspect, select

from app.features.organizations.models import Membership, Organization
from app.features.permissions import service, store
from app.features.permissions.catalog import (
    ADMIN_EXCLUDED_PERMISSIONS,
    DEFAULT_ROLES,
    PERMISSION_CATALOG,
)
from app.features.permissions.exceptions import (
    CrossTenantViolationError,
    DuplicateRoleError,
    EntityNotFoundError,
)
from app.features.permissions.models import AuditLog, Permission, Role, role_permissions
from app.features.permissions.resolver import DecisionReason, PermissionResolver
from app.features.permissions.service import AccessAdministration
from app.features.users.models import User
from tests.factories import (
    assign_role,
    make_membership,
    make_organization,
    make_permissions,
    make_role,
    make_user,
)


async def _role_count(db, organization_id: str, key: str) -> int:
    return await db.scalar(
        select(func.count()).select_from(Role).where(
            Role.organization_id == organization_id, Role.key == key
        )
    )


@pytest.mark.asyncio
async def test_create_role_and_duplicate(db_session) -> None:
    org = await make_organization(db_session)
    org_id = org.id
    admin = AccessAdministration(db_session)

    role = await admin.create_role(org_id, "hr-manager", "HR Manager")
    assert role.organization_id == org_id
    assert role.created_at is not None

    with pytest.raises(DuplicateRoleError) as exc_info:
        await admin.create_role(org_id, "hr-manager", "Again")
    assert exc_info.value.code == "DUPLICATE_ROLE"
    assert await _role_count(db_session, org_id, "hr-manager") == 1


@pytest.mark.asyncio
async def test_same_role_key_in_two_organizations(db_session) -> None:
    org_a = await make_organization(db_session)
    org_b = await make_organization(db_session)
    admin = AccessAdministration(db_session)

    role_a = await admin.create_role(org_a.id, "support", "Support")
    role_b = await admin.create_role(org_b.id, "support", "Support")

    assert role_a.id != role_b.id


@pytest.mark.asyncio
async def test_create_role_in_unknown_organization(db_session) -> None:
    with pytest.raises(EntityNotFoundError):
        await AccessAdministration(db_session).create_role("01HZZZZZZZZZZZZZZZZZZZZZZZ", "x", "X")


@pytest.mark.asyncio
async def test_attach_and_detach_are_visible_to_the_next_resolution(db_session) -> None:
    org = await make_organization(db_session)
    user = await make_user(db_session)
    membership = await make_membership(db_session, user, org)
    await make_permissions(db_session, ["hr.employees.view"])
    role = await make_role(db_session, org, "hr")
    await assign_role(db_session, membership, role)
    admin = AccessAdministration(db_session)
    resolver = PermissionResolver(db_session)

    assert not (await resolver.resolve(user.id, org.id, "hr.employees.view")).granted

    assert await admin.attach_permission_to_role(role.id, "hr.employees.view", org.id) is True
    assert await admin.attach_permission_to_role(role.id, "hr.employees.view", org.id) is False
    assert (await resolver.resolve(user.id, org.id, "hr.employees.view")).granted

    assert await admin.detach_permission_from_role(role.id, "hr.employees.view", org.id) is True
    assert not (await resolver.resolve(user.id, org.id, "hr.employees.view")).granted


@pytest.mark.asyncio
async def test_attach_permission_to_foreign_role_rejected(db_session) -> None:
    org_a = await make_organization(db_session)
    org_b = await make_organization(db_session)
    await make_permissions(db_session, ["users.manage"])
    role_b = await make_role(db_session, org_b, "admin")
    role_b_id, org_a_id, org_b_id = role_b.id, org_a.id, org_b.id

    with pytest.raises(CrossTenantViolationError):
        await AccessAdministration(db_session).attach_permission_to_role(role_b_id, "users.manage", org_a_id)

    assert await store.get_role_permissions(db_session, role_b_id, org_b_id) == []


@pytest.mark.asyncio
async def test_attach_unknown_permission(db_session) -> None:
    org = await make_organization(db_session)
    role = await make_role(db_session, org, "admin")

    with pytest.raises(EntityNotFoundError):
        await AccessAdministration(db_session).attach_permission_to_role(role.id, "no.such.key", org.id)


@pytest.mark.asyncio
async def test_cross_tenant_role_assignment_rejected_without_row(db_session) -> None:
    org_a = await make_organization(db_session)
    org_b = await make_organization(db_session)
    user = await make_user(db_session)
    membership_a = await make_membership(db_session, user, org_a)
    role_b = await make_role(db_session, org_b, "admin", ["users.manage"])
    org_a_id, org_b_id, membership_a_id = org_a.id, org_b.id, membership_a.id

    with pytest.raises(CrossTenantViolationError) as exc_info:
        await AccessAdministration(db_session).attach_role_to_membership(membership_a_id, role_b.id)

    assert exc_info.value.expected_organization_id == org_a_id
    assert exc_info.value.actual_organization_id == org_b_id
    assert await store.count_membership_role_rows(db_session, membership_a_id) == 0


@pytest.mark.asyncio
async def test_membership_outside_acting_organization_rejected(db_session) -> None:
    org_a = await make_organization(db_session)
    org_b = await make_organization(db_session)
    user = await make_user(db_session)
    membership_b = await make_membership(db_session, user, org_b)
    role_b = await make_role(db_session, org_b, "member")

    with pytest.raises(CrossTenantViolationError):
        await AccessAdministration(db_session).attach_role_to_membership(
            membership_b.id, role_b.id, organization_id=org_a.id
        )
    assert await store.count_membership_role_rows(db_session, membership_b.id) == 0


@pytest.mark.asyncio
async def test_attach_role_is_idempotent_and_detach_revokes(db_session) -> None:
    org = await make_organization(db_session)
    user = await make_user(db_session)
    membership = await make_membership(db_session, user, org)
    role = await make_role(db_session, org, "viewer", ["users.view"])
    admin = AccessAdministration(db_session, actor_id=user.id)
    resolver = PermissionResolver(db_session)

    assert await admin.attach_role_to_membership(membership.id, role.id) is True
    assert await admin.attach_role_to_membership(membership.id, role.id) is False
    assert await store.count_membership_role_rows(db_session, membership.id) == 1
    assert (await resolver.resolve(user.id, org.id, "users.view")).granted

    assert await admin.detach_role_from_membership(membership.id, role.id) is True
    assert (await resolver.resolve(user.id, org.id, "users.view")).reason == DecisionReason.NO_ROLES


@pytest.mark.asyncio
async def test_set_membership_roles_replaces_roles(db_session) -> None:
    org = await make_organization(db_session)
    other_org = await make_organization(db_session)
    user = await make_user(db_session)
    membership = await make_membership(db_session, user, org)
    viewer = await make_role(db_session, org, "viewer", ["users.view"])
    await make_role(db_session, org, "editor", ["documents.edit"])
    await make_role(db_session, other_org, "auditor")
    await assign_role(db_session, membership, viewer)
    membership_id, org_id = membership.id, org.id
    admin = AccessAdministration(db_session)

    roles = await admin.set_membership_roles(membership_id, ["editor"])
    assert [role.key for role in roles] == ["editor"]
    assert await store.count_membership_role_rows(db_session, membership_id) == 1

    # Keys are looked up in the membership's organization only
    with pytest.raises(EntityNotFoundError):
        await admin.set_membership_roles(membership_id, ["editor", "auditor"])
    assert [role.key for role in await store.get_membership_roles(db_session, membership_id, org_id)] == ["editor"]

    assert await admin.set_membership_roles(membership_id, []) == []
    assert await store.count_membership_role_rows(db_session, membership_id) == 0


@pytest.mark.asyncio
async def test_delete_role_cascades(db_session) -> None:
    org = await make_organization(db_session)
    user = await make_user(db_session)
    membership = await make_membership(db_session, user, org)
    role = await make_role(db_session, org, "viewer", ["users.view"])
    await assign_role(db_session, membership, role)

    await AccessAdministration(db_session).delete_role(role.id, org.id)

    assert await store.get_role(db_session, role.id) is None
    assert await store.count_membership_role_rows(db_session, membership.id) == 0
    grant_rows = await db_session.scalar(
        select(func.count()).select_from(role_permissions).where(role_permissions.c.role_id == role.id)
    )
    assert grant_rows == 0


@pytest.mark.asyncio
async def test_deactivation_keeps_rows_and_reactivation_restores(db_session) -> None:
    org = await make_organization(db_session)
    user = await make_user(db_session)
    membership = await make_membership(db_session, user, org)
    role = await make_role(db_session, org, "viewer", ["users.view"])
    await assign_role(db_session, membership, role)
    admin = AccessAdministration(db_session)
    resolver = PermissionResolver(db_session)

    await admin.deactivate_membership(membership.id)
    assert (await resolver.resolve(user.id, org.id, "users.view")).reason == DecisionReason.NOT_A_MEMBER
    assert await store.count_membership_role_rows(db_session, membership.id) == 1

    await admin.reactivate_membership(membership.id)
    assert (await resolver.resolve(user.id, org.id, "users.view")).granted


@pytest.mark.asyncio
async def test_add_member_reactivates_existing_membership(db_session) -> None:
    org = await make_organization(db_session)
    user = await make_user(db_session)
    admin = AccessAdministration(db_session)

    membership = await admin.add_member(user.id, org.id)
    await admin.deactivate_membership(membership.id)
    again = await admin.add_member(user.id, org.id)

    assert again.id == membership.id
    assert again.is_active


@pytest.mark.asyncio
async def test_ensure_default_roles_is_idempotent(db_session) -> None:
    org = await make_organization(db_session)
    admin = AccessAdministration(db_session)
    await admin.ensure_permission_catalog()

    first = await admin.ensure_default_roles(org.id)
    second = await admin.ensure_default_roles(org.id)

    assert [role.key for role in first] == sorted(DEFAULT_ROLES)
    assert [role.id for role in first] == [role.id for role in second]
    for key in DEFAULT_ROLES:
        assert await _role_count(db_session, org.id, key) == 1


@pytest.mark.asyncio
async def test_ensure_default_roles_concurrently(session_factory, db_session) -> None:
    org = await make_organization(db_session)

    async def ensure() -> list[str]:
        async with session_factory() as session:
            return [role.id for role in await AccessAdministration(session).ensure_default_roles(org.id)]

    results = await asyncio.gather(*(ensure() for _ in range(5)))

    assert all(result == results[0] for result in results)
    for key in DEFAULT_ROLES:
        assert await _role_count(db_session, org.id, key) == 1


@pytest.mark.asyncio
async def test_losing_default_role_insert_is_success(session_factory, db_session) -> None:
    """A writer that finds the roles already there creates nothing and does not fail."""
    org = await make_organization(db_session)
    await AccessAdministration(db_session).ensure_default_roles(org.id)

    async with session_factory() as session:
        created = await AccessAdministration(session)._ensure_default_roles(org.id)
        await session.commit()

    assert created == []
    for key in DEFAULT_ROLES:
        assert await _role_count(db_session, org.id, key) == 1


@pytest.mark.asyncio
async def test_default_roles_receive_catalog_grants(db_session) -> None:
    org = await make_organization(db_session)
    admin = AccessAdministration(db_session)
    await admin.ensure_permission_catalog()
    await admin.ensure_default_roles(org.id)

    owner = await store.get_role_by_key(db_session, org.id, "owner")
    admin_role = await store.get_role_by_key(db_session, org.id, "admin")
    member = await store.get_role_by_key(db_session, org.id, "member")
    catalog_keys = {key for key, _ in PERMISSION_CATALOG}

    async def granted(role) -> set[str]:
        return {permission.key for permission in await store.get_role_permissions(db_session, role.id, org.id)}

    assert await granted(owner) == catalog_keys
    assert await granted(admin_role) == catalog_keys - ADMIN_EXCLUDED_PERMISSIONS
    assert await granted(member) == set()


@pytest.mark.asyncio
async def test_create_organization_with_owner(db_session) -> None:
    owner = await make_user(db_session)
    admin = AccessAdministration(db_session)
    await admin.ensure_permission_catalog()

    org = await admin.create_organization("Acme", "acme", owner_user_id=owner.id)

    decision = await PermissionResolver(db_session).resolve(owner.id, org.id, "billing.subscriptions.manage")
    assert decision.granted
    assert [role.key for role in await store.list_roles(db_session, org.id)] == sorted(DEFAULT_ROLES)


@pytest.mark.asyncio
async def test_failed_mutation_leaves_no_partial_state(db_session) -> None:
    admin = AccessAdministration(db_session)

    with pytest.raises(EntityNotFoundError):
        await admin.create_organization("Ghost", "ghost", owner_user_id="01HZZZZZZZZZZZZZZZZZZZZZZZ")

    assert await store.get_organization_by_slug(db_session, "ghost") is None


@pytest.mark.asyncio
async def test_mutations_are_audited(db_session) -> None:
    org = await make_organization(db_session)
    actor = await make_user(db_session)
    admin = AccessAdministration(db_session, actor_id=actor.id)

    role = await admin.create_role(org.id, "support", "Support")
    await admin.delete_role(role.id, org.id)

    result = await db_session.execute(
        select(AuditLog.action).where(AuditLog.resource_id == role.id).order_by(AuditLog.created_at)
    )
    assert sorted(result.scalars().all()) == ["create", "delete"]


@pytest.mark.asyncio
async def test_ensure_permission_is_idempotent(db_session) -> None:
    admin = AccessAdministration(db_session)

    first = await admin.ensure_permission("reports.view", "View Reports")
    second = await admin.ensure_permission("reports.view", "Other name")

    assert first.id == second.id
    assert second.name == "View Reports"


@pytest.mark.asyncio
async def test_concurrent_role_assignment_writes_one_row(session_factory, db_session) -> None:
    org = await make_organization(db_session)
    user = await make_user(db_session)
    membership = await make_membership(db_session, user, org)
    role = await make_role(db_session, org, "viewer", ["users.view"])

    async def attach() -> bool:
        async with session_factory() as session:
            return await AccessAdministration(session).attach_role_to_membership(membership.id, role.id)

    results = await asyncio.gather(*(attach() for _ in range(4)))

    assert sorted(results) == [False, False, False, True]
    assert await store.count_membership_role_rows(db_session, membership.id) == 1
    audited = await db_session.scalar(
        select(func.count()).select_from(AuditLog).where(
            AuditLog.action == "assign_role", AuditLog.resource_id == membership.id
        )
    )
    assert audited == 1


@pytest.mark.asyncio
async def test_concurrent_permission_attach_reports_one_change(session_factory, db_session) -> None:
    org = await make_organization(db_session)
    await make_permissions(db_session, ["documents.view"])
    role = await make_role(db_session, org, "docs")

    async def attach() -> bool:
        async with session_factory() as session:
            return await AccessAdministration(session).attach_permission_to_role(role.id, "documents.view", org.id)

    results = await asyncio.gather(*(attach() for _ in range(4)))

    assert results.count(True) == 1
    assert await store.count_role_permission_rows(db_session, role.id) == 1


@pytest.mark.asyncio
async def test_concurrent_add_member_creates_one_membership(session_factory, db_session) -> None:
    org = await make_organization(db_session)
    user = await make_user(db_session)

    async def add() -> str:
        async with session_factory() as session:
            return (await AccessAdministration(session).add_member(user.id, org.id)).id

    ids = await asyncio.gather(*(add() for _ in range(4)))

    assert len(set(ids)) == 1
    rows = await db_session.scalar(
        select(func.count()).select_from(Membership).where(
            Membership.user_id == user.id, Membership.organization_id == org.id
        )
    )
    assert rows == 1
    audited = await db_session.scalar(
        select(func.count()).select_from(AuditLog).where(AuditLog.action == "add_member")
    )
    assert audited == 1


@pytest.mark.asyncio
async def test_default_role_locks_are_released(db_session) -> None:
    org = await make_organization(db_session)

    await AccessAdministration(db_session).ensure_default_roles(org.id)
    gc.collect()

    assert org.id not in service._default_role_locks


@pytest.mark.asyncio
async def test_mutations_from_other_sessions_are_seen_at_once(session_factory, db_session) -> None:
    org = await make_organization(db_session)
    user = await make_user(db_session)
    membership = await make_membership(db_session, user, org)
    await make_permissions(db_session, ["documents.edit"])
    role = await make_role(db_session, org, "editor", ["documents.view"])
    await assign_role(db_session, membership, role)
    resolver = PermissionResolver(db_session)

    assert not (await resolver.resolve(user.id, org.id, "documents.edit")).granted

    async with session_factory() as session:
        await AccessAdministration(session).attach_permission_to_role(role.id, "documents.edit", org.id)
    assert (await resolver.resolve(user.id, org.id, "documents.edit")).granted

    async with session_factory() as session:
        await AccessAdministration(session).deactivate_membership(membership.id)
    decision = await resolver.resolve(user.id, org.id, "documents.edit")
    assert decision.reason == DecisionReason.NOT_A_MEMBER


@pytest.mark.asyncio
async def test_membership_grants_load_in_one_query(engine, db_session) -> None:
    org = await make_organization(db_session)
    user = await make_user(db_session)
    membership = await make_membership(db_session, user, org)
    viewer = await make_role(db_session, org, "viewer", ["users.view"])
    editor = await make_role(db_session, org, "editor", ["documents.edit", "users.view"])
    empty = await make_role(db_session, org, "empty")
    for role in (viewer, editor, empty):
        await assign_role(db_session, membership, role)

    statements = []

    def count(*_args) -> None:
        statements.append(1)

    event.listen(engine.sync_engine, "before_cursor_execute", count)
    try:
        grants = await PermissionResolver(db_session).membership_grants(membership)
    finally:
        event.remove(engine.sync_engine, "before_cursor_execute", count)

    assert len(statements) == 1
    assert grants.role_ids == {viewer.id, editor.id, empty.id}
    assert grants.permission_keys == {"documents.edit", "users.view"}


@pytest.mark.asyncio
async def test_role_permissions_are_scoped_to_organization(db_session) -> None:
    org = await make_organization(db_session)
    other_org = await make_organization(db_session)
    role = await make_role(db_session, org, "editor", ["documents.view", "documents.edit"])

    permissions = await store.get_role_permissions(db_session, role.id, org.id)

    assert [permission.key for permission in permissions] == ["documents.edit", "documents.view"]
    assert await store.get_role_permissions(db_session, role.id, other_org.id) == []


def test_models_expose_no_orm_relationships() -> None:
    for model in (User, Organization, Membership, Role, Permission):
        assert list(inspect(model).relationships) == []
