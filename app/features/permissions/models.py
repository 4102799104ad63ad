"""
Role and Permission models for organization-scoped RBAC.

- Permissions are a global vocabulary of capability keys (e.g. `hr.employees.view`)
- Roles belong to exactly one organization and are unique by (organization_id, key)
- role_permissions says what a role can do
- membership_roles says which roles a member holds inside their organization
"""
from typing import Any, Dict
from sqlalchemy import (
    String, ForeignKey, ForeignKeyConstraint, Table, Column, JSON, Text, DateTime, Boolean,
    UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, ULIDPrimaryKeyMixin
from app.features.users.models import User  # noqa: F401
from app.features.organizations.models import Organization, Membership  # noqa: F401


# ============================================================================
# Association Tables
# ============================================================================

role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

# organization_id is copied from the role; the composite foreign key into
# roles(id, organization_id) rejects rows that point at another tenant's role.
membership_roles = Table(
    "membership_roles",
    Base.metadata,
    Column("membership_id", String(26), ForeignKey("memberships.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(26), primary_key=True),
    Column("organization_id", String(26), nullable=False, index=True),
    Column("assigned_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("assigned_by_id", String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    ForeignKeyConstraint(
        ["role_id", "organization_id"],
        ["roles.id", "roles.organization_id"],
        ondelete="CASCADE",
        name="fk_membership_roles_role_org",
    ),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    A single capability, identified by a globally unique key.

    Permissions are not organization-scoped; which roles grant them is.
    """
    __tablename__ = "permissions"

    key: Mapped[str] = mapped_column(String(150), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, key={self.key!r})>"


class Role(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    Organization-local bundle of permissions.

    Examples: owner, admin, member, hr-manager
    """
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("organization_id", "key"),
        # Target of the composite foreign key from membership_roles
        UniqueConstraint("id", "organization_id", name="uq_roles_id_organization_id"),
    )

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Default roles materialized by ensure_default_roles
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, key={self.key!r}, org_id={self.organization_id})>"


class AuditLog(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    Audit trail for access-control mutations.

    Tracks who did what, when, and in which organization.
    """
    __tablename__ = "audit_logs"

    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Context
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
