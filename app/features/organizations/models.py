"""
Organization and membership models.

Organizations are the tenant boundary. A user joins an organization through
exactly one Membership; only active memberships take part in authorization.
"""
from sqlalchemy import String, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, ULIDPrimaryKeyMixin


class Organization(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    Organization (tenant).

    Roles and memberships belong to exactly one organization.
    """
    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    # Organization settings
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug={self.slug!r})>"


class Membership(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    A user's membership in an organization.

    Deactivating a membership keeps its role assignments for history, but the
    resolver ignores them while `is_active` is false.
    """
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id"),
    )

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Membership(id={self.id}, user_id={self.user_id}, "
            f"org_id={self.organization_id}, active={self.is_active})>"
        )
