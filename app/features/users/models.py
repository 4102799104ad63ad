"""
User model with ULID primary keys.
"""
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, ULIDPrimaryKeyMixin


class User(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    Global user identity.

    Users are not scoped to an organization; they join organizations through
    memberships. `is_super_admin` is a platform-wide override that is honored
    only by the permission resolver.
    """
    __tablename__ = "users"

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_super_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, super_admin={self.is_super_admin})>"
