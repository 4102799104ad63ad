"""
SQLAlchemy declarative base and common model utilities.

All entitlement models inherit from Base and use ULID string keys.
"""
from datetime import datetime
from sqlalchemy import DateTime, MetaData, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import ulid


# Stable constraint names, so IntegrityErrors can be matched to the constraint that failed
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ulid.new())


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Usage:
        from app.core.database.base import Base, ULIDPrimaryKeyMixin

        class Organization(Base, ULIDPrimaryKeyMixin):
            __tablename__ = "organizations"

            name: Mapped[str] = mapped_column(String(255))
    """
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class ULIDPrimaryKeyMixin:
    """26-character ULID primary key."""
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamps to models.

    Usage:
        class User(Base, ULIDPrimaryKeyMixin, TimestampMixin):
            __tablename__ = "users"
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
