"""
Seed script to populate the permission vocabulary and default roles.

Run this script after database initialization to create:
- Every permission key of the catalog
- The owner/admin/member roles in every existing organization
- Optionally, a super-admin user and a demo organization owned by them

Usage:
    uv run python -m scripts.seed_permissions
    uv run python -m scripts.seed_permissions --super-admin-email root@example.com --demo-org demo
"""
import argparse
import asyncio
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions import store
from app.features.permissions.service import AccessAdministration
from app.features.users.models import User
from app.utils import get_logger, setup_logging


log = get_logger(__name__)


async def seed_super_admin(db: AsyncSession, email: str) -> User:
    """Create the super-admin user, or promote an existing user with that email."""
    user = await store.get_user_by_email(db, email)
    if user is None:
        user = User(email=email, name="Super Admin", is_super_admin=True)
        db.add(user)
        log.info(f"Created super-admin user: {email}")
    elif not user.is_super_admin:
        user.is_super_admin = True
        log.info(f"Promoted {email} to super-admin")
    else:
        log.debug(f"Super-admin '{email}' already exists, skipping")
    await db.commit()
    return user


async def seed_demo_organization(db: AsyncSession, slug: str, owner: Optional[User]) -> None:
    if await store.get_organization_by_slug(db, slug) is not None:
        log.debug(f"Organization '{slug}' already exists, skipping")
        return
    admin = AccessAdministration(db, actor_id=owner.id if owner else None)
    organization = await admin.create_organization(
        name=slug.replace("-", " ").title(),
        slug=slug,
        owner_user_id=owner.id if owner else None,
    )
    log.info(f"Created demo organization '{slug}' ({organization.id})")


async def seed(db: AsyncSession, super_admin_email: Optional[str] = None, demo_org: Optional[str] = None) -> None:
    admin = AccessAdministration(db)

    # Vocabulary first; default role grants are drawn from it
    created = await admin.ensure_permission_catalog()
    log.info(f"Permission catalog: {created} new keys")

    for organization_id in await store.list_organization_ids(db):
        await admin.ensure_default_roles(organization_id)

    owner = await seed_super_admin(db, super_admin_email) if super_admin_email else None
    if demo_org:
        await seed_demo_organization(db, demo_org, owner)


async def main(super_admin_email: Optional[str] = None, demo_org: Optional[str] = None):
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            await seed(db, super_admin_email, demo_org)
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info("Permission seeding completed successfully!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed permissions and default roles")
    parser.add_argument("--super-admin-email", help="Create or promote this user to super-admin")
    parser.add_argument("--demo-org", help="Slug of a demo organization to create")
    args = parser.parse_args()

    setup_logging(config.LOG_LEVEL)
    asyncio.run(main(args.super_admin_email, args.demo_org))
