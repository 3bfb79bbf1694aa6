"""
Seed script to create the first superAdmin user.

Run once (after schema_check) with env set:
  SUPER_ADMIN_USERNAME=superadmin
  SUPER_ADMIN_PASSWORD=YourSecurePassword
  SUPER_ADMIN_EMAIL=admin@youracademy.com

Creates:
- users: one active superAdmin without a branch (if username is not taken)

Re-running is a no-op when the user already exists; the password is never reset.
"""
import asyncio
import logging

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.models import User
from academy.auth.security import hash_password
from academy.core.config import settings
from academy.core.enums import Role
from academy.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)

DEFAULT_SUPER_ADMIN_USERNAME = "superadmin"
DEFAULT_SUPER_ADMIN_EMAIL = "superadmin@academy.local"
DEFAULT_SUPER_ADMIN_FULL_NAME = "Super Admin"
DEFAULT_SUPER_ADMIN_NIC = "000000000V"
DEFAULT_SUPER_ADMIN_CONTACT = "+94000000000"


async def seed_super_admin(db: AsyncSession) -> bool:
    """Create the superAdmin if missing. Returns True when a user was created."""
    username = (settings.super_admin_username or DEFAULT_SUPER_ADMIN_USERNAME).strip().lower()
    email = (settings.super_admin_email or DEFAULT_SUPER_ADMIN_EMAIL).strip().lower()
    password = settings.super_admin_password
    if not password:
        logger.warning("SUPER_ADMIN_PASSWORD not set; skipping superAdmin seed.")
        return False

    existing = await db.execute(select(User).where(or_(User.username == username, User.email == email)))
    user = existing.scalars().first()
    if user is not None:
        logger.info("User %s already exists (role=%s); nothing to seed.", user.username, user.role)
        return False

    db.add(
        User(
            full_name=DEFAULT_SUPER_ADMIN_FULL_NAME,
            nic_or_passport=DEFAULT_SUPER_ADMIN_NIC,
            contact_number=DEFAULT_SUPER_ADMIN_CONTACT,
            email=email,
            username=username,
            password_hash=hash_password(password),
            role=Role.SUPER_ADMIN.value,
            branch_id=None,
        )
    )
    await db.commit()
    logger.info("Created superAdmin user: %s", username)
    return True


async def main() -> None:
    async with AsyncSessionLocal() as db:
        try:
            await seed_super_admin(db)
        except Exception:
            await db.rollback()
            logger.exception("SuperAdmin seed failed")
            raise


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(main())
