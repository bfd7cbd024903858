"""
Seed script to populate the permission catalog, settings and bootstrap administrator.

Run this script after configuring the database to create:
- The default permission catalog
- The default overdue thresholds
- The administrator from ADMIN_USERNAME / ADMIN_PASSWORD / ADMIN_PIN, if set

Usage:
    python -m scripts.seed_permissions
"""
import asyncio

from app.core.database.engine import get_db, init_db
from app.features.permissions.catalog import DEFAULT_PERMISSIONS, PermissionCatalog
from app.features.settings.service import SystemSettings
from app.features.users.service import UserService
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    """Create tables, seed permissions and bootstrap the administrator."""
    log.info("Starting permission seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        inserted = await PermissionCatalog(db).seed_defaults()
        log.info("Seeded %d of %d default permissions", inserted, len(DEFAULT_PERMISSIONS))
        await SystemSettings(db).seed_defaults()

        admin = await UserService(db).ensure_admin()
        if admin is None:
            log.info("No administrator created (ADMIN_* unset or user exists)")

        log.info("Permission seeding completed successfully!")
        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
