"""
Permission catalog: well-known names, default seed data and catalog administration.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, delete, func, distinct
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import transaction
from app.core.errors import ConflictError, NotFoundError
from app.features.permissions.models import Permission, user_permissions
from app.utils import get_logger


log = get_logger(__name__)


class PermissionName(str, Enum):
    """Permissions the application checks by name. The catalog may hold more."""
    VIEW_DASHBOARD = "view_dashboard"
    CREATE_SIGNOUT = "create_signout"
    EDIT_SIGNOUT = "edit_signout"
    DELETE_SIGNOUT = "delete_signout"
    SIGN_IN_SOLDIERS = "sign_in_soldiers"
    VIEW_LOGS = "view_logs"
    EXPORT_DATA = "export_data"
    MANAGE_USERS = "manage_users"
    MANAGE_PERMISSIONS = "manage_permissions"
    VIEW_SETTINGS = "view_settings"
    CHANGE_USER_PINS = "change_user_pins"
    SYSTEM_ADMIN = "system_admin"


DEFAULT_PERMISSIONS = [
    (PermissionName.VIEW_DASHBOARD, "View the main dashboard and current sign-outs"),
    (PermissionName.CREATE_SIGNOUT, "Create new sign-out entries"),
    (PermissionName.EDIT_SIGNOUT, "Edit existing sign-out entries"),
    (PermissionName.DELETE_SIGNOUT, "Delete sign-out entries"),
    (PermissionName.SIGN_IN_SOLDIERS, "Sign soldiers back in"),
    (PermissionName.VIEW_LOGS, "View sign-out logs and history"),
    (PermissionName.EXPORT_DATA, "Export data to CSV/PDF formats"),
    (PermissionName.MANAGE_USERS, "Create, edit, and delete user accounts"),
    (PermissionName.MANAGE_PERMISSIONS, "Grant and revoke user permissions"),
    (PermissionName.VIEW_SETTINGS, "View system settings"),
    (PermissionName.CHANGE_USER_PINS, "Change other users' PINs"),
    (PermissionName.SYSTEM_ADMIN, "Full system administration access"),
]

# Granted to every newly created user
BASIC_PERMISSIONS = [
    PermissionName.VIEW_DASHBOARD,
    PermissionName.CREATE_SIGNOUT,
    PermissionName.SIGN_IN_SOLDIERS,
    PermissionName.VIEW_LOGS,
]


def permission_key(name: Union[str, PermissionName]) -> str:
    """Normalize an enum member or raw string to the stored name."""
    if isinstance(name, PermissionName):
        return name.value
    return name


class PermissionCatalog:
    """Reads and administers the `permissions` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def seed_defaults(self) -> int:
        """
        Insert any default permission missing from the catalog.

        Idempotent; all inserts share one transaction.

        Returns:
            Number of permissions inserted
        """
        result = await self.db.execute(select(Permission.name))
        existing = set(result.scalars().all())
        missing = [
            Permission(name=name.value, description=description)
            for name, description in DEFAULT_PERMISSIONS
            if name.value not in existing
        ]
        if not missing:
            log.debug("Permission catalog already seeded")
            return 0

        async with transaction(self.db, "seed_permissions", count=len(missing)):
            self.db.add_all(missing)

        log.info("Seeded %d default permissions", len(missing))
        return len(missing)

    async def list_all(self) -> List[Permission]:
        result = await self.db.execute(select(Permission).order_by(Permission.name))
        return list(result.scalars().all())

    async def get_by_name(self, name: Union[str, PermissionName]) -> Optional[Permission]:
        result = await self.db.execute(
            select(Permission).where(Permission.name == permission_key(name))
        )
        return result.scalar_one_or_none()

    async def get(self, permission_id: str) -> Permission:
        result = await self.db.execute(select(Permission).where(Permission.id == permission_id))
        permission = result.scalar_one_or_none()
        if permission is None:
            raise NotFoundError("Permission not found")
        return permission

    async def create(self, name: str, description: Optional[str] = None) -> Permission:
        if await self.get_by_name(name) is not None:
            raise ConflictError("Permission with this name already exists")

        permission = Permission(name=name, description=description)
        async with transaction(self.db, "create_permission", name=name):
            self.db.add(permission)
        await self.db.refresh(permission)

        log.info("Created permission %s", name)
        return permission

    async def update(self, permission_id: str, name: str, description: Optional[str]) -> Permission:
        permission = await self.get(permission_id)
        if name != permission.name:
            clash = await self.get_by_name(name)
            if clash is not None:
                raise ConflictError("Permission with this name already exists")

        async with transaction(self.db, "update_permission", permission_id=permission_id):
            permission.name = name
            permission.description = description
        await self.db.refresh(permission)

        log.info("Updated permission %s", permission_id)
        return permission

    async def delete(self, permission_id: str) -> None:
        """Delete a permission together with every grant of it."""
        permission = await self.get(permission_id)
        name = permission.name

        async with transaction(self.db, "delete_permission", permission_id=permission_id):
            await self.db.execute(
                delete(user_permissions).where(user_permissions.c.permission_id == permission_id)
            )
            await self.db.delete(permission)

        log.info("Deleted permission %s (%s)", permission_id, name)

    async def stats(self) -> Dict[str, Any]:
        total_permissions = await self.db.scalar(select(func.count()).select_from(Permission))
        total_grants = await self.db.scalar(select(func.count()).select_from(user_permissions))
        users_with_grants = await self.db.scalar(
            select(func.count(distinct(user_permissions.c.user_id)))
        )

        user_count = func.count(user_permissions.c.user_id).label("user_count")
        stmt = (
            select(Permission.name, Permission.description, user_count)
            .outerjoin(user_permissions, user_permissions.c.permission_id == Permission.id)
            .group_by(Permission.id, Permission.name, Permission.description)
            .order_by(user_count.desc(), Permission.name)
            .limit(10)
        )
        result = await self.db.execute(stmt)
        most_common = [
            {"name": row.name, "description": row.description, "user_count": row.user_count}
            for row in result
        ]

        return {
            "total_permissions": total_permissions or 0,
            "total_grants": total_grants or 0,
            "users_with_grants": users_with_grants or 0,
            "most_common_permissions": most_common,
        }
