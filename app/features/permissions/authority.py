"""
Permission Authority: per-user capability grants.

Answers single, all-of and any-of permission queries and owns every grant
mutation. `replace_all` is the only multi-row mutation and runs in a single
transaction so a user never ends up with a half-applied grant set.
"""
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from sqlalchemy import select, delete, insert, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.core.database.engine import transaction
from app.core.errors import NotFoundError, UnknownPermissionError
from app.features.permissions.catalog import BASIC_PERMISSIONS, PermissionName, permission_key
from app.features.permissions.models import Permission, user_permissions
from app.features.users.models import User
from app.utils import get_logger, utcnow


log = get_logger(__name__)

PermissionRef = Union[str, PermissionName]


class PermissionAuthority:
    """Grant queries and mutations for one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_grants(self, user_id: str) -> Set[str]:
        """Names of every permission granted to the user; empty for unknown users."""
        stmt = (
            select(Permission.name)
            .join(user_permissions, user_permissions.c.permission_id == Permission.id)
            .where(user_permissions.c.user_id == user_id)
        )
        result = await self.db.execute(stmt)
        return set(result.scalars().all())

    async def has_permission(self, user_id: str, name: PermissionRef) -> bool:
        stmt = (
            select(func.count())
            .select_from(user_permissions)
            .join(Permission, Permission.id == user_permissions.c.permission_id)
            .where(
                and_(
                    user_permissions.c.user_id == user_id,
                    Permission.name == permission_key(name),
                )
            )
        )
        count = await self.db.scalar(stmt)
        return bool(count)

    async def has_all(self, user_id: str, names: Iterable[PermissionRef]) -> bool:
        """True if the user holds every name. An empty requirement is always met."""
        required = [permission_key(name) for name in names]
        if not required:
            return True
        granted = await self.get_grants(user_id)
        return all(name in granted for name in required)

    async def has_any(self, user_id: str, names: Iterable[PermissionRef]) -> bool:
        """True if the user holds at least one name. An empty requirement is always met."""
        required = [permission_key(name) for name in names]
        if not required:
            return True
        granted = await self.get_grants(user_id)
        return any(name in granted for name in required)

    async def list_grants_detailed(self, user_id: str) -> List[Dict[str, Any]]:
        granter = aliased(User)
        stmt = (
            select(
                Permission.id,
                Permission.name,
                Permission.description,
                user_permissions.c.granted_at,
                user_permissions.c.granted_by_id,
                granter.rank,
                granter.full_name,
            )
            .join(user_permissions, user_permissions.c.permission_id == Permission.id)
            .outerjoin(granter, granter.id == user_permissions.c.granted_by_id)
            .where(user_permissions.c.user_id == user_id)
            .order_by(Permission.name)
        )
        result = await self.db.execute(stmt)
        grants = []
        for row in result:
            granted_by_name = None
            if row.full_name is not None:
                granted_by_name = f"{row.rank} {row.full_name}".strip()
            grants.append({
                "id": row.id,
                "name": row.name,
                "description": row.description,
                "granted_at": row.granted_at,
                "granted_by_id": row.granted_by_id,
                "granted_by_name": granted_by_name,
            })
        return grants

    async def list_users_with_grants(self) -> List[Dict[str, Any]]:
        """One entry per user with the names of all permissions it holds."""
        stmt = (
            select(
                User.id,
                User.username,
                User.rank,
                User.full_name,
                User.is_active,
                User.created_at,
                Permission.name.label("permission_name"),
            )
            .outerjoin(user_permissions, user_permissions.c.user_id == User.id)
            .outerjoin(Permission, Permission.id == user_permissions.c.permission_id)
            .order_by(User.rank, User.full_name, User.id, Permission.name)
        )
        result = await self.db.execute(stmt)

        users: Dict[str, Dict[str, Any]] = {}
        for row in result:
            entry = users.get(row.id)
            if entry is None:
                entry = users[row.id] = {
                    "user_id": row.id,
                    "username": row.username,
                    "rank": row.rank,
                    "full_name": row.full_name,
                    "is_active": row.is_active,
                    "created_at": row.created_at,
                    "permissions": [],
                }
            if row.permission_name is not None:
                entry["permissions"].append(row.permission_name)
        return list(users.values())

    # ========================================================================
    # Mutations
    # ========================================================================

    async def _require_user(self, user_id: str) -> None:
        found = await self.db.scalar(select(User.id).where(User.id == user_id))
        if found is None:
            raise NotFoundError("User not found")

    async def _permission_id(self, name: PermissionRef) -> str:
        key = permission_key(name)
        permission_id = await self.db.scalar(select(Permission.id).where(Permission.name == key))
        if permission_id is None:
            raise UnknownPermissionError(key)
        return permission_id

    async def _insert_grant(self, user_id: str, permission_id: str, granted_by: Optional[str]) -> bool:
        existing = await self.db.execute(
            select(user_permissions.c.user_id).where(
                and_(
                    user_permissions.c.user_id == user_id,
                    user_permissions.c.permission_id == permission_id,
                )
            )
        )
        if existing.first():
            return False

        await self.db.execute(
            insert(user_permissions).values(
                user_id=user_id,
                permission_id=permission_id,
                granted_by_id=granted_by,
                granted_at=utcnow(),
            )
        )
        return True

    async def apply_grants(
        self, user_id: str, names: Iterable[PermissionRef], granted_by: Optional[str]
    ) -> int:
        """
        Insert grants for `names` inside the caller's transaction.

        Does not commit. Raises UnknownPermissionError on the first name
        missing from the catalog, leaving rollback to the caller.

        Returns:
            Number of grants actually inserted
        """
        inserted = 0
        for name in dict.fromkeys(permission_key(n) for n in names):
            permission_id = await self._permission_id(name)
            if await self._insert_grant(user_id, permission_id, granted_by):
                inserted += 1
        return inserted

    async def grant(self, user_id: str, name: PermissionRef, granted_by: Optional[str]) -> bool:
        """
        Grant one permission. Granting an already held permission is a no-op.

        Returns:
            True if a new grant row was written

        Raises:
            UnknownPermissionError: name is not in the catalog
            NotFoundError: user does not exist
        """
        await self._require_user(user_id)
        permission_id = await self._permission_id(name)

        async with transaction(self.db, "grant_permission", user_id=user_id, permission=permission_key(name)):
            inserted = await self._insert_grant(user_id, permission_id, granted_by)

        if inserted:
            log.info("Granted %s to user %s (by %s)", permission_key(name), user_id, granted_by)
        return inserted

    async def grant_many(self, user_id: str, names: Iterable[PermissionRef], granted_by: Optional[str]) -> bool:
        """
        Grant each name independently, continuing past unknown names.

        Returns:
            True if every requested permission is held afterwards
        """
        ok = True
        for name in names:
            try:
                await self.grant(user_id, name, granted_by)
            except UnknownPermissionError as e:
                log.warning("Skipping grant to user %s: %s", user_id, e.message)
                ok = False
        return ok

    async def grant_basic(self, user_id: str, granted_by: Optional[str]) -> bool:
        return await self.grant_many(user_id, BASIC_PERMISSIONS, granted_by)

    async def grant_all(self, user_id: str, granted_by: Optional[str]) -> int:
        """Grant every cataloged permission. Returns the number newly granted."""
        await self._require_user(user_id)
        result = await self.db.execute(select(Permission.name))
        names = list(result.scalars().all())

        async with transaction(self.db, "grant_all_permissions", user_id=user_id):
            inserted = await self.apply_grants(user_id, names, granted_by)

        log.info("Granted %d permissions to user %s", inserted, user_id)
        return inserted

    async def revoke(self, user_id: str, name: PermissionRef) -> bool:
        """
        Remove one grant.

        Returns:
            True if a grant row was removed; False if the user did not hold it
            or the name is unknown
        """
        permission_ids = select(Permission.id).where(Permission.name == permission_key(name))
        async with transaction(self.db, "revoke_permission", user_id=user_id, permission=permission_key(name)):
            result = await self.db.execute(
                delete(user_permissions).where(
                    and_(
                        user_permissions.c.user_id == user_id,
                        user_permissions.c.permission_id.in_(permission_ids),
                    )
                )
            )

        removed = result.rowcount > 0
        if removed:
            log.info("Revoked %s from user %s", permission_key(name), user_id)
        return removed

    async def revoke_many(self, user_id: str, names: Iterable[PermissionRef]) -> bool:
        """
        Revoke each name independently.

        Returns True if at least one grant was removed, even when others were
        not held. Names that removed nothing are logged.
        """
        missed = []
        removed_any = False
        for name in names:
            if await self.revoke(user_id, name):
                removed_any = True
            else:
                missed.append(permission_key(name))
        if missed:
            log.warning("Revoke from user %s removed nothing for %s", user_id, missed)
        return removed_any

    async def replace_all(self, user_id: str, names: Iterable[PermissionRef], granted_by: Optional[str]) -> None:
        """
        Replace the user's whole grant set with `names`.

        Delete and inserts share one transaction: if any name is unknown or a
        write fails, the previous grant set is left untouched.

        Raises:
            UnknownPermissionError: a name is not in the catalog
            NotFoundError: user does not exist
        """
        requested = list(dict.fromkeys(permission_key(n) for n in names))
        await self._require_user(user_id)

        async with transaction(self.db, "replace_permissions", user_id=user_id, permissions=requested):
            await self.db.execute(
                delete(user_permissions).where(user_permissions.c.user_id == user_id)
            )
            await self.apply_grants(user_id, requested, granted_by)

        log.info("Replaced permissions of user %s with %s (by %s)", user_id, requested, granted_by)
