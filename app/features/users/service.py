"""
User administration: accounts, credentials and activation state.
"""
from typing import Iterable, List, Optional, Union

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from app.core import config
from app.core.database.engine import transaction
from app.core.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from app.features.permissions.authority import PermissionAuthority
from app.features.permissions.catalog import BASIC_PERMISSIONS, PermissionName
from app.features.permissions.models import Permission
from app.features.signouts.models import SignoutEntry
from app.features.users.auth import CredentialVerifier, check_secret, hash_secret
from app.features.users.models import User
from app.utils import get_logger, utcnow


log = get_logger(__name__)

DELETED_USER_SUFFIX = " (deleted user)"


def protected_username() -> str:
    return config.ADMIN_USERNAME or "admin"


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: str) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def get_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def list_users(self, active_only: bool = False) -> List[User]:
        stmt = select(User).order_by(User.rank, User.full_name)
        if active_only:
            stmt = stmt.where(User.is_active == True)  # noqa: E712
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def authenticate(self, username: str, password: str) -> User:
        """Check username and password and stamp the login time."""
        user = await self.get_by_username(username)
        if user is None or not user.is_active:
            raise AuthenticationError("Invalid username or password")
        if not await run_in_threadpool(check_secret, password, user.password_hash):
            raise AuthenticationError("Invalid username or password")

        user.last_login_at = utcnow()
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def create_user(
        self,
        username: str,
        password: str,
        pin: str,
        rank: str,
        full_name: str,
        created_by: Optional[str],
        permissions: Iterable[Union[str, PermissionName]] = BASIC_PERMISSIONS,
    ) -> User:
        """
        Create a user and its initial grants in one transaction.

        Raises:
            ConflictError: username is taken
            UnknownPermissionError: an initial permission is not cataloged
        """
        if await self.get_by_username(username) is not None:
            raise ConflictError("A user with this username already exists")

        password_hash = await run_in_threadpool(hash_secret, password)
        pin_hash = await run_in_threadpool(hash_secret, pin)
        user = User(
            username=username,
            rank=rank,
            full_name=full_name,
            password_hash=password_hash,
            pin_hash=pin_hash,
        )

        async with transaction(self.db, "create_user", username=username):
            self.db.add(user)
            await self.db.flush()
            await PermissionAuthority(self.db).apply_grants(user.id, permissions, created_by)
        await self.db.refresh(user)

        log.info("Created user %s (%s)", user.id, username)
        return user

    async def change_own_pin(self, user_id: str, current_pin: str, new_pin: str) -> None:
        if not await CredentialVerifier(self.db).verify_pin(user_id, current_pin):
            raise AuthenticationError("Current PIN is incorrect")
        await self.set_pin(user_id, new_pin)

    async def set_pin(self, user_id: str, new_pin: str) -> None:
        user = await self.get(user_id)
        pin_hash = await run_in_threadpool(hash_secret, new_pin)
        async with transaction(self.db, "set_pin", user_id=user_id):
            user.pin_hash = pin_hash
        log.info("PIN changed for user %s", user_id)

    async def set_active(self, user_id: str, is_active: bool) -> User:
        user = await self.get(user_id)
        async with transaction(self.db, "set_user_status", user_id=user_id, is_active=is_active):
            user.is_active = is_active
        await self.db.refresh(user)
        log.info("User %s %s", user_id, "activated" if is_active else "deactivated")
        return user

    async def delete_user(self, user_id: str) -> str:
        """
        Remove a user while keeping sign-out history readable.

        Sign-out rows keep the user id; the stored display names get
        " (deleted user)" appended once. A user referenced by sign-outs is only
        deactivated and may be deleted again without a second annotation;
        otherwise the row is deleted and its grants cascade.

        Returns:
            "deactivated" or "deleted"
        """
        user = await self.get(user_id)
        if user.username == protected_username():
            raise ValidationError("Cannot delete admin user")

        referenced = await self.db.scalar(
            select(func.count())
            .select_from(SignoutEntry)
            .where(
                or_(
                    SignoutEntry.signed_out_by_id == user_id,
                    SignoutEntry.signed_in_by_id == user_id,
                )
            )
        )

        async with transaction(self.db, "delete_user", user_id=user_id):
            await self.db.execute(
                update(SignoutEntry)
                .where(
                    SignoutEntry.signed_out_by_id == user_id,
                    ~SignoutEntry.signed_out_by_name.endswith(DELETED_USER_SUFFIX, autoescape=True),
                )
                .values(signed_out_by_name=SignoutEntry.signed_out_by_name + DELETED_USER_SUFFIX)
                .execution_options(synchronize_session="fetch")
            )
            await self.db.execute(
                update(SignoutEntry)
                .where(
                    SignoutEntry.signed_in_by_id == user_id,
                    ~SignoutEntry.signed_in_by_name.endswith(DELETED_USER_SUFFIX, autoescape=True),
                )
                .values(signed_in_by_name=SignoutEntry.signed_in_by_name + DELETED_USER_SUFFIX)
                .execution_options(synchronize_session="fetch")
            )
            if referenced:
                user.is_active = False
                outcome = "deactivated"
            else:
                await self.db.delete(user)
                outcome = "deleted"

        log.info("User %s %s", user_id, outcome)
        return outcome

    async def ensure_admin(self) -> Optional[User]:
        """Create the configured bootstrap administrator with every permission."""
        if not (config.ADMIN_USERNAME and config.ADMIN_PASSWORD and config.ADMIN_PIN):
            return None
        if await self.get_by_username(config.ADMIN_USERNAME) is not None:
            return None

        result = await self.db.execute(select(Permission.name))
        all_permissions = list(result.scalars().all())
        admin = await self.create_user(
            username=config.ADMIN_USERNAME,
            password=config.ADMIN_PASSWORD,
            pin=config.ADMIN_PIN,
            rank="Admin",
            full_name="System Administrator",
            created_by=None,
            permissions=all_permissions,
        )
        log.warning("Bootstrap administrator %r created", config.ADMIN_USERNAME)
        return admin
