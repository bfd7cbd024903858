"""
Credential hashing, verification and bearer token handling.
"""
from datetime import timedelta
from typing import Optional

import bcrypt
import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from app.core import config
from app.core.errors import AuthenticationError
from app.features.users.models import User
from app.utils import get_logger, utcnow


log = get_logger(__name__)


def hash_secret(secret: str) -> str:
    """Hash a password or PIN with bcrypt."""
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(secret.encode("utf-8"), salt).decode("utf-8")


def check_secret(secret: str, secret_hash: str) -> bool:
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), secret_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        log.warning("Unreadable credential hash")
        return False


class CredentialVerifier:
    """
    Checks a user's PIN or password against the stored bcrypt hash.

    Only active users can verify. Unknown users and wrong secrets both
    return False; callers decide how to report it.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _active_user(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.id == user_id, User.is_active == True)  # noqa: E712
        )
        return result.scalar_one_or_none()

    async def verify_pin(self, user_id: str, pin: str) -> bool:
        user = await self._active_user(user_id)
        if user is None:
            return False
        return await run_in_threadpool(check_secret, pin, user.pin_hash)

    async def verify_password(self, user_id: str, password: str) -> bool:
        user = await self._active_user(user_id)
        if user is None:
            return False
        return await run_in_threadpool(check_secret, password, user.password_hash)


def create_access_token(user_id: str) -> str:
    now = utcnow()
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=config.JWT_EXPIRES_MINUTES),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_access_token(token: str) -> dict:
    """
    Verify a bearer token and return its payload.

    Raises:
        AuthenticationError: If token is invalid or expired
    """
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Invalid token: {str(e)}")
