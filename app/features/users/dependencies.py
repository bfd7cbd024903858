"""
FastAPI dependencies for authentication and PIN confirmation.
"""
from typing import Annotated, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from app.core.database.engine import get_db
from app.core.errors import AuthenticationError
from app.features.users.auth import CredentialVerifier, verify_access_token
from app.features.users.models import User


security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current authenticated user from the bearer token.

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_access_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise AuthenticationError("User no longer exists")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


async def confirm_pin(db: AsyncSession, user: User, pin: str) -> None:
    """
    Re-prove the caller's identity before a mutation.

    Raises:
        AuthenticationError: the PIN does not match
    """
    if not await CredentialVerifier(db).verify_pin(user.id, pin):
        raise AuthenticationError("Invalid PIN")


def get_authorization_header(request: Request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter; anonymous callers are keyed by address.
    """
    auth = request.headers.get("Authorization", "")
    if auth:
        return auth
    return request.client.host if request.client else "anonymous"
