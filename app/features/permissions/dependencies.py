"""
FastAPI dependencies for permission-protected routes.
"""
from typing import Literal
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.authority import PermissionAuthority, PermissionRef
from app.features.permissions.catalog import permission_key
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def require_permissions(*names: PermissionRef, logic: Literal["AND", "OR"] = "AND"):
    """
    FastAPI dependency requiring the current user to hold permissions.

    Usage:
        @router.post("/signouts")
        async def create_signout(
            user: User = Depends(require_permissions(PermissionName.CREATE_SIGNOUT))
        ):
            ...

    Args:
        names: Permission names
        logic: "AND" requires all of them, "OR" any one

    Returns:
        Dependency function that returns the current user

    Raises:
        HTTPException: 403 naming the required permissions
    """
    required = [permission_key(name) for name in names]

    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user)
    ) -> User:
        authority = PermissionAuthority(db)
        if logic == "OR":
            allowed = await authority.has_any(current_user.id, required)
        else:
            allowed = await authority.has_all(current_user.id, required)

        if not allowed:
            log.info("User %s denied, requires %s of %s", current_user.id, logic, required)
            joiner = " or " if logic == "OR" else " and "
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires {joiner.join(required)}"
            )
        return current_user

    return permission_dependency
