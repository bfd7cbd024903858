"""
User feature routes: login, profile, PIN management and user administration.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from app.core import config
from app.core.database.engine import get_db
from app.core.errors import AuthorizationError, ValidationError
from app.core.rate_limit import limiter
from app.features.permissions.authority import PermissionAuthority
from app.features.permissions.catalog import PermissionName
from app.features.permissions.dependencies import require_permissions
from app.features.users.auth import create_access_token
from app.features.users.dependencies import CurrentUser, confirm_pin
from app.features.users.models import User
from app.features.users.schemas import (
    LoginRequest,
    LoginResponse,
    PinChange,
    PinReset,
    StatusUpdate,
    UserCreate,
    UserDelete,
    UserDeleted,
    UserResponse,
)
from app.features.users.service import UserService
from app.utils import get_logger


log = get_logger(__name__)

auth_router = APIRouter(tags=["auth"])
router = APIRouter(tags=["users"])

require_manage_users = require_permissions(PermissionName.MANAGE_USERS)


@auth_router.post("/login", response_model=LoginResponse)
@limiter.limit(config.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    credentials: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Exchange username and password for a bearer token."""
    user = await UserService(db).authenticate(credentials.username, credentials.password)
    log.info("User %s logged in", user.id)
    return LoginResponse(
        access_token=create_access_token(user.id),
        user=UserResponse.model_validate(user),
    )


# ============================================================================
# Own profile
# ============================================================================

@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(user: CurrentUser):
    """Get current authenticated user's profile."""
    return user


@router.patch("/me/pin", status_code=status.HTTP_204_NO_CONTENT)
async def change_own_pin(
    body: PinChange,
    user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await UserService(db).change_own_pin(user.id, body.current_pin, body.new_pin)
    return None


# ============================================================================
# Administration
# ============================================================================

@router.get("", response_model=list[UserResponse])
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_manage_users)],
    active_only: bool = False,
):
    return await UserService(db).list_users(active_only=active_only)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_manage_users)],
):
    """Create a user holding the basic permission set."""
    await confirm_pin(db, current_user, body.pin)
    return await UserService(db).create_user(
        username=body.username,
        password=body.password,
        pin=body.user_pin,
        rank=body.rank,
        full_name=body.full_name,
        created_by=current_user.id,
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_by_id(
    user_id: str,
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Users may read themselves; anyone else requires `manage_users`."""
    if user_id != current_user.id and not await PermissionAuthority(db).has_permission(
        current_user.id, PermissionName.MANAGE_USERS
    ):
        raise AuthorizationError("Permission denied: requires manage_users")
    return await UserService(db).get(user_id)


@router.patch("/{user_id}/pin", status_code=status.HTTP_204_NO_CONTENT)
async def reset_user_pin(
    user_id: str,
    body: PinReset,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_permissions(PermissionName.CHANGE_USER_PINS))],
):
    await confirm_pin(db, current_user, body.pin)
    await UserService(db).set_pin(user_id, body.new_pin)
    return None


@router.patch("/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: str,
    body: StatusUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_manage_users)],
):
    """Activate or deactivate a user."""
    await confirm_pin(db, current_user, body.pin)
    if user_id == current_user.id and not body.is_active:
        raise ValidationError("Cannot deactivate your own account")
    return await UserService(db).set_active(user_id, body.is_active)


@router.delete("/{user_id}", response_model=UserDeleted)
async def delete_user(
    user_id: str,
    body: UserDelete,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_manage_users)],
):
    """
    Delete a user, or deactivate them when sign-out history references them.
    """
    await confirm_pin(db, current_user, body.pin)
    if user_id == current_user.id:
        raise ValidationError("Cannot delete your own account")
    outcome = await UserService(db).delete_user(user_id)
    return UserDeleted(user_id=user_id, outcome=outcome)
