"""
Permission management API routes.

Provides endpoints for the permission catalog, per-user grants and
permission checks. Every mutation requires `manage_permissions` and the
caller's PIN.
"""
from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import UnknownPermissionError, ValidationError
from app.features.permissions.authority import PermissionAuthority
from app.features.permissions.catalog import PermissionCatalog, PermissionName
from app.features.permissions.dependencies import require_permissions
from app.features.permissions.schemas import (
    GrantRequest,
    GrantResult,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionCreate,
    PermissionDelete,
    PermissionResponse,
    PermissionStats,
    PermissionUpdate,
    ReplacePermissions,
    UserGrantRequest,
    UserPermissionsDetailed,
    UserPermissionsResponse,
    UserWithPermissions,
)
from app.features.users.dependencies import CurrentUser, confirm_pin
from app.features.users.models import User
from app.features.users.service import UserService
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

require_manage = require_permissions(PermissionName.MANAGE_PERMISSIONS)


# ============================================================================
# Caller's own permissions
# ============================================================================

@router.get("/me", response_model=UserPermissionsResponse)
async def my_permissions(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Permission names held by the caller."""
    grants = await PermissionAuthority(db).get_grants(current_user.id)
    return UserPermissionsResponse(user_id=current_user.id, permissions=sorted(grants))


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permissions(
    check: PermissionCheckRequest,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    """Check the caller against a list of permissions with AND/OR logic."""
    authority = PermissionAuthority(db)
    if check.logic == "OR":
        allowed = await authority.has_any(current_user.id, check.permissions)
    else:
        allowed = await authority.has_all(current_user.id, check.permissions)
    return PermissionCheckResponse(has_permission=allowed, permissions=check.permissions, logic=check.logic)


# ============================================================================
# Catalog Routes
# ============================================================================

@router.get("", response_model=List[PermissionResponse])
async def list_permissions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    """List every cataloged permission."""
    return await PermissionCatalog(db).list_all()


@router.post("", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    permission: PermissionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    """Add a permission to the catalog."""
    await confirm_pin(db, current_user, permission.pin)
    return await PermissionCatalog(db).create(permission.name, permission.description)


@router.get("/stats", response_model=PermissionStats)
async def permission_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    return await PermissionCatalog(db).stats()


@router.get("/users", response_model=List[UserWithPermissions])
async def list_users_with_permissions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    """Every user with the names of the permissions they hold."""
    return await PermissionAuthority(db).list_users_with_grants()


# ============================================================================
# Grant Routes
# ============================================================================

@router.get("/user/{user_id}", response_model=UserPermissionsResponse | UserPermissionsDetailed)
async def get_user_permissions(
    user_id: str,
    current_user: CurrentUser,
    detailed: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """
    Permissions of one user, empty for an unknown id.

    `detailed=true` adds grant time and granter.
    """
    authority = PermissionAuthority(db)
    if detailed:
        return UserPermissionsDetailed(
            user_id=user_id, permissions=await authority.list_grants_detailed(user_id)
        )
    return UserPermissionsResponse(user_id=user_id, permissions=sorted(await authority.get_grants(user_id)))


@router.put("/user/{user_id}", response_model=UserPermissionsResponse)
async def replace_user_permissions(
    user_id: str,
    body: ReplacePermissions,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    """Replace a user's whole permission set atomically."""
    await confirm_pin(db, current_user, body.pin)
    granted_by = current_user.id
    authority = PermissionAuthority(db)
    try:
        await authority.replace_all(user_id, body.permissions, granted_by)
    except UnknownPermissionError as e:
        raise ValidationError(e.message)
    return UserPermissionsResponse(user_id=user_id, permissions=sorted(await authority.get_grants(user_id)))


@router.post("/grant", response_model=GrantResult)
async def grant_permission(
    body: GrantRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    await confirm_pin(db, current_user, body.pin)
    try:
        inserted = await PermissionAuthority(db).grant(body.user_id, body.permission, current_user.id)
    except UnknownPermissionError as e:
        raise ValidationError(e.message)
    message = "Permission granted" if inserted else "Permission already granted"
    return GrantResult(success=True, message=message)


@router.post("/revoke", response_model=GrantResult)
async def revoke_permission(
    body: GrantRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    await confirm_pin(db, current_user, body.pin)
    await UserService(db).get(body.user_id)
    removed = await PermissionAuthority(db).revoke(body.user_id, body.permission)
    message = "Permission revoked" if removed else "User did not have this permission"
    return GrantResult(success=removed, message=message)


@router.post("/grant-all", response_model=GrantResult)
async def grant_all_permissions(
    body: UserGrantRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    """Grant every cataloged permission to a user."""
    await confirm_pin(db, current_user, body.pin)
    count = await PermissionAuthority(db).grant_all(body.user_id, current_user.id)
    return GrantResult(success=True, message="All permissions granted", count=count)


@router.post("/grant-basic", response_model=GrantResult)
async def grant_basic_permissions(
    body: UserGrantRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    """Grant the basic operator set to a user."""
    await confirm_pin(db, current_user, body.pin)
    await UserService(db).get(body.user_id)
    ok = await PermissionAuthority(db).grant_basic(body.user_id, current_user.id)
    message = "Basic permissions granted" if ok else "Some basic permissions are missing from the catalog"
    return GrantResult(success=ok, message=message)


# ============================================================================
# Single Permission Routes
# ============================================================================

@router.get("/{permission_id}", response_model=PermissionResponse)
async def get_permission(
    permission_id: str,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    return await PermissionCatalog(db).get(permission_id)


@router.put("/{permission_id}", response_model=PermissionResponse)
async def update_permission(
    permission_id: str,
    permission_update: PermissionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    """Rename or redescribe a permission; grants follow the permission id."""
    await confirm_pin(db, current_user, permission_update.pin)
    return await PermissionCatalog(db).update(
        permission_id, permission_update.name, permission_update.description
    )


@router.delete("/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: str,
    body: PermissionDelete,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manage),
):
    """Delete a permission and every grant of it."""
    await confirm_pin(db, current_user, body.pin)
    await PermissionCatalog(db).delete(permission_id)
    return None
