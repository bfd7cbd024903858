"""
System settings routes.

Reading needs `view_settings`; changing a threshold needs `system_admin`
and the caller's PIN.
"""
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.catalog import PermissionName
from app.features.permissions.dependencies import require_permissions
from app.features.settings.schemas import MaxDurationUpdate, SettingResponse, WarningThresholdUpdate
from app.features.settings.service import SettingKey, SystemSettings
from app.features.users.dependencies import confirm_pin
from app.features.users.models import User


router = APIRouter()

require_admin = require_permissions(PermissionName.SYSTEM_ADMIN)


@router.get("", response_model=List[SettingResponse])
async def list_settings(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permissions(PermissionName.VIEW_SETTINGS)),
):
    return await SystemSettings(db).list_all()


@router.put("/max-duration", response_model=SettingResponse)
async def update_max_duration(
    body: MaxDurationUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Hours after which an open sign-out is reported overdue."""
    await confirm_pin(db, current_user, body.pin)
    return await SystemSettings(db).set_hours(SettingKey.MAX_DURATION_HOURS, body.max_duration_hours)


@router.put("/warning-threshold", response_model=SettingResponse)
async def update_warning_threshold(
    body: WarningThresholdUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    await confirm_pin(db, current_user, body.pin)
    return await SystemSettings(db).set_hours(SettingKey.WARNING_THRESHOLD_HOURS, body.warning_threshold_hours)
