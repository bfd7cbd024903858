"""
System settings: overdue thresholds for open sign-outs.

Values are stored as text and read back as whole hours. A missing row falls
back to its default, so reads work before the table is seeded.
"""
from enum import Enum
from typing import Dict, List, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import transaction
from app.core.errors import DataIntegrityError, NotFoundError, ValidationError
from app.features.settings.models import SystemSetting
from app.utils import get_logger


log = get_logger(__name__)


class SettingKey(str, Enum):
    MAX_DURATION_HOURS = "max_duration_hours"
    WARNING_THRESHOLD_HOURS = "warning_threshold_hours"


# (key, default, lowest, highest, description)
DEFAULT_SETTINGS = [
    (SettingKey.MAX_DURATION_HOURS, 8, 1, 168,
     "Hours a soldier may stay signed out before the sign-out is overdue"),
    (SettingKey.WARNING_THRESHOLD_HOURS, 4, 1, 24,
     "Hours signed out before a sign-out is flagged for attention"),
]

_DEFAULTS: Dict[str, Tuple[int, int, int, str]] = {
    key.value: (default, lowest, highest, description)
    for key, default, lowest, highest, description in DEFAULT_SETTINGS
}


def setting_key(key: Union[str, SettingKey]) -> str:
    if isinstance(key, SettingKey):
        return key.value
    if key not in _DEFAULTS:
        raise NotFoundError(f"Setting '{key}' not found")
    return key


class SystemSettings:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def seed_defaults(self) -> int:
        """Insert any default setting missing from the table. Idempotent."""
        result = await self.db.execute(select(SystemSetting.key))
        existing = set(result.scalars().all())
        missing = [
            SystemSetting(key=key.value, value=str(default), description=description)
            for key, default, _, _, description in DEFAULT_SETTINGS
            if key.value not in existing
        ]
        if not missing:
            return 0

        async with transaction(self.db, "seed_settings", count=len(missing)):
            self.db.add_all(missing)

        log.info("Seeded %d default settings", len(missing))
        return len(missing)

    async def list_all(self) -> List[SystemSetting]:
        result = await self.db.execute(select(SystemSetting).order_by(SystemSetting.key))
        return list(result.scalars().all())

    async def get_hours(self, key: Union[str, SettingKey]) -> int:
        key = setting_key(key)
        value = await self.db.scalar(select(SystemSetting.value).where(SystemSetting.key == key))
        if value is None:
            return _DEFAULTS[key][0]
        try:
            return int(value)
        except ValueError:
            raise DataIntegrityError(f"Setting '{key}' holds a non-numeric value {value!r}")

    async def thresholds(self) -> Tuple[int, int]:
        """(max_duration_hours, warning_threshold_hours)"""
        return (
            await self.get_hours(SettingKey.MAX_DURATION_HOURS),
            await self.get_hours(SettingKey.WARNING_THRESHOLD_HOURS),
        )

    async def set_hours(self, key: Union[str, SettingKey], hours: int) -> SystemSetting:
        """
        Store a whole number of hours for `key`.

        Raises:
            NotFoundError: unknown key
            ValidationError: value outside the key's range
        """
        key = setting_key(key)
        _, lowest, highest, description = _DEFAULTS[key]
        if not lowest <= hours <= highest:
            raise ValidationError(f"{key} must be between {lowest} and {highest} hours")

        setting = await self.db.get(SystemSetting, key)
        async with transaction(self.db, "update_setting", key=key, value=hours):
            if setting is None:
                setting = SystemSetting(key=key, value=str(hours), description=description)
                self.db.add(setting)
            else:
                setting.value = str(hours)
        await self.db.refresh(setting)

        log.info("Setting %s changed to %d", key, hours)
        return setting
