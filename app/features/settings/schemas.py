"""
Pydantic schemas for system settings.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class SettingResponse(BaseModel):
    key: str
    value: str
    description: Optional[str]
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MaxDurationUpdate(BaseModel):
    max_duration_hours: int = Field(..., ge=1, le=168)
    pin: str = Field(..., min_length=1)


class WarningThresholdUpdate(BaseModel):
    warning_threshold_hours: int = Field(..., ge=1, le=24)
    pin: str = Field(..., min_length=1)
