"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field, field_validator


def _digits_only(v: str) -> str:
    if not v.isdigit():
        raise ValueError("PIN must contain only digits")
    return v


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class UserBase(BaseModel):
    """Base user schema with common fields."""
    username: str = Field(..., min_length=1, max_length=100)
    rank: str = Field("", max_length=20)
    full_name: str = Field(..., min_length=1, max_length=255)


class UserCreate(UserBase):
    """Schema for creating a new user; `pin` is the administrator's own PIN."""
    password: str = Field(..., min_length=4)
    user_pin: str = Field(..., min_length=4, max_length=12, description="PIN of the new user")
    pin: str = Field(..., min_length=1)

    @field_validator("user_pin")
    @classmethod
    def pin_digits(cls, v: str) -> str:
        return _digits_only(v)


class UserResponse(UserBase):
    """Schema for user responses."""
    id: str
    display_name: str
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class PinChange(BaseModel):
    """Change the caller's own PIN."""
    current_pin: str = Field(..., min_length=1)
    new_pin: str = Field(..., min_length=4, max_length=12)

    @field_validator("new_pin")
    @classmethod
    def pin_digits(cls, v: str) -> str:
        return _digits_only(v)


class PinReset(BaseModel):
    """Set another user's PIN; `pin` is the administrator's own PIN."""
    new_pin: str = Field(..., min_length=4, max_length=12)
    pin: str = Field(..., min_length=1)

    @field_validator("new_pin")
    @classmethod
    def pin_digits(cls, v: str) -> str:
        return _digits_only(v)


class StatusUpdate(BaseModel):
    is_active: bool
    pin: str = Field(..., min_length=1)


class UserDelete(BaseModel):
    pin: str = Field(..., min_length=1)


class UserDeleted(BaseModel):
    user_id: str
    outcome: str
