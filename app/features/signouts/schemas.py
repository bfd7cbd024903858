"""
Pydantic schemas for sign-out requests and responses.
"""
from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.features.signouts.models import SignoutStatus


# ============================================================================
# Requests
# ============================================================================

class PersonCreate(BaseModel):
    """One person being signed out."""
    rank: Optional[str] = Field(None, max_length=20)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    dod_id: Optional[str] = Field(None, max_length=20)

    @field_validator("first_name", "last_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Must not be blank")
        return v.strip()


class SignoutCreate(BaseModel):
    """Sign out a group of persons; the PIN confirms the authorizing user."""
    soldiers: List[PersonCreate] = Field(..., min_length=1)
    location: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)
    pin: str = Field(..., min_length=1)

    @field_validator("location")
    @classmethod
    def location_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Location is required")
        return v.strip()


class SignInRequest(BaseModel):
    pin: str = Field(..., min_length=1)


class GroupsRequest(BaseModel):
    signout_ids: List[str] = Field(..., min_length=1)


class SignoutQuery(BaseModel):
    """Query-string filters for history and records."""
    status: Optional[SignoutStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    soldier_name: Optional[str] = None
    location: Optional[str] = None


# ============================================================================
# Responses
# ============================================================================

class PersonResponse(BaseModel):
    rank: str
    first_name: str
    last_name: str
    dod_id: Optional[str] = None
    display_name: str

    model_config = ConfigDict(from_attributes=True)


class SignoutEventResponse(BaseModel):
    """A whole sign-out event with its persons."""
    signout_id: str
    location: str
    sign_out_time: datetime
    signed_out_by_id: str
    signed_out_by_name: str
    notes: str
    status: SignoutStatus
    sign_in_time: Optional[datetime] = None
    signed_in_by_id: Optional[str] = None
    signed_in_by_name: Optional[str] = None
    soldiers: List[PersonResponse]
    soldier_count: int
    soldier_names: str

    model_config = ConfigDict(from_attributes=True)


class SignoutRecordResponse(BaseModel):
    """One stored row, one person."""
    id: int
    signout_id: str
    soldier_rank: str
    soldier_first_name: str
    soldier_last_name: str
    soldier_dod_id: Optional[str] = None
    location: str
    sign_out_time: datetime
    signed_out_by_id: str
    signed_out_by_name: str
    notes: str
    status: SignoutStatus
    sign_in_time: Optional[datetime] = None
    signed_in_by_id: Optional[str] = None
    signed_in_by_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SignoutCreated(BaseModel):
    signout_id: str
    soldier_count: int
    message: str


class SignInResponse(BaseModel):
    signout_id: str
    success: bool
    message: str
    soldier_count: int = 0


class OverdueReport(BaseModel):
    """Open events past the configured thresholds, longest out first."""
    max_duration_hours: int
    warning_threshold_hours: int
    overdue: List[SignoutEventResponse]
    warning: List[SignoutEventResponse]
