"""
Pydantic schemas for permission management.

Request and response models for the permission catalog, per-user grants
and permission checks. Every mutating request carries the caller's PIN.
"""
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================================
# Catalog Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique permission name")
    description: Optional[str] = Field(None, max_length=1000, description="Permission description")


class PermissionCreate(PermissionBase):
    """Schema for creating a new permission."""
    pin: str = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def name_alphanumeric_underscore(cls, v: str) -> str:
        """Validate permission name format."""
        if not v.replace("_", "").isalnum():
            raise ValueError("Permission name must contain only alphanumeric characters and underscores")
        return v.lower()


class PermissionUpdate(PermissionCreate):
    """Schema for renaming or redescribing a permission."""


class PermissionDelete(BaseModel):
    pin: str = Field(..., min_length=1)


class PermissionResponse(PermissionBase):
    """Schema for permission response."""
    id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PermissionUsage(BaseModel):
    name: str
    description: Optional[str] = None
    user_count: int


class PermissionStats(BaseModel):
    total_permissions: int
    total_grants: int
    users_with_grants: int
    most_common_permissions: List[PermissionUsage]


# ============================================================================
# Grant Schemas
# ============================================================================

class ReplacePermissions(BaseModel):
    """Replace a user's whole grant set."""
    permissions: List[str] = Field(default_factory=list, description="Permission names")
    pin: str = Field(..., min_length=1)


class GrantRequest(BaseModel):
    """Grant or revoke a single permission."""
    user_id: str
    permission: str = Field(..., min_length=1)
    pin: str = Field(..., min_length=1)


class UserGrantRequest(BaseModel):
    """Bulk grant to one user (grant-all, grant-basic)."""
    user_id: str
    pin: str = Field(..., min_length=1)


class GrantDetail(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    granted_at: Optional[datetime] = None
    granted_by_id: Optional[str] = None
    granted_by_name: Optional[str] = None


class UserPermissionsResponse(BaseModel):
    user_id: str
    permissions: List[str]


class UserPermissionsDetailed(BaseModel):
    user_id: str
    permissions: List[GrantDetail]


class UserWithPermissions(BaseModel):
    user_id: str
    username: str
    rank: str
    full_name: str
    is_active: bool
    created_at: Optional[datetime] = None
    permissions: List[str]


class GrantResult(BaseModel):
    success: bool
    message: str
    count: Optional[int] = None


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Check the caller's own permissions."""
    permissions: List[str] = Field(default_factory=list)
    logic: Literal["AND", "OR"] = "AND"


class PermissionCheckResponse(BaseModel):
    has_permission: bool
    permissions: List[str]
    logic: str
