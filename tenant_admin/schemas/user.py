"""User-related Pydantic schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from tenant_admin.db.enums import LifecycleState, PlatformRole


class UserRead(BaseModel):
    """Response schema for reading a user."""

    id: UUID
    email: str
    display_name: str
    role: str
    banned: bool
    ban_reason: str | None
    ban_expires: datetime | None
    lifecycle_state: LifecycleState
    deleted_at: datetime | None
    delete_scheduled_for: datetime | None

    model_config = {"from_attributes": True}


class BanRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)
    expires: datetime | None = None


class PlatformRoleUpdate(BaseModel):
    role: PlatformRole


class UserUpdate(BaseModel):
    """Profile fields only; use PATCH /users/{id}/role for the platform role."""

    display_name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None


class UserListResponse(BaseModel):
    items: list[UserRead]
    total: int
    page: int
    per_page: int


class UserMembershipRead(BaseModel):
    member_id: UUID
    organization_id: UUID
    organization_name: str
    organization_slug: str
    role: str
    joined_at: datetime


class UserDetailRead(BaseModel):
    user: UserRead
    organizations: list[UserMembershipRead]
    recent_activity: list[dict[str, Any]]
