"""Organization-related Pydantic schemas."""

import re
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from tenant_admin.db.enums import LifecycleState
from tenant_admin.schemas.member import MemberRead

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")


def _validate_slug(v: str) -> str:
    v = v.lower().strip()
    if not SLUG_PATTERN.match(v):
        raise ValueError("Slug must contain only lowercase letters, digits and hyphens")
    return v


class OrgCreate(BaseModel):
    """Request schema for creating an organization."""

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100)
    parent_organization_id: UUID | None = None
    owner_user_id: UUID | None = None

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: str) -> str:
        return _validate_slug(v)


class OrgUpdate(BaseModel):
    """Partial update. Send parent_organization_id=null to detach to a root."""

    name: str | None = Field(None, min_length=1, max_length=255)
    slug: str | None = Field(None, min_length=1, max_length=100)
    parent_organization_id: UUID | None = None

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: str | None) -> str | None:
        return _validate_slug(v) if v is not None else None


class OrgRead(BaseModel):
    """Response schema for reading an organization."""

    id: UUID
    name: str
    slug: str
    parent_organization_id: UUID | None
    lifecycle_state: LifecycleState
    deleted_at: datetime | None
    delete_scheduled_for: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrgSummary(BaseModel):
    id: UUID
    name: str
    slug: str

    model_config = {"from_attributes": True}


class OrgChildRead(OrgSummary):
    member_count: int
    deleted_at: datetime | None = None


class OrgDetailRead(BaseModel):
    organization: OrgRead
    parent: OrgSummary | None
    members: list[MemberRead]
    children: list[OrgChildRead]

    model_config = {"from_attributes": True}


class OrgTreeNodeRead(BaseModel):
    id: UUID
    name: str
    slug: str
    member_count: int
    is_orphan: bool = False
    children: list["OrgTreeNodeRead"] = []


OrgTreeNodeRead.model_rebuild()


class OrgTreeResponse(BaseModel):
    tree_view_available: bool
    total: int
    roots: list[OrgTreeNodeRead]


class DeletionImpactRead(BaseModel):
    member_count: int
    active_members: int
    child_org_count: int
    child_member_count: int

    model_config = {"from_attributes": True}


class DeleteOwnOrgRequest(BaseModel):
    """Tenant self-service deletion; the owner must type the organization name."""

    confirm_name: str = Field(..., max_length=255)


class RoleRead(BaseModel):
    id: UUID
    name: str
    slug: str
    description: str | None
    is_default: bool
    permissions: list[str]


class RoleCreate(BaseModel):
    """Custom tenant role. Permission keys outside the catalog are ignored."""

    name: str = Field(..., min_length=1, max_length=100)
    permissions: list[str] = []
    description: str | None = Field(None, max_length=500)


class OrgListItem(OrgRead):
    member_count: int


class OrgListResponse(BaseModel):
    items: list[OrgListItem]
    total: int
    page: int
    per_page: int
