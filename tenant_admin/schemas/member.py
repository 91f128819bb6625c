"""Member and invitation schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class MemberRead(BaseModel):
    id: UUID
    user_id: UUID
    organization_id: UUID
    role: str
    role_id: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class MemberRoleUpdate(BaseModel):
    role_id: UUID = Field(..., description="Tenant role to assign")


class TransferOwnershipRequest(BaseModel):
    target_member_id: UUID = Field(..., description="Admin member who becomes owner")


class EffectivePermissionsRead(BaseModel):
    member_id: UUID
    permissions: list[str]


class InvitationCreate(BaseModel):
    email: EmailStr
    role_id: UUID


class InvitationRead(BaseModel):
    id: UUID
    organization_id: UUID
    email: str
    role: str
    status: str
    inviter_id: UUID | None
    expires_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}
