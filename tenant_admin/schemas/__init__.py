"""Pydantic schemas for API request/response models."""

from tenant_admin.schemas.audit import AuditEntryRead, AuditLogListResponse
from tenant_admin.schemas.member import (
    EffectivePermissionsRead,
    InvitationCreate,
    InvitationRead,
    MemberRead,
    MemberRoleUpdate,
    TransferOwnershipRequest,
)
from tenant_admin.schemas.org import (
    DeleteOwnOrgRequest,
    DeletionImpactRead,
    OrgCreate,
    OrgDetailRead,
    OrgListResponse,
    OrgRead,
    OrgTreeResponse,
    OrgUpdate,
    RoleCreate,
    RoleRead,
)
from tenant_admin.schemas.user import (
    BanRequest,
    PlatformRoleUpdate,
    UserDetailRead,
    UserListResponse,
    UserRead,
    UserUpdate,
)
