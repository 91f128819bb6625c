"""SQLAlchemy ORM models for tenants, users, RBAC, invitations and audit."""

import uuid
from datetime import datetime, timedelta

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, ForeignKey, Index, String, Text,
    UniqueConstraint, Uuid, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tenant_admin.db.base import Base
from tenant_admin.db.enums import InvitationStatus, LifecycleState, PlatformRole


# =============================================================================
# Lifecycle
# =============================================================================

class SoftDeleteMixin:
    """
    Soft-delete columns shared by organizations and users.

    Invariant: deleted_at and delete_scheduled_for are both null or both set
    (enforced by a check constraint on each table).
    """
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delete_scheduled_for: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def lifecycle_state(self) -> LifecycleState:
        if self.deleted_at is None:
            return LifecycleState.ACTIVE
        return LifecycleState.PENDING_DELETION

    @property
    def is_pending_deletion(self) -> bool:
        return self.deleted_at is not None

    def mark_pending_deletion(self, now: datetime, grace: timedelta) -> None:
        self.deleted_at = now
        self.delete_scheduled_for = now + grace

    def clear_pending_deletion(self) -> None:
        self.deleted_at = None
        self.delete_scheduled_for = None


def _paired_deletion_check(table: str) -> CheckConstraint:
    return CheckConstraint(
        "(deleted_at IS NULL) = (delete_scheduled_for IS NULL)",
        name=f"ck_{table}_deletion_pair",
    )


# =============================================================================
# Tenants & Users
# =============================================================================

class Organization(SoftDeleteMixin, Base):
    """
    A tenant in the multi-tenant system.

    Organizations form a forest through parent_organization_id. The tree is
    never loaded as an object graph; see hierarchy_service for the
    id -> parent index and the ancestor-walk validation.
    """
    __tablename__ = "organizations"
    __table_args__ = (
        Index("idx_organizations_parent_id", "parent_organization_id"),
        _paired_deletion_check("organizations"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    parent_organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    members: Mapped[list["Member"]] = relationship(back_populates="organization")
    roles: Mapped[list["Role"]] = relationship(back_populates="tenant")


class User(SoftDeleteMixin, Base):
    """
    Platform account.

    Credentials and sessions are issued elsewhere; this core only tracks the
    platform role, ban state and soft-delete state.
    """
    __tablename__ = "users"
    __table_args__ = (_paired_deletion_check("users"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), default=PlatformRole.USER.value, nullable=False
    )
    banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ban_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    ban_expires: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    memberships: Mapped[list["Member"]] = relationship(back_populates="user")

    @property
    def is_superadmin(self) -> bool:
        return self.role == PlatformRole.SUPERADMIN.value

    @property
    def is_active_account(self) -> bool:
        """Not banned and not pending deletion."""
        return not self.banned and self.deleted_at is None


class Member(Base):
    """
    Links a user to an organization with a role.

    role_id is authoritative; role mirrors the slug of that Role for display
    and is rewritten whenever role_id changes.
    """
    __tablename__ = "members"
    __table_args__ = (
        Index("idx_members_org_id", "organization_id"),
        Index("idx_members_user_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(100), default="member", nullable=False)
    role_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("roles.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="memberships")
    organization: Mapped["Organization"] = relationship(back_populates="members")
    role_ref: Mapped["Role | None"] = relationship()


# =============================================================================
# RBAC
# =============================================================================

class Permission(Base):
    """Immutable catalog entry addressed as resource:action."""
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    resource: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"


class RolePermission(Base):
    __tablename__ = "role_permissions"

    role_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    permission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
    )


class Role(Base):
    """
    A tenant-scoped role.

    Default roles (owner/admin/member/viewer) are seeded per tenant with
    is_default=True.
    """
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_roles_tenant_slug"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    tenant: Mapped["Organization"] = relationship(back_populates="roles")
    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions", lazy="selectin"
    )


# =============================================================================
# Invitations & Sessions
# =============================================================================

class Invitation(Base):
    """Pending invitation to join an organization."""
    __tablename__ = "invitations"
    __table_args__ = (
        Index("idx_invitations_org_status", "organization_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(100), default="member", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=InvitationStatus.PENDING.value, nullable=False
    )
    inviter_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class UserSession(Base):
    """
    Login session issued by the auth layer.

    Only active_organization_id is managed here: it is cleared when the
    organization it points at is soft-deleted.
    """
    __tablename__ = "sessions"
    __table_args__ = (
        Index("idx_sessions_user_id", "user_id"),
        Index("idx_sessions_active_org", "active_organization_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    active_organization_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


# =============================================================================
# Audit
# =============================================================================

class AuditLog(Base):
    """
    Persisted audit record (default audit sink).

    No foreign keys: the trail must survive deletion of the actor or tenant.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_actor", "actor_id"),
        Index("idx_audit_logs_org_action", "organization_id", "action"),
        Index("idx_audit_logs_resource", "resource", "resource_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    timestamp: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)
    impersonator_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
