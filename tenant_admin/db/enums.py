"""Enum definitions for application constants."""

from enum import Enum


class PlatformRole(str, Enum):
    """
    Platform-level user roles.

    - USER: regular account, privileges come from org memberships
    - SUPERADMIN: platform operator, manages all tenants
    """
    USER = "user"
    SUPERADMIN = "superadmin"


class LifecycleState(str, Enum):
    """Soft-delete state shared by organizations and users."""
    ACTIVE = "active"
    PENDING_DELETION = "pending_deletion"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELED = "canceled"
    EXPIRED = "expired"


class ActorType(str, Enum):
    """Who performed an audited action."""
    USER = "user"
    IMPERSONATION = "impersonation"
    SYSTEM = "system"


class AuditAction(str, Enum):
    """Audit actions, named ``resource.verb``."""
    ORG_CREATED = "org.created"
    ORG_UPDATED = "org.updated"
    ORG_PARENT_CHANGED = "org.parent_changed"
    ORG_DELETED = "org.deleted"
    ORG_RESTORED = "org.restored"

    USER_BANNED = "user.banned"
    USER_UNBANNED = "user.unbanned"
    USER_DELETED = "user.deleted"
    USER_RESTORED = "user.restored"
    USER_UPDATED = "user.updated"
    USER_ROLE_CHANGED = "user.role_changed"

    MEMBER_ROLE_CHANGED = "member.role_changed"
    MEMBER_REMOVED = "member.removed"
    MEMBER_INVITED = "member.invited"
    MEMBER_OWNERSHIP_TRANSFERRED = "member.ownership_transferred"

    INVITATION_REVOKED = "invitation.revoked"
