"""Error kinds raised by tenant-admin services.

Services raise a single exception type carrying an ``ErrorKind``. The HTTP
layer maps kinds to status codes; nothing else dispatches on subclasses.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Distinguishable failure kinds, caller-recoverable except INTERNAL."""

    NOT_FOUND = "not_found"
    ALREADY_PENDING_DELETION = "already_pending_deletion"
    NOT_PENDING_DELETION = "not_pending_deletion"
    SELF_ACTION = "self_action"
    SUPERADMIN_PROTECTION = "superadmin_protection"
    LAST_SUPERADMIN = "last_superadmin"
    LAST_OWNER_CONSTRAINT = "last_owner_constraint"
    NAME_CONFIRMATION_MISMATCH = "name_confirmation_mismatch"
    DEPTH_EXCEEDED = "depth_exceeded"
    CYCLE_DETECTED = "cycle_detected"
    SLUG_CONFLICT = "slug_conflict"
    EMAIL_CONFLICT = "email_conflict"
    FORBIDDEN = "forbidden"
    ALREADY_BANNED = "already_banned"
    MEMBER_ALREADY_EXISTS = "member_already_exists"
    INVITATION_ALREADY_PENDING = "invitation_already_pending"
    INTERNAL = "internal"


DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NOT_FOUND: "Resource not found",
    ErrorKind.ALREADY_PENDING_DELETION: "Already scheduled for deletion",
    ErrorKind.NOT_PENDING_DELETION: "Not scheduled for deletion",
    ErrorKind.SELF_ACTION: "You cannot perform this action on your own account",
    ErrorKind.SUPERADMIN_PROTECTION: "Superadmin accounts are protected",
    ErrorKind.LAST_SUPERADMIN: "Cannot remove the last active superadmin",
    ErrorKind.LAST_OWNER_CONSTRAINT: "Cannot remove the last owner - transfer ownership first",
    ErrorKind.NAME_CONFIRMATION_MISMATCH: "Confirmation does not match the organization name",
    ErrorKind.DEPTH_EXCEEDED: "Organization hierarchy is too deep",
    ErrorKind.CYCLE_DETECTED: "Organization hierarchy would contain a cycle",
    ErrorKind.SLUG_CONFLICT: "Slug is already in use",
    ErrorKind.EMAIL_CONFLICT: "Email is already in use",
    ErrorKind.FORBIDDEN: "Not allowed",
    ErrorKind.ALREADY_BANNED: "User is already banned",
    ErrorKind.MEMBER_ALREADY_EXISTS: "User is already a member",
    ErrorKind.INVITATION_ALREADY_PENDING: "An invitation is already pending for this email",
    ErrorKind.INTERNAL: "Internal error",
}


class TenantAdminError(Exception):
    """Expected failure of a tenant-admin operation."""

    def __init__(self, kind: ErrorKind, message: str | None = None):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    @property
    def is_internal(self) -> bool:
        return self.kind == ErrorKind.INTERNAL

    def __repr__(self) -> str:
        return f"TenantAdminError({self.kind.value!r}, {self.message!r})"


def not_found(resource: str, resource_id: object) -> TenantAdminError:
    """Build a NOT_FOUND error for a resource id."""
    return TenantAdminError(ErrorKind.NOT_FOUND, f"{resource} {resource_id} not found")
