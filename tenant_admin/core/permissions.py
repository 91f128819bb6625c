"""Permission catalog: ``resource:action`` keys and default role bundles.

Every tenant is provisioned with the four default roles below. The catalog is
static; tenants can only combine these keys into custom roles.
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class PermissionDef:
    """Permission definition with metadata."""
    resource: str
    action: str
    description: str

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"


class PermissionResource(str, Enum):
    """Resources addressable by permissions."""
    USERS = "users"
    ORGANIZATIONS = "organizations"
    MEMBERS = "members"
    INVITATIONS = "invitations"
    ROLES = "roles"


class PermissionAction(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


# =============================================================================
# Permission Registry
# =============================================================================

_DESCRIPTIONS: dict[tuple[str, str], str] = {
    ("users", "read"): "View user profiles",
    ("users", "write"): "Edit user profiles",
    ("users", "delete"): "Delete users",
    ("organizations", "read"): "View organization details",
    ("organizations", "write"): "Edit organization settings",
    ("organizations", "delete"): "Delete the organization",
    ("members", "read"): "View the member list",
    ("members", "write"): "Change member roles",
    ("members", "delete"): "Remove members",
    ("invitations", "read"): "View pending invitations",
    ("invitations", "write"): "Invite new members",
    ("invitations", "delete"): "Revoke invitations",
    ("roles", "read"): "View roles and their permissions",
    ("roles", "write"): "Create and edit custom roles",
    ("roles", "delete"): "Delete custom roles",
}

PERMISSION_REGISTRY: dict[str, PermissionDef] = {
    f"{resource.value}:{action.value}": PermissionDef(
        resource.value,
        action.value,
        _DESCRIPTIONS[(resource.value, action.value)],
    )
    for resource in PermissionResource
    for action in PermissionAction
}


# =============================================================================
# Default Roles
# =============================================================================

OWNER_ROLE_SLUG = "owner"
ADMIN_ROLE_SLUG = "admin"
MEMBER_ROLE_SLUG = "member"
VIEWER_ROLE_SLUG = "viewer"


@dataclass(frozen=True)
class DefaultRoleDef:
    name: str
    slug: str
    description: str
    permissions: frozenset[str]


DEFAULT_ROLES: tuple[DefaultRoleDef, ...] = (
    DefaultRoleDef(
        "Owner",
        OWNER_ROLE_SLUG,
        "Full access - organization owner",
        frozenset(PERMISSION_REGISTRY),
    ),
    DefaultRoleDef(
        "Admin",
        ADMIN_ROLE_SLUG,
        "Manage members, roles, and invitations",
        frozenset(PERMISSION_REGISTRY) - {"users:delete", "organizations:delete"},
    ),
    DefaultRoleDef(
        "Member",
        MEMBER_ROLE_SLUG,
        "Standard member access",
        frozenset({
            "users:read",
            "organizations:read",
            "members:read",
            "invitations:read",
            "roles:read",
        }),
    ),
    DefaultRoleDef(
        "Viewer",
        VIEWER_ROLE_SLUG,
        "Read-only access",
        frozenset({"users:read", "organizations:read", "members:read", "roles:read"}),
    ),
)


# =============================================================================
# Helper Functions
# =============================================================================

def is_valid_permission(key: str) -> bool:
    """Check if permission key exists."""
    return key in PERMISSION_REGISTRY


def split_permission_key(key: str) -> tuple[str, str]:
    """Split ``resource:action`` into its parts.

    Raises:
        ValueError: If the key is not in ``resource:action`` form
    """
    resource, sep, action = key.partition(":")
    if not sep or not resource or not action:
        raise ValueError(f"Invalid permission key: {key!r}")
    return resource, action


def get_default_role(slug: str) -> DefaultRoleDef | None:
    return next((r for r in DEFAULT_ROLES if r.slug == slug), None)


def get_default_role_permissions(slug: str) -> set[str]:
    """Get default permissions for a role slug (empty for custom roles)."""
    role = get_default_role(slug)
    return set(role.permissions) if role else set()


def get_permissions_by_resource() -> dict[str, list[PermissionDef]]:
    """Group permissions by resource for display."""
    result: dict[str, list[PermissionDef]] = {}
    for perm in PERMISSION_REGISTRY.values():
        result.setdefault(perm.resource, []).append(perm)
    return result
