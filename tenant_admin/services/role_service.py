"""Role service - tenant roles, permission resolution and owner counting."""

import re
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from tenant_admin.core.errors import ErrorKind, TenantAdminError, not_found
from tenant_admin.core.permissions import (
    DEFAULT_ROLES,
    OWNER_ROLE_SLUG,
    PERMISSION_REGISTRY,
)
from tenant_admin.core.transactions import run_in_transaction
from tenant_admin.db.enums import PlatformRole
from tenant_admin.db.models import (
    Member,
    Organization,
    Permission,
    Role,
    RolePermission,
    User,
)


def slugify(name: str) -> str:
    """Lowercase, hyphen-separated slug (``^[a-z0-9-]+$``)."""
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")


# =============================================================================
# Predicates
# =============================================================================

def is_owner_role(role: Role | None) -> bool:
    return role is not None and role.slug == OWNER_ROLE_SLUG


def is_default_role(role: Role | None) -> bool:
    return role is not None and role.is_default


# =============================================================================
# Resolution
# =============================================================================

def resolve_effective_permissions(db: Session, tenant_id: UUID, member_id: UUID) -> set[str]:
    """
    Permission keys granted to a member through its role.

    A member without a role resolves to no permissions.

    Raises:
        TenantAdminError(NOT_FOUND): member is not in the tenant
    """
    member = (
        db.query(Member)
        .filter(Member.id == member_id, Member.organization_id == tenant_id)
        .first()
    )
    if not member:
        raise not_found("Member", member_id)
    if member.role_id is None:
        return set()

    rows = (
        db.query(Permission.resource, Permission.action)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(Role, Role.id == RolePermission.role_id)
        .filter(Role.id == member.role_id, Role.tenant_id == tenant_id)
        .all()
    )
    return {f"{resource}:{action}" for resource, action in rows}


def has_permission(db: Session, tenant_id: UUID, user_id: UUID, key: str) -> bool:
    member = (
        db.query(Member)
        .filter(Member.organization_id == tenant_id, Member.user_id == user_id)
        .first()
    )
    if not member:
        return False
    return key in resolve_effective_permissions(db, tenant_id, member.id)


# =============================================================================
# Counting (guards)
# =============================================================================

def count_active_owners(
    db: Session,
    tenant_id: UUID,
    exclude_member_id: UUID | None = None,
) -> int:
    """Owners of the tenant whose user is neither banned nor soft-deleted."""
    query = (
        db.query(func.count(Member.id))
        .join(Role, Role.id == Member.role_id)
        .join(User, User.id == Member.user_id)
        .filter(
            Member.organization_id == tenant_id,
            Role.tenant_id == tenant_id,
            Role.slug == OWNER_ROLE_SLUG,
            User.banned.is_(False),
            User.deleted_at.is_(None),
        )
    )
    if exclude_member_id is not None:
        query = query.filter(Member.id != exclude_member_id)
    return query.scalar() or 0


def count_active_superadmins(db: Session, exclude_user_id: UUID | None = None) -> int:
    query = db.query(func.count(User.id)).filter(
        User.role == PlatformRole.SUPERADMIN.value,
        User.banned.is_(False),
        User.deleted_at.is_(None),
    )
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    return query.scalar() or 0


def lock_superadmins(db: Session) -> None:
    """Row-lock every superadmin in id order before a guard counts them."""
    (
        db.query(User.id)
        .filter(User.role == PlatformRole.SUPERADMIN.value)
        .order_by(User.id)
        .with_for_update()
        .all()
    )


def lock_owner_members(db: Session, tenant_id: UUID) -> None:
    """Row-lock the tenant's owner memberships in id order."""
    (
        db.query(Member.id)
        .join(Role, Role.id == Member.role_id)
        .filter(
            Member.organization_id == tenant_id,
            Role.tenant_id == tenant_id,
            Role.slug == OWNER_ROLE_SLUG,
        )
        .order_by(Member.id)
        .with_for_update(of=Member)
        .all()
    )


# =============================================================================
# Seeding & materialization
# =============================================================================

def seed_permission_catalog(db: Session) -> dict[str, Permission]:
    """Insert any missing catalog permissions. Idempotent; flushes only."""
    existing = {p.key: p for p in db.query(Permission).all()}
    for key, definition in PERMISSION_REGISTRY.items():
        if key not in existing:
            perm = Permission(
                resource=definition.resource,
                action=definition.action,
                description=definition.description,
            )
            db.add(perm)
            existing[key] = perm
    db.flush()
    return existing


def materialize_role_permissions(db: Session, role: Role, keys: set[str] | frozenset[str]) -> Role:
    """
    Replace the role's permission set with ``keys``.

    Keys not in the catalog are ignored.
    """
    catalog = seed_permission_catalog(db)
    wanted = []
    for key in sorted(keys):
        if key in catalog:
            wanted.append(catalog[key])
    role.permissions = wanted
    db.flush()
    return role


def seed_default_roles(db: Session, tenant_id: UUID) -> dict[str, Role]:
    """Create the default roles for a tenant if missing. Flushes only."""
    roles = {
        r.slug: r
        for r in db.query(Role).filter(Role.tenant_id == tenant_id, Role.is_default.is_(True)).all()
    }
    for definition in DEFAULT_ROLES:
        role = roles.get(definition.slug)
        if role is None:
            role = Role(
                tenant_id=tenant_id,
                name=definition.name,
                slug=definition.slug,
                description=definition.description,
                is_default=True,
            )
            db.add(role)
            db.flush()
            roles[definition.slug] = role
            materialize_role_permissions(db, role, definition.permissions)
    return roles


def create_role(
    db: Session,
    tenant_id: UUID,
    name: str,
    permissions: set[str],
    description: str | None = None,
) -> Role:
    """
    Create a custom role for a tenant.

    Raises:
        TenantAdminError(NOT_FOUND): tenant does not exist
        TenantAdminError(SLUG_CONFLICT): a role with the same slug exists
    """
    slug = slugify(name)

    def work(session: Session) -> Role:
        if session.get(Organization, tenant_id) is None:
            raise not_found("Organization", tenant_id)
        clash = (
            session.query(Role.id)
            .filter(Role.tenant_id == tenant_id, Role.slug == slug)
            .first()
        )
        if clash:
            raise TenantAdminError(ErrorKind.SLUG_CONFLICT, f"Role slug {slug!r} already exists")
        role = Role(tenant_id=tenant_id, name=name, slug=slug, description=description)
        session.add(role)
        session.flush()
        return materialize_role_permissions(session, role, set(permissions))

    return run_in_transaction(db, work)


# =============================================================================
# Lookups
# =============================================================================

def get_tenant_role(db: Session, tenant_id: UUID, role_id: UUID) -> Role:
    """
    Raises:
        TenantAdminError(NOT_FOUND): role does not belong to the tenant
    """
    role = db.query(Role).filter(Role.id == role_id, Role.tenant_id == tenant_id).first()
    if not role:
        raise not_found("Role", role_id)
    return role


def get_role_by_slug(db: Session, tenant_id: UUID, slug: str) -> Role | None:
    return db.query(Role).filter(Role.tenant_id == tenant_id, Role.slug == slug).first()


def list_tenant_roles(db: Session, tenant_id: UUID) -> list[Role]:
    return (
        db.query(Role)
        .filter(Role.tenant_id == tenant_id)
        .order_by(Role.is_default.desc(), Role.name)
        .all()
    )
