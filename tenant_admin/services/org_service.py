"""Organization service - create, update, detail and lifecycle of tenants.

Create and update run serializable: parent validation reads the whole parent
index, and two concurrent re-parentings that each pass on their own snapshot
must not commit a cycle or an over-deep tree together.
"""

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenant_admin.core.errors import ErrorKind, TenantAdminError, not_found
from tenant_admin.core.permissions import OWNER_ROLE_SLUG
from tenant_admin.core.structured_logging import build_log_context
from tenant_admin.core.transactions import run_in_transaction
from tenant_admin.db.enums import AuditAction
from tenant_admin.db.models import Member, Organization, User
from tenant_admin.services import (
    audit_service,
    hierarchy_service,
    invitation_service,
    lifecycle_service,
    member_service,
    role_service,
    session_service,
)
from tenant_admin.services.audit_service import Actor, AuditSink
from tenant_admin.services.lifecycle_service import ORGANIZATION

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def get_org_by_id(db: Session, org_id: UUID) -> Organization | None:
    """Get organization by ID."""
    return db.query(Organization).filter(Organization.id == org_id).first()


def _flush_or_slug_conflict(db: Session) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        if "slug" in str(exc.orig).lower():
            raise TenantAdminError(ErrorKind.SLUG_CONFLICT) from exc
        raise


# =============================================================================
# Create / update
# =============================================================================

def create_organization(
    db: Session,
    name: str,
    slug: str,
    actor: Actor,
    parent_organization_id: UUID | None = None,
    owner_user_id: UUID | None = None,
    sink: AuditSink | None = None,
) -> Organization:
    """
    Create a tenant, seed its default roles and optionally its first owner.

    Raises:
        TenantAdminError(NOT_FOUND): parent or owner user does not exist
        TenantAdminError(DEPTH_EXCEEDED): parent is already at maximum depth
        TenantAdminError(SLUG_CONFLICT): slug is taken
    """

    def work(session: Session):
        lifecycle_service.require_superadmin_actor(session, actor)
        hierarchy_service.validate_parent_assignment(session, None, parent_organization_id)
        if owner_user_id is not None and session.get(User, owner_user_id) is None:
            raise not_found("User", owner_user_id)

        org = Organization(
            name=name.strip(),
            slug=slug.lower(),
            parent_organization_id=parent_organization_id,
        )
        session.add(org)
        _flush_or_slug_conflict(session)

        roles = role_service.seed_default_roles(session, org.id)
        if owner_user_id is not None:
            owner_role = roles[OWNER_ROLE_SLUG]
            session.add(
                Member(
                    user_id=owner_user_id,
                    organization_id=org.id,
                    role=owner_role.slug,
                    role_id=owner_role.id,
                )
            )
            session.flush()

        record = audit_service.build_record(
            actor,
            AuditAction.ORG_CREATED,
            ORGANIZATION.resource,
            org.id,
            organization_id=org.id,
            after={
                "name": org.name,
                "slug": org.slug,
                "parent_organization_id": org.parent_organization_id,
            },
            metadata={"owner_user_id": owner_user_id} if owner_user_id else None,
        )
        return org, record

    org, record = run_in_transaction(db, work, serializable=True)
    audit_service.emit(audit_service.resolve_sink(db, sink), record)
    logger.info(
        "Organization created",
        extra=build_log_context(actor_id=actor.user_id, org_id=record.organization_id),
    )
    return org


def update_organization(
    db: Session,
    org_id: UUID,
    actor: Actor,
    name: str | None = _UNSET,
    slug: str | None = _UNSET,
    parent_organization_id: UUID | None = _UNSET,
    sink: AuditSink | None = None,
) -> Organization:
    """
    Update name, slug and/or parent. Omitted fields are left alone.

    A non-null parent is validated against cycles and depth; None detaches
    the organization to a root. A parent change is audited as
    org.parent_changed, anything else as org.updated.
    """

    def work(session: Session):
        lifecycle_service.require_superadmin_actor(session, actor)
        org = (
            session.query(Organization)
            .filter(Organization.id == org_id)
            .with_for_update()
            .first()
        )
        if not org:
            raise not_found("Organization", org_id)

        before: dict[str, Any] = {}
        after: dict[str, Any] = {}

        def apply(attr: str, value: Any) -> None:
            if getattr(org, attr) != value:
                before[attr] = getattr(org, attr)
                after[attr] = value
                setattr(org, attr, value)

        if name is not _UNSET and name is not None:
            apply("name", name.strip())
        if slug is not _UNSET and slug is not None:
            apply("slug", slug.lower())
        parent_changed = False
        if parent_organization_id is not _UNSET:
            if parent_organization_id is not None:
                hierarchy_service.validate_parent_assignment(
                    session, org.id, parent_organization_id
                )
            parent_changed = org.parent_organization_id != parent_organization_id
            apply("parent_organization_id", parent_organization_id)

        _flush_or_slug_conflict(session)

        record = None
        if after:
            action = AuditAction.ORG_PARENT_CHANGED if parent_changed else AuditAction.ORG_UPDATED
            record = audit_service.build_record(
                actor,
                action,
                ORGANIZATION.resource,
                org.id,
                organization_id=org.id,
                before=before,
                after=after,
            )
        return org, record

    org, record = run_in_transaction(db, work, serializable=True)
    if record is not None:
        audit_service.emit(audit_service.resolve_sink(db, sink), record)
    return org


# =============================================================================
# Listing
# =============================================================================

def list_organizations(
    db: Session,
    q: str | None = None,
    status: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[tuple[Organization, int]], int]:
    """
    List organizations with member counts, newest first.

    ``status`` is active or archived (pending deletion); ``q`` matches name or slug.
    """
    query = db.query(Organization)

    if status == "active":
        query = query.filter(Organization.deleted_at.is_(None))
    elif status == "archived":
        query = query.filter(Organization.deleted_at.is_not(None))
    if q:
        search_term = f"%{q}%"
        query = query.filter(
            or_(Organization.name.ilike(search_term), Organization.slug.ilike(search_term))
        )

    total = query.count()
    orgs = (
        query.order_by(Organization.created_at.desc(), Organization.id)
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    member_counts = dict(
        db.query(Member.organization_id, func.count(Member.id))
        .filter(Member.organization_id.in_([org.id for org in orgs]))
        .group_by(Member.organization_id)
        .all()
    )
    return [(org, member_counts.get(org.id, 0)) for org in orgs], total


# =============================================================================
# Detail
# =============================================================================

@dataclass
class ChildSummary:
    id: UUID
    name: str
    slug: str
    member_count: int
    deleted_at: Any = None


@dataclass
class OrganizationDetail:
    organization: Organization
    parent: Organization | None = None
    members: list[Member] = field(default_factory=list)
    children: list[ChildSummary] = field(default_factory=list)


def get_organization_detail(db: Session, org_id: UUID) -> OrganizationDetail:
    """Organization with its parent, members and direct children (with member counts)."""
    org = get_org_by_id(db, org_id)
    if not org:
        raise not_found("Organization", org_id)

    parent = None
    if org.parent_organization_id is not None:
        parent = get_org_by_id(db, org.parent_organization_id)

    member_count = func.count(Member.id)
    rows = (
        db.query(Organization, member_count)
        .outerjoin(Member, Member.organization_id == Organization.id)
        .filter(Organization.parent_organization_id == org.id)
        .group_by(Organization.id)
        .order_by(Organization.name)
        .all()
    )
    children = [
        ChildSummary(
            id=child.id,
            name=child.name,
            slug=child.slug,
            member_count=count,
            deleted_at=child.deleted_at,
        )
        for child, count in rows
    ]
    return OrganizationDetail(
        organization=org,
        parent=parent,
        members=member_service.list_members(db, org.id),
        children=children,
    )


# =============================================================================
# Lifecycle
# =============================================================================

def _expire_invitations(db: Session, org: Organization) -> dict[str, int]:
    return {"expired_invitations": invitation_service.expire_pending_invitations(db, org.id)}


def _clear_sessions(db: Session, org: Organization) -> dict[str, int]:
    return {"cleared_sessions": session_service.clear_active_organization(db, org.id)}


ORG_DELETE_CASCADES = (_expire_invitations, _clear_sessions)


def delete_organization(
    db: Session,
    org_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> Organization:
    """Platform soft-delete of a tenant (superadmin actor)."""
    return lifecycle_service.soft_delete(
        db,
        ORGANIZATION,
        org_id,
        actor,
        authorize=lifecycle_service.superadmin_authorizer(actor),
        cascades=ORG_DELETE_CASCADES,
        sink=sink,
    )


def delete_own_organization(
    db: Session,
    org_id: UUID,
    actor: Actor,
    confirm_name: str,
    sink: AuditSink | None = None,
) -> Organization:
    """
    Tenant self-service soft-delete.

    The actor must be an owner of the organization and must type its name.

    Raises:
        TenantAdminError(FORBIDDEN): actor is not an owner member
        TenantAdminError(NAME_CONFIRMATION_MISMATCH): typed name differs
    """
    return lifecycle_service.soft_delete(
        db,
        ORGANIZATION,
        org_id,
        actor,
        authorize=lifecycle_service.owner_authorizer(org_id, actor),
        guards=(lifecycle_service.name_confirmation_guard(confirm_name),),
        cascades=ORG_DELETE_CASCADES,
        sink=sink,
    )


def restore_organization(
    db: Session,
    org_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> Organization:
    return lifecycle_service.restore(
        db,
        ORGANIZATION,
        org_id,
        actor,
        authorize=lifecycle_service.superadmin_authorizer(actor),
        sink=sink,
    )


def reactivate_own_organization(
    db: Session,
    org_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> Organization:
    """Owner-initiated restore within the grace period."""
    return lifecycle_service.restore(
        db,
        ORGANIZATION,
        org_id,
        actor,
        authorize=lifecycle_service.owner_authorizer(org_id, actor),
        sink=sink,
    )
