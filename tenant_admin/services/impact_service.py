"""Deletion impact estimate shown before an organization is soft-deleted."""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from tenant_admin.core.errors import not_found
from tenant_admin.db.models import Member, Organization, User
from tenant_admin.services import hierarchy_service


@dataclass(frozen=True)
class DeletionImpact:
    member_count: int
    active_members: int
    child_org_count: int
    child_member_count: int


def estimate_org_deletion_impact(db: Session, org_id: UUID) -> DeletionImpact:
    """
    Read-only counts for the delete confirmation dialog.

    child_org_count counts direct children only; child_member_count sums
    members across every descendant.
    """
    org = db.query(Organization.id).filter(Organization.id == org_id).first()
    if not org:
        raise not_found("Organization", org_id)

    member_count = (
        db.query(func.count(Member.id)).filter(Member.organization_id == org_id).scalar() or 0
    )
    active_members = (
        db.query(func.count(Member.id))
        .join(User, User.id == Member.user_id)
        .filter(
            Member.organization_id == org_id,
            User.banned.is_(False),
            User.deleted_at.is_(None),
        )
        .scalar()
        or 0
    )
    child_org_count = (
        db.query(func.count(Organization.id))
        .filter(Organization.parent_organization_id == org_id)
        .scalar()
        or 0
    )

    descendant_ids = hierarchy_service.list_descendants(db, org_id)
    child_member_count = 0
    if descendant_ids:
        child_member_count = (
            db.query(func.count(Member.id))
            .filter(Member.organization_id.in_(descendant_ids))
            .scalar()
            or 0
        )

    return DeletionImpact(
        member_count=member_count,
        active_members=active_members,
        child_org_count=child_org_count,
        child_member_count=child_member_count,
    )
