"""Member service - role changes, removal and ownership transfer.

Every write that can reduce the number of owners runs serializable and locks
the organization's owner rows in id order before touching the member, so two
concurrent demotions of the last two owners cannot both succeed and cannot
deadlock each other.
"""

import logging
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from tenant_admin.core.errors import ErrorKind, TenantAdminError, not_found
from tenant_admin.core.permissions import ADMIN_ROLE_SLUG, OWNER_ROLE_SLUG
from tenant_admin.core.structured_logging import build_log_context
from tenant_admin.core.transactions import run_in_transaction
from tenant_admin.db.enums import AuditAction
from tenant_admin.db.models import Member, Role
from tenant_admin.services import audit_service, lifecycle_service, role_service
from tenant_admin.services.audit_service import Actor, AuditSink

logger = logging.getLogger(__name__)


def list_members(db: Session, org_id: UUID) -> list[Member]:
    return (
        db.query(Member)
        .options(joinedload(Member.user), joinedload(Member.role_ref))
        .filter(Member.organization_id == org_id)
        .order_by(Member.created_at)
        .all()
    )


def _load_member_locked(db: Session, org_id: UUID, member_id: UUID) -> Member:
    member = (
        db.query(Member)
        .filter(Member.id == member_id, Member.organization_id == org_id)
        .with_for_update()
        .first()
    )
    if not member:
        raise not_found("Member", member_id)
    return member


def _load_pair_locked(
    db: Session, org_id: UUID, first_id: UUID, second_id: UUID
) -> tuple[Member, Member]:
    """Lock two members of the organization in id order."""
    rows = {
        m.id: m
        for m in db.query(Member)
        .filter(Member.organization_id == org_id, Member.id.in_([first_id, second_id]))
        .order_by(Member.id)
        .with_for_update()
        .all()
    }
    for member_id in (first_id, second_id):
        if member_id not in rows:
            raise not_found("Member", member_id)
    return rows[first_id], rows[second_id]


def _role_snapshot(member: Member) -> dict:
    return {"role": member.role, "role_id": member.role_id}


def _assign_role(member: Member, role: Role) -> None:
    member.role_ref = role
    member.role_id = role.id
    member.role = role.slug


def ensure_not_last_owner(db: Session, org_id: UUID, member: Member) -> None:
    """
    Refuse to demote or remove the only active owner of an organization.

    Raises:
        TenantAdminError(LAST_OWNER_CONSTRAINT)

    Callers lock the owner rows (role_service.lock_owner_members) before
    loading the member, so concurrent demotions take locks in one order.
    """
    if not role_service.is_owner_role(member.role_ref):
        return
    if role_service.count_active_owners(db, org_id, exclude_member_id=member.id) == 0:
        raise TenantAdminError(ErrorKind.LAST_OWNER_CONSTRAINT)


# =============================================================================
# Role change / removal
# =============================================================================

def change_member_role(
    db: Session,
    org_id: UUID,
    member_id: UUID,
    role_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> Member:
    """
    Assign a tenant role to a member.

    Raises:
        TenantAdminError(NOT_FOUND): role or member not in the tenant
        TenantAdminError(LAST_OWNER_CONSTRAINT): would leave no active owner
    """

    def work(session: Session):
        lifecycle_service.require_superadmin_actor(session, actor)
        role = role_service.get_tenant_role(session, org_id, role_id)
        role_service.lock_owner_members(session, org_id)
        member = _load_member_locked(session, org_id, member_id)
        if member.role_id == role.id:
            return member, None
        if not role_service.is_owner_role(role):
            ensure_not_last_owner(session, org_id, member)

        before = _role_snapshot(member)
        _assign_role(member, role)
        session.flush()

        record = audit_service.build_record(
            actor,
            AuditAction.MEMBER_ROLE_CHANGED,
            "member",
            member.id,
            organization_id=org_id,
            before=before,
            after=_role_snapshot(member),
        )
        return member, record

    member, record = run_in_transaction(db, work, serializable=True)
    if record is not None:
        audit_service.emit(audit_service.resolve_sink(db, sink), record)
        logger.info(
            "Member role changed",
            extra=build_log_context(
                actor_id=actor.user_id,
                org_id=org_id,
                action=record.action.value,
                resource_id=record.resource_id,
            ),
        )
    return member


def remove_member(
    db: Session,
    org_id: UUID,
    member_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> None:
    """
    Delete a membership.

    Raises:
        TenantAdminError(NOT_FOUND): member not in the tenant
        TenantAdminError(LAST_OWNER_CONSTRAINT): member is the only active owner
    """

    def work(session: Session):
        lifecycle_service.require_superadmin_actor(session, actor)
        role_service.lock_owner_members(session, org_id)
        member = _load_member_locked(session, org_id, member_id)
        ensure_not_last_owner(session, org_id, member)

        record = audit_service.build_record(
            actor,
            AuditAction.MEMBER_REMOVED,
            "member",
            member.id,
            organization_id=org_id,
            before={"user_id": member.user_id, **_role_snapshot(member)},
        )
        session.delete(member)
        session.flush()
        return record

    record = run_in_transaction(db, work, serializable=True)
    audit_service.emit(audit_service.resolve_sink(db, sink), record)


# =============================================================================
# Ownership transfer
# =============================================================================

def transfer_ownership(
    db: Session,
    org_id: UUID,
    target_member_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> Member:
    """
    Hand the owner role to an admin member; the current owner becomes admin.

    Raises:
        TenantAdminError(FORBIDDEN): actor is not an owner of the organization
        TenantAdminError(SELF_ACTION): target is the actor's own membership
        TenantAdminError(NOT_FOUND): target member not in the organization
        TenantAdminError(LAST_OWNER_CONSTRAINT): target is not an admin
    """

    def work(session: Session):
        current = lifecycle_service.require_owner_membership(session, org_id, actor)
        if current.id == target_member_id:
            raise TenantAdminError(ErrorKind.SELF_ACTION)
        current, target = _load_pair_locked(session, org_id, current.id, target_member_id)

        owner_role = role_service.get_role_by_slug(session, org_id, OWNER_ROLE_SLUG)
        admin_role = role_service.get_role_by_slug(session, org_id, ADMIN_ROLE_SLUG)
        if owner_role is None or admin_role is None:
            raise TenantAdminError(ErrorKind.INTERNAL, "Default roles not found")
        if target.role_id != admin_role.id:
            raise TenantAdminError(
                ErrorKind.LAST_OWNER_CONSTRAINT,
                "Target must be an Admin in the same organization",
            )

        _assign_role(current, admin_role)
        _assign_role(target, owner_role)
        session.flush()

        record = audit_service.build_record(
            actor,
            AuditAction.MEMBER_OWNERSHIP_TRANSFERRED,
            "member",
            target.id,
            organization_id=org_id,
            before={"owner_member_id": current.id},
            after={"owner_member_id": target.id},
        )
        return target, record

    target, record = run_in_transaction(db, work, serializable=True)
    audit_service.emit(audit_service.resolve_sink(db, sink), record)
    return target
