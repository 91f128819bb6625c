"""Invitation service - invite, list, revoke and expire organization invitations."""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from tenant_admin.core.config import settings
from tenant_admin.core.errors import ErrorKind, TenantAdminError, not_found
from tenant_admin.core.structured_logging import build_log_context
from tenant_admin.core.transactions import run_in_transaction
from tenant_admin.db.enums import AuditAction, InvitationStatus
from tenant_admin.db.models import Invitation, Member, Organization, User
from tenant_admin.services import audit_service, lifecycle_service, role_service
from tenant_admin.services.audit_service import Actor, AuditSink

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _get_live_org(db: Session, org_id: UUID) -> Organization:
    org = db.query(Organization).filter(Organization.id == org_id).first()
    if not org:
        raise not_found("Organization", org_id)
    return org


# =============================================================================
# Invite
# =============================================================================

def invite_member(
    db: Session,
    org_id: UUID,
    email: str,
    role_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> Invitation:
    """
    Invite an email address to join the organization with a tenant role.

    A previous non-pending invitation for the same address is reopened
    instead of duplicated.

    Raises:
        TenantAdminError(NOT_FOUND): org or role not found in the tenant
        TenantAdminError(MEMBER_ALREADY_EXISTS): address already belongs to a member
        TenantAdminError(INVITATION_ALREADY_PENDING): a pending invitation exists
    """
    email = _normalize_email(email)

    def work(session: Session):
        lifecycle_service.require_superadmin_actor(session, actor)
        _get_live_org(session, org_id)
        role = role_service.get_tenant_role(session, org_id, role_id)

        existing_member = (
            session.query(Member.id)
            .join(User, User.id == Member.user_id)
            .filter(Member.organization_id == org_id, func.lower(User.email) == email)
            .first()
        )
        if existing_member:
            raise TenantAdminError(ErrorKind.MEMBER_ALREADY_EXISTS)

        previous = (
            session.query(Invitation)
            .filter(Invitation.organization_id == org_id, Invitation.email == email)
            .order_by(Invitation.created_at.desc())
            .with_for_update()
            .all()
        )
        if any(inv.status == InvitationStatus.PENDING.value for inv in previous):
            raise TenantAdminError(ErrorKind.INVITATION_ALREADY_PENDING)

        expires_at = datetime.now(timezone.utc) + timedelta(days=settings.INVITE_EXPIRY_DAYS)
        if previous:
            invitation = previous[0]
            invitation.status = InvitationStatus.PENDING.value
            invitation.role = role.slug
            invitation.inviter_id = actor.user_id
            invitation.expires_at = expires_at
        else:
            invitation = Invitation(
                organization_id=org_id,
                email=email,
                role=role.slug,
                status=InvitationStatus.PENDING.value,
                inviter_id=actor.user_id,
                expires_at=expires_at,
            )
            session.add(invitation)
        session.flush()

        record = audit_service.build_record(
            actor,
            AuditAction.MEMBER_INVITED,
            "invitation",
            invitation.id,
            organization_id=org_id,
            after={"role_id": role.id, "role": role.slug, "expires_at": expires_at},
        )
        return invitation, record

    invitation, record = run_in_transaction(db, work)
    audit_service.emit(audit_service.resolve_sink(db, sink), record)
    logger.info(
        "Invitation created",
        extra=build_log_context(
            actor_id=actor.user_id,
            org_id=org_id,
            action=record.action.value,
            resource_id=record.resource_id,
        ),
    )
    return invitation


# =============================================================================
# Read / revoke
# =============================================================================

def list_pending_invitations(db: Session, org_id: UUID) -> list[Invitation]:
    _get_live_org(db, org_id)
    return (
        db.query(Invitation)
        .filter(
            Invitation.organization_id == org_id,
            Invitation.status == InvitationStatus.PENDING.value,
        )
        .order_by(Invitation.created_at.desc())
        .all()
    )


def revoke_invitation(
    db: Session,
    org_id: UUID,
    invitation_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> Invitation:
    """
    Cancel a pending invitation.

    Raises:
        TenantAdminError(NOT_FOUND): no pending invitation with that id in the org
    """

    def work(session: Session):
        lifecycle_service.require_superadmin_actor(session, actor)
        invitation = (
            session.query(Invitation)
            .filter(
                Invitation.id == invitation_id,
                Invitation.organization_id == org_id,
                Invitation.status == InvitationStatus.PENDING.value,
            )
            .with_for_update()
            .first()
        )
        if not invitation:
            raise not_found("Invitation", invitation_id)
        invitation.status = InvitationStatus.CANCELED.value
        session.flush()

        record = audit_service.build_record(
            actor,
            AuditAction.INVITATION_REVOKED,
            "invitation",
            invitation.id,
            organization_id=org_id,
            before={"status": InvitationStatus.PENDING.value},
            after={"status": InvitationStatus.CANCELED.value},
        )
        return invitation, record

    invitation, record = run_in_transaction(db, work)
    audit_service.emit(audit_service.resolve_sink(db, sink), record)
    return invitation


# =============================================================================
# Cascade
# =============================================================================

def expire_pending_invitations(db: Session, org_id: UUID) -> int:
    """Mark every pending invitation of the org expired.

    Runs inside the caller's transaction. Returns the number expired.
    """
    result = db.execute(
        update(Invitation)
        .where(
            Invitation.organization_id == org_id,
            Invitation.status == InvitationStatus.PENDING.value,
        )
        .values(status=InvitationStatus.EXPIRED.value)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0
