"""Lifecycle engine - soft-delete and restore with guards, cascades and audit.

States: active -> pending_deletion -> active (restore). Purge after the grace
period is performed by an external job.

Organizations and users share this engine through a LifecycleSubject, which
names the model, the audit resource/actions and how to find the owning
organization for audit records.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from tenant_admin.core.config import settings
from tenant_admin.core.errors import ErrorKind, TenantAdminError, not_found
from tenant_admin.core.structured_logging import build_log_context
from tenant_admin.core.transactions import run_in_transaction
from tenant_admin.db.enums import ActorType, AuditAction, PlatformRole
from tenant_admin.db.models import Member, Organization, SoftDeleteMixin, User
from tenant_admin.services import audit_service, role_service
from tenant_admin.services.audit_service import Actor, AuditSink

logger = logging.getLogger(__name__)

# A guard inspects the locked entity and raises TenantAdminError to refuse.
Guard = Callable[[Session, Any], None]
# A cascade runs inside the delete transaction; it may return audit metadata.
Cascade = Callable[[Session, Any], dict[str, Any] | None]
# An authorizer checks the actor before anything is loaded.
Authorizer = Callable[[Session], Any]


@dataclass(frozen=True)
class LifecycleSubject:
    model: type[SoftDeleteMixin]
    resource: str
    deleted_action: AuditAction
    restored_action: AuditAction
    organization_id_of: Callable[[Any], UUID | None]


ORGANIZATION = LifecycleSubject(
    model=Organization,
    resource="organization",
    deleted_action=AuditAction.ORG_DELETED,
    restored_action=AuditAction.ORG_RESTORED,
    organization_id_of=lambda org: org.id,
)

USER = LifecycleSubject(
    model=User,
    resource="user",
    deleted_action=AuditAction.USER_DELETED,
    restored_action=AuditAction.USER_RESTORED,
    organization_id_of=lambda user: None,
)


def lifecycle_snapshot(entity: SoftDeleteMixin) -> dict[str, Any]:
    return {
        "deleted_at": entity.deleted_at,
        "delete_scheduled_for": entity.delete_scheduled_for,
    }


def _load_locked(db: Session, subject: LifecycleSubject, entity_id: UUID):
    entity = (
        db.query(subject.model)
        .filter(subject.model.id == entity_id)
        .with_for_update()
        .first()
    )
    if entity is None:
        raise not_found(subject.resource.capitalize(), entity_id)
    return entity


# =============================================================================
# Transitions
# =============================================================================

def soft_delete(
    db: Session,
    subject: LifecycleSubject,
    entity_id: UUID,
    actor: Actor,
    *,
    authorize: Authorizer | None = None,
    guards: Sequence[Guard] = (),
    cascades: Sequence[Cascade] = (),
    sink: AuditSink | None = None,
    serializable: bool = False,
):
    """
    Move an entity to pending_deletion.

    Order: authorization, not found, already pending, guards (first failure
    wins), then timestamps and cascades in one transaction. The audit record
    is emitted after commit.

    Raises:
        TenantAdminError: NOT_FOUND, ALREADY_PENDING_DELETION, or a guard's kind
    """

    def work(session: Session):
        if authorize is not None:
            authorize(session)
        entity = _load_locked(session, subject, entity_id)
        if entity.is_pending_deletion:
            raise TenantAdminError(ErrorKind.ALREADY_PENDING_DELETION)
        for guard in guards:
            guard(session, entity)

        before = lifecycle_snapshot(entity)
        entity.mark_pending_deletion(
            datetime.now(timezone.utc), timedelta(days=settings.DELETE_GRACE_DAYS)
        )
        session.flush()

        metadata: dict[str, Any] = {}
        for cascade in cascades:
            metadata.update(cascade(session, entity) or {})

        record = audit_service.build_record(
            actor,
            subject.deleted_action,
            subject.resource,
            entity.id,
            organization_id=subject.organization_id_of(entity),
            before=before,
            after=lifecycle_snapshot(entity),
            metadata=metadata or None,
        )
        return entity, record

    entity, record = run_in_transaction(db, work, serializable=serializable)
    audit_service.emit(audit_service.resolve_sink(db, sink), record)
    logger.info(
        "%s scheduled for deletion",
        subject.resource,
        extra=build_log_context(
            actor_id=actor.user_id,
            org_id=record.organization_id,
            action=record.action.value,
            resource_id=record.resource_id,
        ),
    )
    return entity


def restore(
    db: Session,
    subject: LifecycleSubject,
    entity_id: UUID,
    actor: Actor,
    *,
    authorize: Authorizer | None = None,
    guards: Sequence[Guard] = (),
    sink: AuditSink | None = None,
    serializable: bool = False,
):
    """
    Return a pending_deletion entity to active.

    An entity that is not pending deletion is left untouched and no audit
    record is written.

    Raises:
        TenantAdminError: NOT_FOUND, NOT_PENDING_DELETION, or a guard's kind
    """

    def work(session: Session):
        if authorize is not None:
            authorize(session)
        entity = _load_locked(session, subject, entity_id)
        if not entity.is_pending_deletion:
            raise TenantAdminError(ErrorKind.NOT_PENDING_DELETION)
        for guard in guards:
            guard(session, entity)

        before = lifecycle_snapshot(entity)
        entity.clear_pending_deletion()
        session.flush()

        record = audit_service.build_record(
            actor,
            subject.restored_action,
            subject.resource,
            entity.id,
            organization_id=subject.organization_id_of(entity),
            before=before,
            after=lifecycle_snapshot(entity),
        )
        return entity, record

    entity, record = run_in_transaction(db, work, serializable=serializable)
    audit_service.emit(audit_service.resolve_sink(db, sink), record)
    logger.info(
        "%s restored",
        subject.resource,
        extra=build_log_context(
            actor_id=actor.user_id,
            org_id=record.organization_id,
            action=record.action.value,
            resource_id=record.resource_id,
        ),
    )
    return entity


# =============================================================================
# Shared guards
# =============================================================================

def self_action_guard(actor: Actor) -> Guard:
    """Refuse when the actor targets their own account."""

    def guard(db: Session, user: User) -> None:
        if actor.user_id is not None and actor.user_id == user.id:
            raise TenantAdminError(ErrorKind.SELF_ACTION)

    return guard


def superadmin_guard(db: Session, user: User) -> None:
    """Protect superadmins; the last active one gets the more specific error."""
    if user.role != PlatformRole.SUPERADMIN.value:
        return
    role_service.lock_superadmins(db)
    if role_service.count_active_superadmins(db, exclude_user_id=user.id) == 0:
        raise TenantAdminError(ErrorKind.LAST_SUPERADMIN)
    raise TenantAdminError(ErrorKind.SUPERADMIN_PROTECTION)


def require_superadmin_actor(db: Session, actor: Actor) -> User | None:
    """
    Platform paths: the actor must be an active superadmin.

    System actors (scheduled jobs, scripts) are always allowed.
    """
    if actor.actor_type == ActorType.SYSTEM:
        return None
    user = db.get(User, actor.user_id) if actor.user_id is not None else None
    if user is None or not user.is_superadmin or not user.is_active_account:
        raise TenantAdminError(ErrorKind.FORBIDDEN, "Superadmin access required")
    return user


def require_owner_membership(db: Session, org_id: UUID, actor: Actor) -> Member:
    """Tenant self-service paths: the actor must hold the owner role in the org."""
    member = None
    if actor.user_id is not None:
        member = (
            db.query(Member)
            .filter(Member.organization_id == org_id, Member.user_id == actor.user_id)
            .first()
        )
    if member is None or not role_service.is_owner_role(member.role_ref):
        raise TenantAdminError(ErrorKind.FORBIDDEN, "Organization owner access required")
    return member


def superadmin_authorizer(actor: Actor) -> Authorizer:
    return lambda db: require_superadmin_actor(db, actor)


def owner_authorizer(org_id: UUID, actor: Actor) -> Authorizer:
    return lambda db: require_owner_membership(db, org_id, actor)


def name_confirmation_guard(confirm_name: str) -> Guard:
    """Require the typed name to match the organization name (case-insensitive)."""

    def guard(db: Session, org: Organization) -> None:
        if (confirm_name or "").strip().lower() != org.name.strip().lower():
            raise TenantAdminError(ErrorKind.NAME_CONFIRMATION_MISMATCH)

    return guard
