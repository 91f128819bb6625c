"""User service - platform-level user lifecycle, bans and platform role.

Lifecycle, ban and role writes run serializable: the superadmin guard counts
other active superadmins, and two concurrent bans must not both see "one
other left".
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from tenant_admin.core.errors import ErrorKind, TenantAdminError, not_found
from tenant_admin.core.structured_logging import build_log_context
from tenant_admin.core.transactions import run_in_transaction
from tenant_admin.db.enums import AuditAction, PlatformRole
from tenant_admin.db.models import Member, User
from tenant_admin.services import audit_service, lifecycle_service, role_service
from tenant_admin.services.audit_service import Actor, AuditSink
from tenant_admin.services.lifecycle_service import USER

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _load_user_locked(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).with_for_update().first()
    if not user:
        raise not_found("User", user_id)
    return user


def _ban_snapshot(user: User) -> dict:
    return {
        "banned": user.banned,
        "ban_reason": user.ban_reason,
        "ban_expires": user.ban_expires,
    }


# =============================================================================
# Soft delete / restore
# =============================================================================

def delete_user(
    db: Session,
    user_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> User:
    """
    Soft-delete a user account.

    Raises:
        TenantAdminError: NOT_FOUND, ALREADY_PENDING_DELETION, SELF_ACTION,
            LAST_SUPERADMIN, SUPERADMIN_PROTECTION
    """
    return lifecycle_service.soft_delete(
        db,
        USER,
        user_id,
        actor,
        authorize=lifecycle_service.superadmin_authorizer(actor),
        guards=(
            lifecycle_service.self_action_guard(actor),
            lifecycle_service.superadmin_guard,
        ),
        sink=sink,
        serializable=True,
    )


def restore_user(
    db: Session,
    user_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> User:
    return lifecycle_service.restore(
        db,
        USER,
        user_id,
        actor,
        authorize=lifecycle_service.superadmin_authorizer(actor),
        guards=(lifecycle_service.self_action_guard(actor),),
        sink=sink,
        serializable=True,
    )


# =============================================================================
# Ban / unban
# =============================================================================

def ban_user(
    db: Session,
    user_id: UUID,
    actor: Actor,
    reason: str | None = None,
    expires: datetime | None = None,
    sink: AuditSink | None = None,
) -> User:
    """
    Ban a user. Independent of the soft-delete timestamps.

    Order: not found, self-action, superadmin guard, already banned.
    """

    def work(session: Session):
        lifecycle_service.require_superadmin_actor(session, actor)
        role_service.lock_superadmins(session)
        user = _load_user_locked(session, user_id)
        lifecycle_service.self_action_guard(actor)(session, user)
        lifecycle_service.superadmin_guard(session, user)
        if user.banned:
            raise TenantAdminError(ErrorKind.ALREADY_BANNED)

        before = _ban_snapshot(user)
        user.banned = True
        user.ban_reason = reason
        user.ban_expires = expires
        session.flush()

        record = audit_service.build_record(
            actor,
            AuditAction.USER_BANNED,
            USER.resource,
            user.id,
            before=before,
            after=_ban_snapshot(user),
        )
        return user, record

    user, record = run_in_transaction(db, work, serializable=True)
    audit_service.emit(audit_service.resolve_sink(db, sink), record)
    logger.info(
        "User banned",
        extra=build_log_context(
            actor_id=actor.user_id, user_id=user_id, action=record.action.value
        ),
    )
    return user


def unban_user(
    db: Session,
    user_id: UUID,
    actor: Actor,
    sink: AuditSink | None = None,
) -> User:
    """Clear the ban fields. Unbanning an account that is not banned is a no-op write."""

    def work(session: Session):
        lifecycle_service.require_superadmin_actor(session, actor)
        user = _load_user_locked(session, user_id)
        before = _ban_snapshot(user)
        user.banned = False
        user.ban_reason = None
        user.ban_expires = None
        session.flush()

        record = audit_service.build_record(
            actor,
            AuditAction.USER_UNBANNED,
            USER.resource,
            user.id,
            before=before,
            after=_ban_snapshot(user),
        )
        return user, record

    user, record = run_in_transaction(db, work, serializable=True)
    audit_service.emit(audit_service.resolve_sink(db, sink), record)
    return user


# =============================================================================
# Platform role
# =============================================================================

def change_platform_role(
    db: Session,
    user_id: UUID,
    role: PlatformRole,
    actor: Actor,
    sink: AuditSink | None = None,
) -> User:
    """
    Promote or demote a user at platform level.

    The last active superadmin cannot be demoted.
    """

    def work(session: Session):
        lifecycle_service.require_superadmin_actor(session, actor)
        role_service.lock_superadmins(session)
        user = _load_user_locked(session, user_id)
        lifecycle_service.self_action_guard(actor)(session, user)
        if user.role == role.value:
            return user, None
        if (
            user.is_superadmin
            and role_service.count_active_superadmins(session, exclude_user_id=user.id) == 0
        ):
            raise TenantAdminError(ErrorKind.LAST_SUPERADMIN)

        before = {"role": user.role}
        user.role = role.value
        session.flush()

        record = audit_service.build_record(
            actor,
            AuditAction.USER_ROLE_CHANGED,
            USER.resource,
            user.id,
            before=before,
            after={"role": user.role},
        )
        return user, record

    user, record = run_in_transaction(db, work, serializable=True)
    if record is not None:
        audit_service.emit(audit_service.resolve_sink(db, sink), record)
    return user


# =============================================================================
# Listing / detail
# =============================================================================

def list_users(
    db: Session,
    q: str | None = None,
    role: PlatformRole | None = None,
    status: str | None = None,
    organization_id: UUID | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[User], int]:
    """
    List platform users with filters and pagination, newest first.

    ``status`` is one of active (not banned, not deleted), banned or archived
    (pending deletion). ``q`` matches display name or email.
    """
    query = db.query(User)

    if role:
        query = query.filter(User.role == role.value)
    if status == "active":
        query = query.filter(User.banned.is_(False), User.deleted_at.is_(None))
    elif status == "banned":
        query = query.filter(User.banned.is_(True))
    elif status == "archived":
        query = query.filter(User.deleted_at.is_not(None))
    if organization_id:
        query = query.filter(
            User.id.in_(
                db.query(Member.user_id).filter(Member.organization_id == organization_id)
            )
        )
    if q:
        search_term = f"%{q}%"
        query = query.filter(or_(User.display_name.ilike(search_term), User.email.ilike(search_term)))

    total = query.count()
    users = (
        query.order_by(User.created_at.desc(), User.id)
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return users, total


@dataclass
class UserDetail:
    user: User
    memberships: list[Member] = field(default_factory=list)
    recent_activity: list[dict[str, Any]] = field(default_factory=list)


def get_user_detail(db: Session, user_id: UUID) -> UserDetail:
    """User with organization memberships and the latest audit entries about them."""
    user = db.get(User, user_id)
    if not user:
        raise not_found("User", user_id)
    memberships = (
        db.query(Member)
        .options(joinedload(Member.organization), joinedload(Member.role_ref))
        .filter(Member.user_id == user_id)
        .order_by(Member.created_at)
        .all()
    )
    return UserDetail(
        user=user,
        memberships=memberships,
        recent_activity=audit_service.list_audit_entries(db, USER.resource, user_id, limit=10),
    )


# =============================================================================
# Profile update
# =============================================================================

def update_user(
    db: Session,
    user_id: UUID,
    actor: Actor,
    display_name: str | None = _UNSET,
    email: str | None = _UNSET,
    sink: AuditSink | None = None,
) -> User:
    """
    Update profile fields. Platform role changes go through change_platform_role.

    Raises:
        TenantAdminError(NOT_FOUND): user does not exist
        TenantAdminError(EMAIL_CONFLICT): email belongs to another account
    """

    def work(session: Session):
        lifecycle_service.require_superadmin_actor(session, actor)
        user = _load_user_locked(session, user_id)

        before: dict[str, Any] = {}
        after: dict[str, Any] = {}
        if display_name is not _UNSET and display_name is not None:
            value = display_name.strip()
            if value != user.display_name:
                before["display_name"] = user.display_name
                after["display_name"] = value
                user.display_name = value
        if email is not _UNSET and email is not None:
            value = email.strip().lower()
            if value != user.email.lower():
                taken = (
                    session.query(User.id)
                    .filter(func.lower(User.email) == value, User.id != user.id)
                    .first()
                )
                if taken:
                    raise TenantAdminError(ErrorKind.EMAIL_CONFLICT)
                before["email"] = user.email
                after["email"] = value
                user.email = value

        if not after:
            return user, None
        try:
            session.flush()
        except IntegrityError as exc:
            raise TenantAdminError(ErrorKind.EMAIL_CONFLICT) from exc

        record = audit_service.build_record(
            actor,
            AuditAction.USER_UPDATED,
            USER.resource,
            user.id,
            before=before,
            after=after,
        )
        return user, record

    user, record = run_in_transaction(db, work)
    if record is not None:
        audit_service.emit(audit_service.resolve_sink(db, sink), record)
    return user
