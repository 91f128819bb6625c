"""Audit emission - who did what to which tenant resource.

Audit records are built inside the primary transaction and written after it
commits. A sink failure is logged and never fails or rolls back the primary
operation.

Guidelines:
- Snapshots hold only the fields that changed
- Use IDs instead of names or emails in metadata
- Values are JSON-safe (datetimes as ISO-8601, UUIDs as strings)
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Protocol
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from tenant_admin.core.structured_logging import build_log_context
from tenant_admin.db.enums import ActorType, AuditAction
from tenant_admin.db.models import AuditLog, User

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
SENSITIVE_KEY_FRAGMENTS = ("password", "secret", "token", "apikey", "api_key")


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class Actor:
    """The user (or system job) performing an operation."""
    user_id: UUID | None
    actor_type: ActorType = ActorType.USER
    impersonator_id: UUID | None = None

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, actor_type=ActorType.SYSTEM)

    @classmethod
    def for_user(cls, user_id: UUID, impersonator_id: UUID | None = None) -> "Actor":
        if impersonator_id is not None:
            return cls(user_id, ActorType.IMPERSONATION, impersonator_id)
        return cls(user_id)


@dataclass(frozen=True)
class AuditRecord:
    actor_id: UUID | None
    actor_type: ActorType
    action: AuditAction
    resource: str
    resource_id: str
    impersonator_id: UUID | None = None
    organization_id: UUID | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        return json_safe(asdict(self))


class AuditSink(Protocol):
    def write(self, record: AuditRecord) -> None: ...


def json_safe(value: Any) -> Any:
    """Convert a snapshot to JSON-compatible primitives."""
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def build_record(
    actor: Actor,
    action: AuditAction,
    resource: str,
    resource_id: UUID | str,
    *,
    organization_id: UUID | None = None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditRecord:
    return AuditRecord(
        actor_id=actor.user_id,
        actor_type=actor.actor_type,
        action=action,
        resource=resource,
        resource_id=str(resource_id),
        impersonator_id=actor.impersonator_id,
        organization_id=organization_id,
        before=json_safe(before) if before is not None else None,
        after=json_safe(after) if after is not None else None,
        metadata=json_safe(metadata) if metadata is not None else None,
    )


# =============================================================================
# Sinks
# =============================================================================

class DatabaseAuditSink:
    """Persist records to audit_logs using a dedicated session."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def write(self, record: AuditRecord) -> None:
        session = self._session_factory()
        try:
            session.add(
                AuditLog(
                    actor_id=record.actor_id,
                    actor_type=record.actor_type.value,
                    impersonator_id=record.impersonator_id,
                    organization_id=record.organization_id,
                    action=record.action.value,
                    resource=record.resource,
                    resource_id=record.resource_id,
                    before=record.before,
                    after=record.after,
                    metadata_=record.metadata,
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def resolve_sink(db: Session, sink: AuditSink | None) -> AuditSink:
    """Default to a database sink bound to the caller's engine."""
    if sink is not None:
        return sink
    return DatabaseAuditSink(sessionmaker(bind=db.get_bind(), autoflush=False))


def emit(sink: AuditSink, record: AuditRecord) -> bool:
    """
    Write one audit record after the primary commit.

    Returns:
        True if the sink accepted the record, False if it failed (the failure
        is logged with traceback).
    """
    try:
        sink.write(record)
    except Exception:
        logger.exception(
            "Audit sink failed for %s",
            record.action.value,
            extra=build_log_context(
                actor_id=record.actor_id,
                org_id=record.organization_id,
                action=record.action.value,
                resource_id=record.resource_id,
            ),
        )
        return False
    return True


# =============================================================================
# Read side
# =============================================================================

def redact_sensitive_fields(data: Any) -> Any:
    """Recursively replace values of credential-like keys with [REDACTED]."""
    if isinstance(data, dict):
        redacted = {}
        for key, value in data.items():
            lowered = str(key).lower()
            if any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS):
                redacted[key] = REDACTED
            else:
                redacted[key] = redact_sensitive_fields(value)
        return redacted
    if isinstance(data, list):
        return [redact_sensitive_fields(item) for item in data]
    return data


def _entry(row: AuditLog) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "timestamp": row.timestamp.isoformat() if row.timestamp else None,
        "actor_id": str(row.actor_id) if row.actor_id else None,
        "actor_type": row.actor_type,
        "impersonator_id": str(row.impersonator_id) if row.impersonator_id else None,
        "organization_id": str(row.organization_id) if row.organization_id else None,
        "action": row.action,
        "resource": row.resource,
        "resource_id": row.resource_id,
        "before": redact_sensitive_fields(row.before),
        "after": redact_sensitive_fields(row.after),
        "metadata": redact_sensitive_fields(row.metadata_),
    }


def list_audit_entries(
    db: Session,
    resource: str,
    resource_id: UUID | str,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Most recent audit entries for a resource, redacted for display."""
    rows = (
        db.query(AuditLog)
        .filter(AuditLog.resource == resource, AuditLog.resource_id == str(resource_id))
        .order_by(AuditLog.timestamp.desc())
        .limit(limit)
        .all()
    )
    return [_entry(row) for row in rows]


def list_audit_logs(
    db: Session,
    actor_id: UUID | None = None,
    action: str | None = None,
    resource: str | None = None,
    resource_id: str | None = None,
    organization_id: UUID | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[dict[str, Any]], int]:
    """
    Platform-wide audit trail, newest first, with actor names resolved.

    Actors whose account no longer exists are shown as "[Deleted User]".
    """
    query = db.query(AuditLog)

    if actor_id:
        query = query.filter(AuditLog.actor_id == actor_id)
    if action:
        query = query.filter(AuditLog.action == action)
    if resource:
        query = query.filter(AuditLog.resource == resource)
    if resource_id:
        query = query.filter(AuditLog.resource_id == str(resource_id))
    if organization_id:
        query = query.filter(AuditLog.organization_id == organization_id)
    if start_date:
        query = query.filter(AuditLog.timestamp >= start_date)
    if end_date:
        query = query.filter(AuditLog.timestamp <= end_date)

    total = query.count()
    rows = (
        query.order_by(AuditLog.timestamp.desc(), AuditLog.id)
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    actor_ids = {row.actor_id for row in rows if row.actor_id}
    actor_names = {}
    if actor_ids:
        actor_names = dict(
            db.query(User.id, User.display_name).filter(User.id.in_(actor_ids)).all()
        )

    entries = []
    for row in rows:
        entry = _entry(row)
        if row.actor_id:
            entry["actor_name"] = actor_names.get(row.actor_id, "[Deleted User]")
        else:
            entry["actor_name"] = None
        entries.append(entry)
    return entries, total
