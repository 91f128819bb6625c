"""Audit log read schemas."""

from typing import Any

from pydantic import BaseModel


class AuditEntryRead(BaseModel):
    """Redacted audit entry."""

    id: str
    timestamp: str | None
    actor_id: str | None
    actor_name: str | None = None
    actor_type: str
    impersonator_id: str | None
    organization_id: str | None
    action: str
    resource: str
    resource_id: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    metadata: dict[str, Any] | None


class AuditLogListResponse(BaseModel):
    items: list[AuditEntryRead]
    total: int
    page: int
    per_page: int
