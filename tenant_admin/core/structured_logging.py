"""Structured logging helpers (identifier-only, no names or emails)."""

import logging
from typing import Any
from uuid import UUID

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger."""
    root = logging.getLogger()
    if not any(getattr(h, "_tenant_admin", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._tenant_admin = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level.upper())


def build_log_context(
    *,
    user_id: str | UUID | None = None,
    org_id: str | UUID | None = None,
    actor_id: str | UUID | None = None,
    action: str | None = None,
    resource_id: str | UUID | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict suitable for ``extra=``."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if org_id:
        context["org_id"] = str(org_id)
    if actor_id:
        context["actor_id"] = str(actor_id)
    if action:
        context["action"] = action
    if resource_id:
        context["resource_id"] = str(resource_id)
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
