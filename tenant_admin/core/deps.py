"""FastAPI dependencies for actor resolution, authorization, and database access.

Credentials are verified by the upstream gateway, which forwards the acting
user id in X-Actor-Id (and the real operator in X-Impersonator-Id when a
superadmin is impersonating someone).
"""

from typing import Generator
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from tenant_admin.db.models import User
from tenant_admin.db.session import SessionLocal
from tenant_admin.services.audit_service import Actor, AuditSink

ACTOR_HEADER = "X-Actor-Id"
IMPERSONATOR_HEADER = "X-Impersonator-Id"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_audit_sink() -> AuditSink | None:
    """Audit sink for request handlers; None selects the database sink."""
    return None


def get_current_user(
    x_actor_id: UUID | None = Header(None, alias=ACTOR_HEADER),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the acting user.

    Raises:
        HTTPException 401: header missing or user unknown
        HTTPException 403: account banned or pending deletion
    """
    if x_actor_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = db.get(User, x_actor_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active_account:
        raise HTTPException(status_code=403, detail="Account disabled")
    return user


def get_actor(
    user: User = Depends(get_current_user),
    x_impersonator_id: UUID | None = Header(None, alias=IMPERSONATOR_HEADER),
) -> Actor:
    return Actor.for_user(user.id, impersonator_id=x_impersonator_id)


def require_superadmin(
    user: User = Depends(get_current_user),
    actor: Actor = Depends(get_actor),
) -> Actor:
    """Platform routes: the acting user must be a superadmin."""
    if not user.is_superadmin:
        raise HTTPException(status_code=403, detail="Superadmin access required")
    return actor
