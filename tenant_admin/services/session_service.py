"""Session cascade helpers (sessions are issued by the auth layer)."""

from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from tenant_admin.db.models import UserSession


def clear_active_organization(db: Session, org_id: UUID) -> int:
    """Detach every session whose active organization is ``org_id``.

    Runs inside the caller's transaction. Returns the number of sessions cleared.
    """
    result = db.execute(
        update(UserSession)
        .where(UserSession.active_organization_id == org_id)
        .values(active_organization_id=None)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0
