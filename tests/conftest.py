"""
Test configuration and fixtures.

Provides:
- A fresh SQLite file database per test (schema from Base.metadata)
- Factory fixtures for organizations, users, members, invitations, sessions
- Recording / failing audit sinks
- HTTPX AsyncClient against the FastAPI app with db and sink overrides
- Recording of requested transaction isolation levels
"""
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

# The app builds a module-level engine from settings at import time.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from tenant_admin.core import transactions
from tenant_admin.core.deps import get_audit_sink, get_db
from tenant_admin.db.base import Base
from tenant_admin.db.enums import InvitationStatus, PlatformRole
from tenant_admin.db.models import Invitation, Member, Organization, User, UserSession
from tenant_admin.db.session import build_engine
from tenant_admin.main import app
from tenant_admin.services import role_service
from tenant_admin.services.audit_service import Actor, AuditRecord


# =============================================================================
# Audit sinks
# =============================================================================

class RecordingAuditSink:
    """Collects audit records in memory."""

    def __init__(self):
        self.records: list[AuditRecord] = []

    def write(self, record: AuditRecord) -> None:
        self.records.append(record)

    @property
    def actions(self) -> list[str]:
        return [r.action.value for r in self.records]


class FailingAuditSink:
    def write(self, record: AuditRecord) -> None:
        raise RuntimeError("audit store unavailable")


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def failing_sink() -> FailingAuditSink:
    return FailingAuditSink()


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'tenant_admin.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user(db: Session):
    def _make(
        role: PlatformRole = PlatformRole.USER,
        banned: bool = False,
        deleted: bool = False,
        email: str | None = None,
    ) -> User:
        user = User(
            email=email or f"user-{uuid.uuid4().hex[:8]}@test.com",
            display_name="Test User",
            role=role.value,
            banned=banned,
        )
        if deleted:
            user.mark_pending_deletion(datetime.now(timezone.utc), timedelta(days=30))
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_org(db: Session):
    def _make(name: str = "Acme Corp", parent: Organization | None = None) -> Organization:
        org = Organization(
            name=name,
            slug=f"org-{uuid.uuid4().hex[:8]}",
            parent_organization_id=parent.id if parent else None,
        )
        db.add(org)
        db.flush()
        role_service.seed_default_roles(db, org.id)
        db.commit()
        return org

    return _make


@pytest.fixture
def add_member(db: Session):
    def _add(org: Organization, user: User, role_slug: str | None = "member") -> Member:
        role = role_service.get_role_by_slug(db, org.id, role_slug) if role_slug else None
        member = Member(
            user_id=user.id,
            organization_id=org.id,
            role=role.slug if role else "member",
            role_id=role.id if role else None,
        )
        db.add(member)
        db.commit()
        return member

    return _add


@pytest.fixture
def make_invitation(db: Session):
    def _make(
        org: Organization,
        email: str | None = None,
        status: InvitationStatus = InvitationStatus.PENDING,
    ) -> Invitation:
        invitation = Invitation(
            organization_id=org.id,
            email=email or f"invitee-{uuid.uuid4().hex[:8]}@test.com",
            role="member",
            status=status.value,
            expires_at=datetime.now(timezone.utc) + timedelta(days=7),
        )
        db.add(invitation)
        db.commit()
        return invitation

    return _make


@pytest.fixture
def make_session(db: Session):
    def _make(user: User, active_org: Organization | None = None) -> UserSession:
        session = UserSession(
            user_id=user.id,
            active_organization_id=active_org.id if active_org else None,
            expires_at=datetime.now(timezone.utc) + timedelta(days=1),
        )
        db.add(session)
        db.commit()
        return session

    return _make


@pytest.fixture
def superadmin(make_user) -> User:
    return make_user(role=PlatformRole.SUPERADMIN)


@pytest.fixture
def platform_actor(superadmin: User) -> Actor:
    return Actor.for_user(superadmin.id)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture
async def client(db: Session, audit_sink: RecordingAuditSink) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient bound to the test database and recording audit sink."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_sink] = lambda: audit_sink

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def headers_for():
    """Gateway headers identifying the acting user."""

    def _headers(user: User) -> dict[str, str]:
        return {"X-Actor-Id": str(user.id)}

    return _headers


# =============================================================================
# Isolation level
# =============================================================================

@pytest.fixture
def isolation_requests(monkeypatch) -> list[str]:
    """
    Treat the test bind as PostgreSQL and record requested isolation levels.

    SQLite cannot honour per-transaction isolation, so the recorded request is
    dropped before the real Session.connection runs.
    """
    requested: list[str] = []
    original = Session.connection

    def connection(self, bind_arguments=None, execution_options=None):
        if execution_options and "isolation_level" in execution_options:
            requested.append(execution_options["isolation_level"])
        return original(self, bind_arguments=bind_arguments)

    monkeypatch.setattr(transactions, "_is_sqlite", lambda db: False)
    monkeypatch.setattr(Session, "connection", connection)
    return requested
