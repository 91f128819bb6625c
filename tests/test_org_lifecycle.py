import uuid
from datetime import timedelta

import pytest

from tenant_admin.core.errors import ErrorKind, TenantAdminError
from tenant_admin.db.enums import InvitationStatus, LifecycleState
from tenant_admin.db.models import Invitation, Member, Organization, Role, UserSession
from tenant_admin.services import org_service, session_service
from tenant_admin.services.audit_service import Actor


def _org_columns(db, org_id):
    db.expire_all()
    org = db.get(Organization, org_id)
    return {
        "name": org.name,
        "slug": org.slug,
        "parent_organization_id": org.parent_organization_id,
        "deleted_at": org.deleted_at,
        "delete_scheduled_for": org.delete_scheduled_for,
        "created_at": org.created_at,
    }


# =============================================================================
# Platform soft delete
# =============================================================================

def test_delete_schedules_purge_thirty_days_out(db, make_org, platform_actor, audit_sink):
    org = make_org()

    deleted = org_service.delete_organization(db, org.id, platform_actor, sink=audit_sink)

    assert deleted.lifecycle_state == LifecycleState.PENDING_DELETION
    assert deleted.delete_scheduled_for - deleted.deleted_at == timedelta(days=30)

    record = audit_sink.records[-1]
    assert record.action.value == "org.deleted"
    assert record.resource == "organization"
    assert record.resource_id == str(org.id)
    assert record.organization_id == org.id
    assert record.actor_id == platform_actor.user_id
    assert record.before == {"deleted_at": None, "delete_scheduled_for": None}
    assert set(record.after) == {"deleted_at", "delete_scheduled_for"}
    assert record.metadata == {"expired_invitations": 0, "cleared_sessions": 0}


def test_delete_expires_invitations_and_clears_sessions(
    db, make_org, make_user, make_invitation, make_session, platform_actor, audit_sink
):
    org = make_org()
    other = make_org("Other")
    user = make_user()
    make_invitation(org)
    make_invitation(org)
    accepted = make_invitation(org, status=InvitationStatus.ACCEPTED)
    untouched = make_invitation(other)
    session = make_session(user, active_org=org)
    other_session = make_session(user, active_org=other)

    org_service.delete_organization(db, org.id, platform_actor, sink=audit_sink)
    db.expire_all()

    statuses = [
        inv.status
        for inv in db.query(Invitation).filter(Invitation.organization_id == org.id)
        if inv.id != accepted.id
    ]
    assert statuses == ["expired", "expired"]
    assert db.get(Invitation, accepted.id).status == "accepted"
    assert db.get(Invitation, untouched.id).status == "pending"
    assert db.get(UserSession, session.id).active_organization_id is None
    assert db.get(UserSession, other_session.id).active_organization_id == other.id
    assert audit_sink.records[-1].metadata == {"expired_invitations": 2, "cleared_sessions": 1}


def test_delete_twice_is_rejected(db, make_org, platform_actor, audit_sink):
    org = make_org()
    org_service.delete_organization(db, org.id, platform_actor, sink=audit_sink)

    with pytest.raises(TenantAdminError) as exc:
        org_service.delete_organization(db, org.id, platform_actor, sink=audit_sink)
    assert exc.value.kind == ErrorKind.ALREADY_PENDING_DELETION
    assert audit_sink.actions == ["org.deleted"]


def test_delete_missing_org(db, platform_actor, audit_sink):
    with pytest.raises(TenantAdminError) as exc:
        org_service.delete_organization(db, uuid.uuid4(), platform_actor, sink=audit_sink)
    assert exc.value.kind == ErrorKind.NOT_FOUND
    assert audit_sink.records == []


def test_delete_requires_superadmin_actor(db, make_org, make_user, audit_sink):
    org = make_org()
    regular = make_user()

    with pytest.raises(TenantAdminError) as exc:
        org_service.delete_organization(db, org.id, Actor.for_user(regular.id), sink=audit_sink)
    assert exc.value.kind == ErrorKind.FORBIDDEN
    assert _org_columns(db, org.id)["deleted_at"] is None


def test_forbidden_is_reported_before_not_found(db, make_user, audit_sink):
    regular = make_user()

    with pytest.raises(TenantAdminError) as exc:
        org_service.delete_organization(
            db, uuid.uuid4(), Actor.for_user(regular.id), sink=audit_sink
        )
    assert exc.value.kind == ErrorKind.FORBIDDEN


def test_cascade_failure_rolls_back_delete(
    db, make_org, make_invitation, platform_actor, audit_sink, monkeypatch
):
    org = make_org()
    invitation = make_invitation(org)

    def explode(session, org_id):
        raise RuntimeError("session store down")

    monkeypatch.setattr(session_service, "clear_active_organization", explode)

    with pytest.raises(RuntimeError):
        org_service.delete_organization(db, org.id, platform_actor, sink=audit_sink)

    assert _org_columns(db, org.id)["deleted_at"] is None
    assert db.get(Invitation, invitation.id).status == "pending"
    assert audit_sink.records == []


# =============================================================================
# Restore
# =============================================================================

def test_restore_returns_org_to_pre_delete_state(db, make_org, platform_actor, audit_sink):
    parent = make_org("Parent")
    org = make_org("Child", parent=parent)
    before = _org_columns(db, org.id)

    org_service.delete_organization(db, org.id, platform_actor, sink=audit_sink)
    restored = org_service.restore_organization(db, org.id, platform_actor, sink=audit_sink)

    assert restored.lifecycle_state == LifecycleState.ACTIVE
    assert _org_columns(db, org.id) == before
    assert audit_sink.actions == ["org.deleted", "org.restored"]
    assert audit_sink.records[-1].after == {"deleted_at": None, "delete_scheduled_for": None}


def test_restore_active_org_is_rejected_without_audit(db, make_org, platform_actor, audit_sink):
    org = make_org()

    with pytest.raises(TenantAdminError) as exc:
        org_service.restore_organization(db, org.id, platform_actor, sink=audit_sink)
    assert exc.value.kind == ErrorKind.NOT_PENDING_DELETION
    assert audit_sink.records == []


def test_restore_missing_org(db, platform_actor, audit_sink):
    with pytest.raises(TenantAdminError) as exc:
        org_service.restore_organization(db, uuid.uuid4(), platform_actor, sink=audit_sink)
    assert exc.value.kind == ErrorKind.NOT_FOUND


# =============================================================================
# Tenant self-service
# =============================================================================

def test_non_owner_cannot_delete_own_org(db, make_org, make_user, add_member, audit_sink):
    org = make_org()
    admin = make_user()
    add_member(org, admin, "admin")

    with pytest.raises(TenantAdminError) as exc:
        org_service.delete_own_organization(
            db, org.id, Actor.for_user(admin.id), "Acme Corp", sink=audit_sink
        )
    assert exc.value.kind == ErrorKind.FORBIDDEN


def test_owner_must_type_org_name(db, make_org, make_user, add_member, audit_sink):
    org = make_org()
    owner = make_user()
    add_member(org, owner, "owner")

    with pytest.raises(TenantAdminError) as exc:
        org_service.delete_own_organization(
            db, org.id, Actor.for_user(owner.id), "Acme", sink=audit_sink
        )
    assert exc.value.kind == ErrorKind.NAME_CONFIRMATION_MISMATCH
    assert audit_sink.records == []


def test_owner_deletes_and_reactivates_own_org(db, make_org, make_user, add_member, audit_sink):
    org = make_org()
    owner = make_user()
    add_member(org, owner, "owner")
    actor = Actor.for_user(owner.id)

    deleted = org_service.delete_own_organization(
        db, org.id, actor, "  acme corp ", sink=audit_sink
    )
    assert deleted.is_pending_deletion

    reactivated = org_service.reactivate_own_organization(db, org.id, actor, sink=audit_sink)
    assert not reactivated.is_pending_deletion
    assert audit_sink.actions == ["org.deleted", "org.restored"]
    assert all(r.actor_id == owner.id for r in audit_sink.records)


# =============================================================================
# Create / update / detail
# =============================================================================

def test_create_org_seeds_roles_and_owner(db, make_user, platform_actor, audit_sink):
    owner = make_user()

    org = org_service.create_organization(
        db, "  Globex ", "GLOBEX", platform_actor, owner_user_id=owner.id, sink=audit_sink
    )

    assert org.name == "Globex"
    assert org.slug == "globex"
    roles = db.query(Role).filter(Role.tenant_id == org.id).all()
    assert sorted(r.slug for r in roles) == ["admin", "member", "owner", "viewer"]
    member = db.query(Member).filter(Member.organization_id == org.id).one()
    assert member.user_id == owner.id
    assert member.role == "owner"

    record = audit_sink.records[-1]
    assert record.action.value == "org.created"
    assert record.after == {"name": "Globex", "slug": "globex", "parent_organization_id": None}
    assert record.metadata == {"owner_user_id": str(owner.id)}


def test_create_org_with_taken_slug(db, platform_actor, audit_sink):
    org_service.create_organization(db, "Globex", "globex", platform_actor, sink=audit_sink)

    with pytest.raises(TenantAdminError) as exc:
        org_service.create_organization(db, "Globex 2", "globex", platform_actor, sink=audit_sink)
    assert exc.value.kind == ErrorKind.SLUG_CONFLICT
    assert db.query(Organization).count() == 1


def test_create_org_below_max_depth_rejected(db, make_org, platform_actor, audit_sink):
    root = make_org("Root")
    child = make_org("Child", parent=root)
    grandchild = make_org("Grandchild", parent=child)

    with pytest.raises(TenantAdminError) as exc:
        org_service.create_organization(
            db, "Too Deep", "too-deep", platform_actor,
            parent_organization_id=grandchild.id, sink=audit_sink,
        )
    assert exc.value.kind == ErrorKind.DEPTH_EXCEEDED


def test_create_org_with_unknown_owner(db, platform_actor, audit_sink):
    with pytest.raises(TenantAdminError) as exc:
        org_service.create_organization(
            db, "Globex", "globex", platform_actor, owner_user_id=uuid.uuid4(), sink=audit_sink
        )
    assert exc.value.kind == ErrorKind.NOT_FOUND
    assert db.query(Organization).count() == 0


def test_update_parent_is_audited_as_parent_change(db, make_org, platform_actor, audit_sink):
    root = make_org("Root")
    org = make_org("Team")

    org_service.update_organization(
        db, org.id, platform_actor, parent_organization_id=root.id, sink=audit_sink
    )

    record = audit_sink.records[-1]
    assert record.action.value == "org.parent_changed"
    assert record.before == {"parent_organization_id": None}
    assert record.after == {"parent_organization_id": str(root.id)}


def test_update_name_only(db, make_org, platform_actor, audit_sink):
    root = make_org("Root")
    org = make_org("Team", parent=root)

    updated = org_service.update_organization(
        db, org.id, platform_actor, name="Team Blue", sink=audit_sink
    )

    assert updated.name == "Team Blue"
    assert updated.parent_organization_id == root.id
    assert audit_sink.records[-1].action.value == "org.updated"
    assert audit_sink.records[-1].after == {"name": "Team Blue"}


def test_update_without_changes_writes_no_audit(db, make_org, platform_actor, audit_sink):
    org = make_org("Team")

    org_service.update_organization(db, org.id, platform_actor, name="Team", sink=audit_sink)
    assert audit_sink.records == []


def test_update_detaches_to_root(db, make_org, platform_actor, audit_sink):
    root = make_org("Root")
    org = make_org("Team", parent=root)

    updated = org_service.update_organization(
        db, org.id, platform_actor, parent_organization_id=None, sink=audit_sink
    )
    assert updated.parent_organization_id is None
    assert audit_sink.records[-1].action.value == "org.parent_changed"


def test_update_parent_to_descendant_is_a_cycle(db, make_org, platform_actor, audit_sink):
    root = make_org("Root")
    child = make_org("Child", parent=root)

    with pytest.raises(TenantAdminError) as exc:
        org_service.update_organization(
            db, root.id, platform_actor, parent_organization_id=child.id, sink=audit_sink
        )
    assert exc.value.kind == ErrorKind.CYCLE_DETECTED
    assert _org_columns(db, root.id)["parent_organization_id"] is None


def test_update_slug_conflict(db, make_org, platform_actor, audit_sink):
    taken = make_org("Taken")
    org = make_org("Team")

    with pytest.raises(TenantAdminError) as exc:
        org_service.update_organization(db, org.id, platform_actor, slug=taken.slug, sink=audit_sink)
    assert exc.value.kind == ErrorKind.SLUG_CONFLICT


def test_organization_detail(db, make_org, make_user, add_member):
    parent = make_org("Parent")
    org = make_org("Team", parent=parent)
    add_member(org, make_user(), "owner")
    child_b = make_org("Beta", parent=org)
    child_a = make_org("Alpha", parent=org)
    add_member(child_a, make_user())

    detail = org_service.get_organization_detail(db, org.id)

    assert detail.organization.id == org.id
    assert detail.parent.id == parent.id
    assert len(detail.members) == 1
    assert [(c.id, c.member_count) for c in detail.children] == [(child_a.id, 1), (child_b.id, 0)]


def test_organization_detail_missing(db):
    with pytest.raises(TenantAdminError) as exc:
        org_service.get_organization_detail(db, uuid.uuid4())
    assert exc.value.kind == ErrorKind.NOT_FOUND


def test_create_and_update_run_serializable(db, make_org, platform_actor, audit_sink, isolation_requests):
    root = make_org("Root")

    org = org_service.create_organization(
        db, "Globex", "globex", platform_actor, parent_organization_id=root.id, sink=audit_sink
    )
    org_service.update_organization(
        db, org.id, platform_actor, parent_organization_id=None, sink=audit_sink
    )

    assert isolation_requests == ["SERIALIZABLE", "SERIALIZABLE"]
    assert audit_sink.actions == ["org.created", "org.parent_changed"]


# =============================================================================
# Listing
# =============================================================================

def test_list_organizations_with_member_counts(db, make_org, make_user, add_member, platform_actor):
    acme = make_org("Acme Corp")
    add_member(acme, make_user(), "owner")
    add_member(acme, make_user())
    globex = make_org("Globex")
    archived = make_org("Initech")
    org_service.delete_organization(db, archived.id, platform_actor, sink=None)

    rows, total = org_service.list_organizations(db)
    assert total == 3
    assert {org.id: count for org, count in rows} == {acme.id: 2, globex.id: 0, archived.id: 0}

    active, _ = org_service.list_organizations(db, status="active")
    assert {org.id for org, _ in active} == {acme.id, globex.id}

    deleted, _ = org_service.list_organizations(db, status="archived")
    assert [org.id for org, _ in deleted] == [archived.id]

    searched, total = org_service.list_organizations(db, q="glob")
    assert total == 1
    assert searched[0][0].id == globex.id


def test_list_organizations_paginates(db, make_org):
    for i in range(5):
        make_org(f"Org {i}")

    page, total = org_service.list_organizations(db, page=2, per_page=3)
    assert total == 5
    assert len(page) == 2
