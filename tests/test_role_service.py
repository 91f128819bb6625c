import uuid

import pytest

from tenant_admin.core.errors import ErrorKind, TenantAdminError
from tenant_admin.core.permissions import PERMISSION_REGISTRY
from tenant_admin.db.enums import PlatformRole
from tenant_admin.db.models import Permission, Role
from tenant_admin.services import role_service


def test_seed_default_roles_is_idempotent(db, make_org):
    org = make_org()
    role_service.seed_default_roles(db, org.id)
    db.commit()

    roles = role_service.list_tenant_roles(db, org.id)
    assert sorted(r.slug for r in roles) == ["admin", "member", "owner", "viewer"]
    assert all(role_service.is_default_role(r) for r in roles)
    assert db.query(Permission).count() == len(PERMISSION_REGISTRY)


def test_owner_resolves_to_full_catalog(db, make_org, make_user, add_member):
    org = make_org()
    owner = add_member(org, make_user(), "owner")

    perms = role_service.resolve_effective_permissions(db, org.id, owner.id)
    assert perms == set(PERMISSION_REGISTRY)


def test_viewer_resolves_to_read_permissions(db, make_org, make_user, add_member):
    org = make_org()
    viewer = add_member(org, make_user(), "viewer")

    perms = role_service.resolve_effective_permissions(db, org.id, viewer.id)
    assert perms == {"users:read", "organizations:read", "members:read", "roles:read"}


def test_member_without_role_has_no_permissions(db, make_org, make_user, add_member):
    org = make_org()
    member = add_member(org, make_user(), role_slug=None)

    assert role_service.resolve_effective_permissions(db, org.id, member.id) == set()


def test_resolve_unknown_member_raises_not_found(db, make_org):
    org = make_org()
    with pytest.raises(TenantAdminError) as exc:
        role_service.resolve_effective_permissions(db, org.id, uuid.uuid4())
    assert exc.value.kind == ErrorKind.NOT_FOUND


def test_member_of_other_tenant_is_not_found(db, make_org, make_user, add_member):
    org, other = make_org(), make_org("Other")
    member = add_member(other, make_user(), "owner")

    with pytest.raises(TenantAdminError) as exc:
        role_service.resolve_effective_permissions(db, org.id, member.id)
    assert exc.value.kind == ErrorKind.NOT_FOUND


def test_count_active_owners_skips_banned_and_deleted(db, make_org, make_user, add_member):
    org = make_org()
    active = add_member(org, make_user(), "owner")
    add_member(org, make_user(banned=True), "owner")
    add_member(org, make_user(deleted=True), "owner")
    add_member(org, make_user(), "admin")

    assert role_service.count_active_owners(db, org.id) == 1
    assert role_service.count_active_owners(db, org.id, exclude_member_id=active.id) == 0


def test_count_active_superadmins(db, make_user):
    first = make_user(role=PlatformRole.SUPERADMIN)
    make_user(role=PlatformRole.SUPERADMIN, banned=True)
    make_user(role=PlatformRole.SUPERADMIN, deleted=True)
    make_user()

    assert role_service.count_active_superadmins(db) == 1
    assert role_service.count_active_superadmins(db, exclude_user_id=first.id) == 0


def test_is_owner_role(db, make_org):
    org = make_org()
    assert role_service.is_owner_role(role_service.get_role_by_slug(db, org.id, "owner"))
    assert not role_service.is_owner_role(role_service.get_role_by_slug(db, org.id, "admin"))
    assert not role_service.is_owner_role(None)


def test_create_custom_role(db, make_org):
    org = make_org()
    role = role_service.create_role(
        db, org.id, "Billing Reviewer", {"members:read", "roles:read", "bogus:key"}
    )

    assert role.slug == "billing-reviewer"
    assert not role.is_default
    assert sorted(p.key for p in role.permissions) == ["members:read", "roles:read"]


def test_create_role_with_taken_slug_conflicts(db, make_org):
    org = make_org()
    with pytest.raises(TenantAdminError) as exc:
        role_service.create_role(db, org.id, "Admin", {"members:read"})
    assert exc.value.kind == ErrorKind.SLUG_CONFLICT
    assert db.query(Role).filter(Role.tenant_id == org.id).count() == 4


def test_create_role_for_unknown_tenant(db):
    with pytest.raises(TenantAdminError) as exc:
        role_service.create_role(db, uuid.uuid4(), "Support", {"members:read"})
    assert exc.value.kind == ErrorKind.NOT_FOUND
    assert db.query(Role).count() == 0


def test_materialize_replaces_permission_set(db, make_org):
    org = make_org()
    role = role_service.create_role(db, org.id, "Support", {"members:read"})

    role_service.materialize_role_permissions(db, role, {"invitations:read", "invitations:write"})
    db.commit()

    assert sorted(p.key for p in role.permissions) == ["invitations:read", "invitations:write"]


def test_get_tenant_role_rejects_foreign_role(db, make_org):
    org, other = make_org(), make_org("Other")
    foreign = role_service.get_role_by_slug(db, other.id, "owner")

    with pytest.raises(TenantAdminError) as exc:
        role_service.get_tenant_role(db, org.id, foreign.id)
    assert exc.value.kind == ErrorKind.NOT_FOUND


def test_has_permission(db, make_org, make_user, add_member):
    org = make_org()
    viewer_user = make_user()
    add_member(org, viewer_user, "viewer")

    assert role_service.has_permission(db, org.id, viewer_user.id, "members:read")
    assert not role_service.has_permission(db, org.id, viewer_user.id, "members:write")
    assert not role_service.has_permission(db, org.id, make_user().id, "members:read")
