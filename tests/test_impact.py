import uuid

import pytest

from tenant_admin.core.errors import ErrorKind, TenantAdminError
from tenant_admin.services.impact_service import DeletionImpact, estimate_org_deletion_impact


def test_impact_counts(db, make_org, make_user, add_member):
    org = make_org("Parent")
    add_member(org, make_user(), "owner")
    add_member(org, make_user(banned=True))
    add_member(org, make_user(deleted=True))
    child = make_org("Child", parent=org)
    add_member(child, make_user())
    grandchild = make_org("Grandchild", parent=child)
    add_member(grandchild, make_user())
    add_member(grandchild, make_user())
    make_org("Sibling", parent=org)

    impact = estimate_org_deletion_impact(db, org.id)

    assert impact == DeletionImpact(
        member_count=3,
        active_members=1,
        child_org_count=2,
        child_member_count=3,
    )


def test_impact_of_leaf_org(db, make_org):
    org = make_org()
    assert estimate_org_deletion_impact(db, org.id) == DeletionImpact(0, 0, 0, 0)


def test_impact_missing_org(db):
    with pytest.raises(TenantAdminError) as exc:
        estimate_org_deletion_impact(db, uuid.uuid4())
    assert exc.value.kind == ErrorKind.NOT_FOUND
