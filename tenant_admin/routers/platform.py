"""Platform administration endpoints (superadmin only)."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from tenant_admin.core.deps import get_audit_sink, get_db, require_superadmin
from tenant_admin.db.enums import PlatformRole
from tenant_admin.schemas.audit import AuditEntryRead, AuditLogListResponse
from tenant_admin.schemas.member import (
    InvitationCreate,
    InvitationRead,
    MemberRead,
    MemberRoleUpdate,
)
from tenant_admin.schemas.org import (
    DeletionImpactRead,
    OrgChildRead,
    OrgCreate,
    OrgDetailRead,
    OrgListItem,
    OrgListResponse,
    OrgRead,
    OrgSummary,
    OrgTreeNodeRead,
    OrgTreeResponse,
    OrgUpdate,
    RoleCreate,
    RoleRead,
)
from tenant_admin.schemas.user import (
    BanRequest,
    PlatformRoleUpdate,
    UserDetailRead,
    UserListResponse,
    UserMembershipRead,
    UserRead,
    UserUpdate,
)
from tenant_admin.services import (
    audit_service,
    hierarchy_service,
    impact_service,
    invitation_service,
    member_service,
    org_service,
    role_service,
    user_service,
)
from tenant_admin.services.audit_service import Actor, AuditSink
from tenant_admin.services.hierarchy_service import OrgTreeNode

router = APIRouter(dependencies=[Depends(require_superadmin)])


def _tree_to_response(node: OrgTreeNode) -> OrgTreeNodeRead:
    entry = node.data
    return OrgTreeNodeRead(
        id=entry.id,
        name=entry.name,
        slug=entry.slug,
        member_count=entry.member_count,
        is_orphan=node.is_orphan,
        children=[_tree_to_response(child) for child in node.children],
    )


def _role_to_response(role) -> RoleRead:
    return RoleRead(
        id=role.id,
        name=role.name,
        slug=role.slug,
        description=role.description,
        is_default=role.is_default,
        permissions=sorted(p.key for p in role.permissions),
    )


# =============================================================================
# Organizations
# =============================================================================


@router.post("/orgs", response_model=OrgRead, status_code=status.HTTP_201_CREATED)
def create_org(
    data: OrgCreate,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    """Create an organization (optionally under a parent, with a first owner)."""
    return org_service.create_organization(
        db,
        name=data.name,
        slug=data.slug,
        actor=actor,
        parent_organization_id=data.parent_organization_id,
        owner_user_id=data.owner_user_id,
        sink=sink,
    )


@router.get("/orgs", response_model=OrgListResponse)
def list_orgs(
    q: str | None = Query(None, description="Search name or slug"),
    status_filter: str | None = Query(None, alias="status", pattern="^(active|archived)$"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    rows, total = org_service.list_organizations(
        db, q=q, status=status_filter, page=page, per_page=per_page
    )
    items = [
        OrgListItem(**OrgRead.model_validate(org).model_dump(), member_count=count)
        for org, count in rows
    ]
    return OrgListResponse(items=items, total=total, page=page, per_page=per_page)


@router.get("/orgs/tree", response_model=OrgTreeResponse)
def get_org_tree(db: Session = Depends(get_db)):
    tree = hierarchy_service.list_organizations_for_tree(db)
    return OrgTreeResponse(
        tree_view_available=tree.tree_view_available,
        total=tree.total,
        roots=[_tree_to_response(root) for root in tree.roots],
    )


@router.get("/orgs/{org_id}", response_model=OrgDetailRead)
def get_org(org_id: UUID, db: Session = Depends(get_db)):
    """Organization with parent, members and direct children."""
    detail = org_service.get_organization_detail(db, org_id)
    return OrgDetailRead(
        organization=OrgRead.model_validate(detail.organization),
        parent=OrgSummary.model_validate(detail.parent) if detail.parent else None,
        members=[MemberRead.model_validate(m) for m in detail.members],
        children=[
            OrgChildRead(
                id=c.id,
                name=c.name,
                slug=c.slug,
                member_count=c.member_count,
                deleted_at=c.deleted_at,
            )
            for c in detail.children
        ],
    )


@router.patch("/orgs/{org_id}", response_model=OrgRead)
def update_org(
    org_id: UUID,
    data: OrgUpdate,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    """Update name/slug/parent. Only fields present in the body are changed."""
    changes = data.model_dump(exclude_unset=True)
    return org_service.update_organization(db, org_id, actor, sink=sink, **changes)


@router.get("/orgs/{org_id}/deletion-impact", response_model=DeletionImpactRead)
def get_deletion_impact(org_id: UUID, db: Session = Depends(get_db)):
    return impact_service.estimate_org_deletion_impact(db, org_id)


@router.post("/orgs/{org_id}/delete", response_model=OrgRead)
def delete_org(
    org_id: UUID,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return org_service.delete_organization(db, org_id, actor, sink=sink)


@router.post("/orgs/{org_id}/restore", response_model=OrgRead)
def restore_org(
    org_id: UUID,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return org_service.restore_organization(db, org_id, actor, sink=sink)


@router.get("/orgs/{org_id}/roles", response_model=list[RoleRead])
def list_org_roles(org_id: UUID, db: Session = Depends(get_db)):
    return [_role_to_response(r) for r in role_service.list_tenant_roles(db, org_id)]


@router.post(
    "/orgs/{org_id}/roles",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
)
def create_org_role(org_id: UUID, data: RoleCreate, db: Session = Depends(get_db)):
    """Create a custom role. Unknown permission keys are dropped."""
    role = role_service.create_role(
        db, org_id, data.name, set(data.permissions), description=data.description
    )
    return _role_to_response(role)


# =============================================================================
# Members
# =============================================================================


@router.get("/orgs/{org_id}/members", response_model=list[MemberRead])
def list_org_members(org_id: UUID, db: Session = Depends(get_db)):
    return member_service.list_members(db, org_id)


@router.patch("/orgs/{org_id}/members/{member_id}", response_model=MemberRead)
def change_member_role(
    org_id: UUID,
    member_id: UUID,
    data: MemberRoleUpdate,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return member_service.change_member_role(db, org_id, member_id, data.role_id, actor, sink=sink)


@router.delete("/orgs/{org_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    org_id: UUID,
    member_id: UUID,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    member_service.remove_member(db, org_id, member_id, actor, sink=sink)


# =============================================================================
# Invitations
# =============================================================================


@router.get("/orgs/{org_id}/invitations", response_model=list[InvitationRead])
def list_invitations(org_id: UUID, db: Session = Depends(get_db)):
    return invitation_service.list_pending_invitations(db, org_id)


@router.post(
    "/orgs/{org_id}/invitations",
    response_model=InvitationRead,
    status_code=status.HTTP_201_CREATED,
)
def invite_member(
    org_id: UUID,
    data: InvitationCreate,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return invitation_service.invite_member(db, org_id, data.email, data.role_id, actor, sink=sink)


@router.delete("/orgs/{org_id}/invitations/{invitation_id}", response_model=InvitationRead)
def revoke_invitation(
    org_id: UUID,
    invitation_id: UUID,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return invitation_service.revoke_invitation(db, org_id, invitation_id, actor, sink=sink)


# =============================================================================
# Users
# =============================================================================


@router.post("/users/{user_id}/ban", response_model=UserRead)
def ban_user(
    user_id: UUID,
    data: BanRequest,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return user_service.ban_user(
        db, user_id, actor, reason=data.reason, expires=data.expires, sink=sink
    )


@router.post("/users/{user_id}/unban", response_model=UserRead)
def unban_user(
    user_id: UUID,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return user_service.unban_user(db, user_id, actor, sink=sink)


@router.post("/users/{user_id}/delete", response_model=UserRead)
def delete_user(
    user_id: UUID,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return user_service.delete_user(db, user_id, actor, sink=sink)


@router.post("/users/{user_id}/restore", response_model=UserRead)
def restore_user(
    user_id: UUID,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return user_service.restore_user(db, user_id, actor, sink=sink)


@router.patch("/users/{user_id}/role", response_model=UserRead)
def change_platform_role(
    user_id: UUID,
    data: PlatformRoleUpdate,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return user_service.change_platform_role(db, user_id, data.role, actor, sink=sink)


@router.get("/users", response_model=UserListResponse)
def list_users(
    q: str | None = Query(None, description="Search display name or email"),
    role: PlatformRole | None = Query(None),
    status_filter: str | None = Query(None, alias="status", pattern="^(active|banned|archived)$"),
    organization_id: UUID | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    users, total = user_service.list_users(
        db,
        q=q,
        role=role,
        status=status_filter,
        organization_id=organization_id,
        page=page,
        per_page=per_page,
    )
    return UserListResponse(
        items=[UserRead.model_validate(u) for u in users],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/users/{user_id}", response_model=UserDetailRead)
def get_user(user_id: UUID, db: Session = Depends(get_db)):
    """User with organization memberships and recent audit activity."""
    detail = user_service.get_user_detail(db, user_id)
    return UserDetailRead(
        user=UserRead.model_validate(detail.user),
        organizations=[
            UserMembershipRead(
                member_id=m.id,
                organization_id=m.organization_id,
                organization_name=m.organization.name,
                organization_slug=m.organization.slug,
                role=m.role,
                joined_at=m.created_at,
            )
            for m in detail.memberships
        ],
        recent_activity=detail.recent_activity,
    )


@router.patch("/users/{user_id}", response_model=UserRead)
def update_user(
    user_id: UUID,
    data: UserUpdate,
    actor: Actor = Depends(require_superadmin),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    changes = data.model_dump(exclude_unset=True)
    return user_service.update_user(db, user_id, actor, sink=sink, **changes)


# =============================================================================
# Audit log
# =============================================================================


@router.get("/audit-logs", response_model=AuditLogListResponse)
def list_audit_logs(
    actor_id: UUID | None = Query(None, description="Filter by actor"),
    action: str | None = Query(None, description="Filter by action, e.g. org.deleted"),
    resource: str | None = Query(None),
    resource_id: str | None = Query(None),
    organization_id: UUID | None = Query(None),
    start_date: datetime | None = Query(None, description="Entries at or after this time"),
    end_date: datetime | None = Query(None, description="Entries at or before this time"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Platform-wide audit trail, newest first. Sensitive fields are redacted."""
    entries, total = audit_service.list_audit_logs(
        db,
        actor_id=actor_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        organization_id=organization_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page,
    )
    return AuditLogListResponse(
        items=[AuditEntryRead(**entry) for entry in entries],
        total=total,
        page=page,
        per_page=per_page,
    )
