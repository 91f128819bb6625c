"""Tenant self-service endpoints (organization owners and members)."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tenant_admin.core.deps import get_actor, get_audit_sink, get_db
from tenant_admin.core.permissions import PermissionAction, PermissionResource
from tenant_admin.schemas.member import (
    EffectivePermissionsRead,
    MemberRead,
    TransferOwnershipRequest,
)
from tenant_admin.schemas.org import DeleteOwnOrgRequest, OrgRead
from tenant_admin.services import member_service, org_service, role_service
from tenant_admin.services.audit_service import Actor, AuditSink

router = APIRouter()

MEMBERS_READ = f"{PermissionResource.MEMBERS.value}:{PermissionAction.READ.value}"


@router.delete("/{org_id}", response_model=OrgRead)
def delete_own_org(
    org_id: UUID,
    data: DeleteOwnOrgRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    """
    Schedule the organization for deletion.

    Only owners may do this, and they must type the organization name.
    """
    return org_service.delete_own_organization(
        db, org_id, actor, confirm_name=data.confirm_name, sink=sink
    )


@router.post("/{org_id}/reactivate", response_model=OrgRead)
def reactivate_own_org(
    org_id: UUID,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return org_service.reactivate_own_organization(db, org_id, actor, sink=sink)


@router.get(
    "/{org_id}/members/{member_id}/permissions",
    response_model=EffectivePermissionsRead,
)
def get_member_permissions(
    org_id: UUID,
    member_id: UUID,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Effective permission keys of a member (requires members:read)."""
    if not role_service.has_permission(db, org_id, actor.user_id, MEMBERS_READ):
        raise HTTPException(status_code=403, detail="Missing permission: members:read")
    permissions = role_service.resolve_effective_permissions(db, org_id, member_id)
    return EffectivePermissionsRead(member_id=member_id, permissions=sorted(permissions))


@router.post("/{org_id}/transfer-ownership", response_model=MemberRead)
def transfer_ownership(
    org_id: UUID,
    data: TransferOwnershipRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    sink: AuditSink | None = Depends(get_audit_sink),
):
    return member_service.transfer_ownership(db, org_id, data.target_member_id, actor, sink=sink)
