"""Baseline migration - tenants, users, RBAC, invitations, sessions and audit

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates every table of the tenant-admin core. Column types are portable so
the same revision runs on PostgreSQL and SQLite.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
        )
    return columns


def _soft_delete() -> list[sa.Column]:
    return [
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delete_scheduled_for', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create all tenant-admin tables."""

    # ==========================================================================
    # Organizations
    # ==========================================================================
    op.create_table(
        'organizations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column(
            'parent_organization_id',
            sa.Uuid(),
            sa.ForeignKey('organizations.id', ondelete='SET NULL'),
            nullable=True,
        ),
        *_soft_delete(),
        *_timestamps(),
        sa.CheckConstraint(
            '(deleted_at IS NULL) = (delete_scheduled_for IS NULL)',
            name='ck_organizations_deletion_pair',
        ),
    )
    op.create_index('idx_organizations_parent_id', 'organizations', ['parent_organization_id'])

    # ==========================================================================
    # Users
    # ==========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(320), nullable=False, unique=True),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('banned', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('ban_reason', sa.Text(), nullable=True),
        sa.Column('ban_expires', sa.DateTime(timezone=True), nullable=True),
        *_soft_delete(),
        *_timestamps(),
        sa.CheckConstraint(
            '(deleted_at IS NULL) = (delete_scheduled_for IS NULL)',
            name='ck_users_deletion_pair',
        ),
    )

    # ==========================================================================
    # RBAC
    # ==========================================================================
    op.create_table(
        'permissions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('resource', sa.String(50), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.UniqueConstraint('resource', 'action', name='uq_permissions_resource_action'),
    )

    op.create_table(
        'roles',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'tenant_id',
            sa.Uuid(),
            sa.ForeignKey('organizations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
        sa.UniqueConstraint('tenant_id', 'slug', name='uq_roles_tenant_slug'),
    )

    op.create_table(
        'role_permissions',
        sa.Column(
            'role_id',
            sa.Uuid(),
            sa.ForeignKey('roles.id', ondelete='CASCADE'),
            primary_key=True,
        ),
        sa.Column(
            'permission_id',
            sa.Uuid(),
            sa.ForeignKey('permissions.id', ondelete='CASCADE'),
            primary_key=True,
        ),
    )

    # ==========================================================================
    # Members
    # ==========================================================================
    op.create_table(
        'members',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'organization_id',
            sa.Uuid(),
            sa.ForeignKey('organizations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('role', sa.String(100), nullable=False, server_default='member'),
        sa.Column('role_id', sa.Uuid(), sa.ForeignKey('roles.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('idx_members_org_id', 'members', ['organization_id'])
    op.create_index('idx_members_user_id', 'members', ['user_id'])

    # ==========================================================================
    # Invitations & Sessions
    # ==========================================================================
    op.create_table(
        'invitations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'organization_id',
            sa.Uuid(),
            sa.ForeignKey('organizations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('role', sa.String(100), nullable=False, server_default='member'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('inviter_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index('idx_invitations_org_status', 'invitations', ['organization_id', 'status'])

    op.create_table(
        'sessions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('active_organization_id', sa.Uuid(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index('idx_sessions_user_id', 'sessions', ['user_id'])
    op.create_index('idx_sessions_active_org', 'sessions', ['active_organization_id'])

    # ==========================================================================
    # Audit
    # ==========================================================================
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('actor_type', sa.String(20), nullable=False),
        sa.Column('impersonator_id', sa.Uuid(), nullable=True),
        sa.Column('organization_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('resource', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.String(64), nullable=False),
        sa.Column('before', sa.JSON(), nullable=True),
        sa.Column('after', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
    )
    op.create_index('idx_audit_logs_actor', 'audit_logs', ['actor_id'])
    op.create_index('idx_audit_logs_org_action', 'audit_logs', ['organization_id', 'action'])
    op.create_index('idx_audit_logs_resource', 'audit_logs', ['resource', 'resource_id'])


def downgrade() -> None:
    """Drop all tenant-admin tables."""
    op.drop_table('audit_logs')
    op.drop_table('sessions')
    op.drop_table('invitations')
    op.drop_table('members')
    op.drop_table('role_permissions')
    op.drop_table('roles')
    op.drop_table('permissions')
    op.drop_table('users')
    op.drop_table('organizations')
