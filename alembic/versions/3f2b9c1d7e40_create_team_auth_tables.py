"""create_team_auth_tables

Revision ID: 3f2b9c1d7e40
Revises:
Create Date: 2026-10-18 09:12:44.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f2b9c1d7e40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the team auth schema.

    Creates:
    - users table (local identity provider)
    - teams table
    - team_members table, with the single-owner partial unique index
    - invitations table, with one pending invite per (team, email)
    - impersonation_sessions table
    """
    # 1. Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('email_confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # 2. Create teams table
    op.create_table(
        'teams',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('vat_number', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_teams_name'),
        sa.CheckConstraint('length(trim(name)) > 0', name='ck_teams_name_not_empty')
    )

    # 3. Create team_members table
    op.create_table(
        'team_members',
        sa.Column('team_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['team_id'], ['teams.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('team_id', 'user_id'),
        sa.UniqueConstraint('user_id', name='uq_team_members_user')
    )
    # At most one owner per team, enforced by the database
    op.create_index(
        'uq_team_members_single_owner',
        'team_members',
        ['team_id'],
        unique=True,
        postgresql_where=sa.text("role = 'owner'"),
        sqlite_where=sa.text("role = 'owner'"),
    )

    # 4. Create invitations table
    op.create_table(
        'invitations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('team_id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('invited_by', sa.String(length=36), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['team_id'], ['teams.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_hash')
    )
    op.create_index('ix_invitations_team_id', 'invitations', ['team_id'])
    op.create_index('ix_invitations_email', 'invitations', ['email'])
    op.create_index('ix_invitations_status', 'invitations', ['status'])
    op.create_index(
        'uq_invitations_pending_team_email',
        'invitations',
        ['team_id', 'email'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    # 5. Create impersonation_sessions table
    op.create_table(
        'impersonation_sessions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('admin_user_id', sa.String(length=36), nullable=False),
        sa.Column('target_user_id', sa.String(length=36), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('end_reason', sa.String(length=20), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('admin_user_id != target_user_id', name='ck_impersonation_different_users'),
        sa.CheckConstraint(
            'ended_at IS NULL OR ended_at >= started_at', name='ck_impersonation_ended_after_started'
        )
    )
    op.create_index('ix_impersonation_sessions_admin_user_id', 'impersonation_sessions', ['admin_user_id'])
    op.create_index('ix_impersonation_sessions_target_user_id', 'impersonation_sessions', ['target_user_id'])
    op.create_index('ix_impersonation_sessions_started_at', 'impersonation_sessions', ['started_at'])


def downgrade() -> None:
    """Drop the team auth schema in reverse dependency order."""
    op.drop_table('impersonation_sessions')
    op.drop_index('uq_invitations_pending_team_email', table_name='invitations')
    op.drop_table('invitations')
    op.drop_index('uq_team_members_single_owner', table_name='team_members')
    op.drop_table('team_members')
    op.drop_table('teams')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
