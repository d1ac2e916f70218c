"""Create users, sessions and two-factor credential tables

Revision ID: c7e1a2b94d05
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = 'c7e1a2b94d05'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )
    op.create_index('ix_users_organization_id', 'users', ['organization_id'])

    op.create_table(
        'user_sessions',
        sa.Column('session_token', sa.Text(), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ip_address', sa.String(length=45)),
        sa.Column('user_agent', sa.Text()),
        sa.Column('two_factor_verified_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('session_token', name='pk_user_sessions'),
    )
    op.create_index('ix_user_sessions_user_id', 'user_sessions', ['user_id'])

    op.create_table(
        'two_factor_credentials',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('secret', sa.Text()),
        sa.Column('state', sa.String(length=32), nullable=False, server_default='not_enrolled'),
        sa.Column('enabled_at', sa.DateTime(timezone=True)),
        sa.Column('last_used_step', sa.BigInteger()),
        sa.Column('failed_attempts', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('first_failed_at', sa.DateTime(timezone=True)),
        sa.Column('locked_until', sa.DateTime(timezone=True)),
        sa.Column('lockout_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id', name='pk_two_factor_credentials'),
        sa.UniqueConstraint('owner_id', name='uq_two_factor_credentials_owner_id'),
        sa.CheckConstraint(
            "state IN ('not_enrolled', 'pending_verification', 'enabled')",
            name='ck_two_factor_credentials_state',
        ),
    )
    op.create_index('ix_two_factor_credentials_organization_id', 'two_factor_credentials', ['organization_id'])

    op.create_table(
        'two_factor_backup_codes',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column(
            'credential_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('two_factor_credentials.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('code_hash', sa.String(length=128), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id', name='pk_two_factor_backup_codes'),
    )
    op.create_index('ix_two_factor_backup_codes_credential_id', 'two_factor_backup_codes', ['credential_id'])

    op.create_table(
        'audit_log',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('outcome', sa.String(length=32), nullable=False),
        sa.Column('details', postgresql.JSONB()),
        sa.Column('ip_address', sa.String(length=45)),
        sa.Column('user_agent', sa.String(length=255)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id', name='pk_audit_log'),
    )
    op.create_index('ix_audit_log_organization_id', 'audit_log', ['organization_id'])
    op.create_index('ix_audit_log_user_created', 'audit_log', ['user_id', 'created_at'])


def downgrade():
    op.drop_index('ix_audit_log_user_created', table_name='audit_log')
    op.drop_index('ix_audit_log_organization_id', table_name='audit_log')
    op.drop_table('audit_log')
    op.drop_index('ix_two_factor_backup_codes_credential_id', table_name='two_factor_backup_codes')
    op.drop_table('two_factor_backup_codes')
    op.drop_index('ix_two_factor_credentials_organization_id', table_name='two_factor_credentials')
    op.drop_table('two_factor_credentials')
    op.drop_index('ix_user_sessions_user_id', table_name='user_sessions')
    op.drop_table('user_sessions')
    op.drop_index('ix_users_organization_id', table_name='users')
    op.drop_table('users')
