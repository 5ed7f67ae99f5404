"""Create account, lockout, token and MFA tables

Revision ID: create_authgate_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_authgate_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ROLE_ENUM = sa.Enum('VIEWER', 'CONTENT_MANAGER', 'ADMINISTRATOR', name='role')


def upgrade() -> None:
    op.create_table(
        'accounts',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('display_name', sa.String()),
        sa.Column('role', ROLE_ENUM, nullable=False),
        sa.Column('profile', sa.JSON()),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('password_expires_at', sa.DateTime(timezone=True)),
        sa.Column('password_history', sa.JSON(), nullable=False),
        sa.Column('third_factor_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_accounts_email', 'accounts', ['email'], unique=True)

    # Progressive lockout state, one row per client IP
    op.create_table(
        'ip_login_attempts',
        sa.Column('ip_address', sa.String(45), primary_key=True),
        sa.Column('failed_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('blocked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('blocked_until', sa.DateTime(timezone=True)),
        sa.Column('block_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'session_tokens',
        sa.Column('token', sa.String(128), primary_key=True),
        sa.Column('account_id', sa.String(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_session_tokens_account', 'session_tokens', ['account_id'])
    op.create_index('idx_session_tokens_expires', 'session_tokens', ['expires_at'])

    op.create_table(
        'user_mfa_secrets',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('account_id', sa.String(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('secret_key', sa.String(), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), server_default=sa.false()),
        sa.Column('last_used_step', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('last_used_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'mfa_email_challenges',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('account_id', sa.String(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code', sa.String(12), nullable=False),
        sa.Column('destination', sa.String(), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('failed_attempts', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('idx_mfa_email_challenges_expires', 'mfa_email_challenges', ['expires_at'])

    # Second-factor attempts, counted for the TOTP rate limit
    op.create_table(
        'user_mfa_attempts',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('account_id', sa.String(), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('attempt_type', sa.String(20), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_user_mfa_attempts_account_created', 'user_mfa_attempts', ['account_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('idx_user_mfa_attempts_account_created', 'user_mfa_attempts')
    op.drop_table('user_mfa_attempts')
    op.drop_index('idx_mfa_email_challenges_expires', 'mfa_email_challenges')
    op.drop_table('mfa_email_challenges')
    op.drop_table('user_mfa_secrets')
    op.drop_index('idx_session_tokens_expires', 'session_tokens')
    op.drop_index('idx_session_tokens_account', 'session_tokens')
    op.drop_table('session_tokens')
    op.drop_table('ip_login_attempts')
    op.drop_index('ix_accounts_email', 'accounts')
    op.drop_table('accounts')
    ROLE_ENUM.drop(op.get_bind(), checkfirst=True)
