"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=120), nullable=False, unique=True),
        sa.Column('name', sa.String(length=120)),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('notifications_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('last_login_at', sa.DateTime()),
        sa.Column('failed_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('locked_until', sa.DateTime()),
    )

    op.create_table(
        'secrets',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('ciphertext', sa.Text(), nullable=False),
        sa.Column('password_hash', sa.String(length=255)),
        sa.Column('expires_at', sa.DateTime()),
        sa.Column('one_time_access', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_viewed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('owner_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_secrets_expires_at', 'secrets', ['expires_at'])
    op.create_index('ix_secrets_is_viewed', 'secrets', ['is_viewed'])
    op.create_index('ix_secrets_owner_id', 'secrets', ['owner_id'])


def downgrade():
    op.drop_index('ix_secrets_owner_id', table_name='secrets')
    op.drop_index('ix_secrets_is_viewed', table_name='secrets')
    op.drop_index('ix_secrets_expires_at', table_name='secrets')
    op.drop_table('secrets')
    op.drop_table('users')
