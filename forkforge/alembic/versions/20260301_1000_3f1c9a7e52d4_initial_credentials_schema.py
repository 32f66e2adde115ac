"""initial_credentials_schema

Users, credentials (with the long-lived partial unique index) and the
processed-event dedup table.

Revision ID: 3f1c9a7e52d4
Revises:
Create Date: 2026-03-01 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f1c9a7e52d4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_identity_id', sa.TEXT(), nullable=True),
        sa.Column('billing_ref', sa.TEXT(), nullable=True),
        sa.Column('subscription_status', sa.TEXT(), server_default='inactive', nullable=False),
        sa.Column('subscription_tier', sa.TEXT(), server_default='free', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint(
            "subscription_status IN ('inactive', 'active', 'cancelled', 'past_due')",
            name='ck_users_subscription_status',
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('billing_ref'),
        sa.UniqueConstraint('external_identity_id'),
    )

    op.create_table(
        'credentials',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('secret_digest', sa.String(length=43), nullable=False),
        sa.Column('label', sa.TEXT(), nullable=True),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('last_used_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('secret_digest'),
    )
    op.create_index('idx_credentials_user', 'credentials', ['user_id'])
    # At most one long-lived (expires_at IS NULL) credential per user
    op.create_index(
        'uq_credentials_user_long_lived',
        'credentials',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text('expires_at IS NULL'),
        sqlite_where=sa.text('expires_at IS NULL'),
    )

    op.create_table(
        'processed_events',
        sa.Column('id', sa.TEXT(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )


def downgrade() -> None:
    op.drop_table('processed_events')
    op.drop_index('uq_credentials_user_long_lived', table_name='credentials')
    op.drop_index('idx_credentials_user', table_name='credentials')
    op.drop_table('credentials')
    op.drop_table('users')
