"""add subscription_extensions table

Revision ID: 8b41d0c6e2a7
Revises: 3f7c2a9d1e04
Create Date: 2026-10-21 14:00:00.000000

"""
from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '8b41d0c6e2a7'
down_revision: Union[str, None] = '3f7c2a9d1e04'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One row per payment order applied to a subscription
    op.create_table(
        'subscription_extensions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column(
            'plan',
            postgresql.ENUM('MONTHLY', 'YEARLY', name='premiumplan', create_type=False),
            nullable=False,
        ),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_subscription_extensions_order_id',
        'subscription_extensions',
        ['order_id'],
        unique=True,
    )
    op.create_index(
        'ix_subscription_extensions_user_id', 'subscription_extensions', ['user_id']
    )

    # Accounts settled before this table existed keep their last order replay-safe
    op.execute(
        "INSERT INTO subscription_extensions (order_id, user_id, plan, expires_at) "
        "SELECT premium_order_id, id, premium_plan, premium_expires_at FROM accounts "
        "WHERE premium_order_id IS NOT NULL AND premium_plan IS NOT NULL "
        "AND premium_expires_at IS NOT NULL"
    )


def downgrade() -> None:
    op.drop_index('ix_subscription_extensions_user_id', table_name='subscription_extensions')
    op.drop_index('ix_subscription_extensions_order_id', table_name='subscription_extensions')
    op.drop_table('subscription_extensions')
