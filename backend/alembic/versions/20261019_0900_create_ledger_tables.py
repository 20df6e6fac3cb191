"""create accounts, ledger, usage and payment tables

Revision ID: 3f7c2a9d1e04
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f7c2a9d1e04'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'accounts',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_premium', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            'premium_plan',
            sa.Enum('MONTHLY', 'YEARLY', name='premiumplan'),
            nullable=True,
        ),
        sa.Column('premium_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('premium_order_id', sa.String(length=64), nullable=True),
        sa.Column('ledger_frozen', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('frozen_reason', sa.String(length=255), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('balance >= 0', name='ck_accounts_balance_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_accounts_email', 'accounts', ['email'])

    op.create_table(
        'usage_records',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('feature_id', sa.String(length=100), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=False),
        sa.Column('tokens_consumed', sa.Integer(), nullable=False),
        sa.Column('external_units_consumed', sa.Integer(), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_usage_records_user_id', 'usage_records', ['user_id'])
    op.create_index('ix_usage_records_feature_id', 'usage_records', ['feature_id'])
    op.create_index('ix_usage_records_created_at', 'usage_records', ['created_at'])

    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column(
            'type',
            sa.Enum('PURCHASE', 'BONUS', 'CONSUME', 'REFUND', name='ledgerentrytype'),
            nullable=False,
        ),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('balance_before', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.String(length=64), nullable=True),
        sa.Column('usage_id', sa.String(length=36), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=False, server_default=''),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', 'type', name='uq_ledger_transaction_type'),
        sa.UniqueConstraint('usage_id', 'type', name='uq_ledger_usage_type'),
    )
    op.create_index('ix_ledger_entries_user_id', 'ledger_entries', ['user_id'])
    op.create_index('ix_ledger_entries_type', 'ledger_entries', ['type'])
    op.create_index('ix_ledger_entries_transaction_id', 'ledger_entries', ['transaction_id'])
    op.create_index('ix_ledger_entries_usage_id', 'ledger_entries', ['usage_id'])
    op.create_index('ix_ledger_entries_created_at', 'ledger_entries', ['created_at'])

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column(
            'type',
            sa.Enum('SUBSCRIPTION', 'TOKENS', name='paymenttype'),
            nullable=False,
        ),
        sa.Column('item', sa.String(length=50), nullable=False),
        sa.Column('gross_amount', sa.Integer(), nullable=False),
        sa.Column('tokens_amount', sa.Integer(), nullable=True),
        sa.Column(
            'status',
            sa.Enum('PENDING', 'COMPLETED', 'FAILED', name='paymentstatus'),
            nullable=False,
        ),
        sa.Column('gateway_status', sa.String(length=32), nullable=True),
        sa.Column('gateway_token', sa.String(length=255), nullable=True),
        sa.Column('redirect_url', sa.String(length=512), nullable=True),
        sa.Column('claim_token', sa.String(length=36), nullable=True),
        sa.Column('claim_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_payment_transactions_order_id', 'payment_transactions', ['order_id'], unique=True
    )
    op.create_index('ix_payment_transactions_user_id', 'payment_transactions', ['user_id'])
    op.create_index('ix_payment_transactions_status', 'payment_transactions', ['status'])
    op.create_index(
        'ix_payment_transactions_created_at', 'payment_transactions', ['created_at']
    )


def downgrade() -> None:
    op.drop_table('payment_transactions')
    op.drop_table('ledger_entries')
    op.drop_table('usage_records')
    op.drop_table('accounts')
    sa.Enum(name='paymentstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='paymenttype').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='ledgerentrytype').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='premiumplan').drop(op.get_bind(), checkfirst=True)
