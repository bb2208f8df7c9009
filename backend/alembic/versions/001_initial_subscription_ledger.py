"""Subscriptions, earnings and withdrawals.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'subscriptions',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('subscriber_id', sa.String(255), nullable=False),
        sa.Column('owner_id', sa.String(255), nullable=False),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(10), nullable=False),
        sa.Column('payment_reference', sa.String(255), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_subscription_pair', 'subscriptions', ['subscriber_id', 'owner_id'])
    op.create_index('idx_subscription_owner_id', 'subscriptions', ['owner_id'])
    op.create_index('idx_subscription_status', 'subscriptions', ['status'])

    op.create_table(
        'withdrawals',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('decided_by', sa.String(255), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_withdrawal_owner_id', 'withdrawals', ['owner_id'])
    op.create_index('idx_withdrawal_status', 'withdrawals', ['status'])

    op.create_table(
        'earnings',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(255), nullable=False),
        sa.Column('subscription_id', sa.String(36), sa.ForeignKey('subscriptions.uuid'), nullable=False, unique=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('gross_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('percentage_rate', sa.Numeric(5, 4), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('withdrawal_id', sa.String(36), sa.ForeignKey('withdrawals.uuid'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_earning_owner_status', 'earnings', ['owner_id', 'status'])
    op.create_index('idx_earning_withdrawal_id', 'earnings', ['withdrawal_id'])

    op.create_table(
        'subscription_fees',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('creator_id', sa.String(255), nullable=True, unique=True),
        sa.Column('is_global', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )


def downgrade():
    op.drop_table('subscription_fees')
    op.drop_index('idx_earning_withdrawal_id', table_name='earnings')
    op.drop_index('idx_earning_owner_status', table_name='earnings')
    op.drop_table('earnings')
    op.drop_index('idx_withdrawal_status', table_name='withdrawals')
    op.drop_index('idx_withdrawal_owner_id', table_name='withdrawals')
    op.drop_table('withdrawals')
    op.drop_index('idx_subscription_status', table_name='subscriptions')
    op.drop_index('idx_subscription_owner_id', table_name='subscriptions')
    op.drop_index('idx_subscription_pair', table_name='subscriptions')
    op.drop_table('subscriptions')
