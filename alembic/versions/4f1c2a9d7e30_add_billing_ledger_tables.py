"""add_billing_ledger_tables

Revision ID: 4f1c2a9d7e30
Revises:
Create Date: 2026-10-18 09:12:44.118203

Adds the token ledger and recurring billing tables.

Tables:
- subscriptions: One row per subscriber; tier, token balance, billing period and bound credential
- ledger_entries: Append-only charges, token grants, refunds and failure records
- daily_usage_counters: Work units consumed per subscription per UTC day (daily cap)
- referral_rewards: One-time referral credits, unique per (referrer, referred) pair
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1c2a9d7e30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add billing tables with indexes and balance constraints."""

    # Create subscriptions table
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('subscriber_id', sa.String(255), nullable=False),
        sa.Column('tier', sa.String(50), nullable=False),

        # Token balance for the current period
        sa.Column('tokens_total', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tokens_used', sa.BigInteger(), nullable=False, server_default='0'),

        # Billing cycle
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),

        # Gateway references (nullable until a credential is authorized)
        sa.Column('billing_credential_ref', sa.String(255), nullable=True),
        sa.Column('gateway_customer_ref', sa.String(255), nullable=True),
        sa.Column('authorization_status', sa.String(50), nullable=False, server_default='none'),
        sa.Column('pending_tier', sa.String(50), nullable=True),
        sa.Column('pending_amount_minor_units', sa.Integer(), nullable=True),

        # Standard timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('tokens_used >= 0 AND tokens_used <= tokens_total', name='ck_subscriptions_tokens_used_within_total'),
        sa.CheckConstraint('period_start < period_end', name='ck_subscriptions_period_order'),
    )

    op.create_index('ix_subscriptions_subscriber_id', 'subscriptions', ['subscriber_id'], unique=True)
    op.create_index('ix_subscriptions_tier', 'subscriptions', ['tier'])
    op.create_index('ix_subscriptions_gateway_customer_ref', 'subscriptions', ['gateway_customer_ref'])
    # Renewal scan: cancel_at_period_end = false AND period_end <= cutoff AND credential bound
    op.create_index('idx_subscriptions_renewal', 'subscriptions', ['cancel_at_period_end', 'period_end'], postgresql_where=sa.text('billing_credential_ref IS NOT NULL'))

    # Create ledger_entries table
    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('subscription_id', sa.BigInteger(), nullable=False),

        sa.Column('kind', sa.String(50), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('amount_minor_units', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('token_delta', sa.BigInteger(), nullable=False, server_default='0'),

        # Idempotency key shared by the scheduler and webhook reconciliation
        sa.Column('external_charge_ref', sa.String(255), nullable=True),
        sa.Column('gateway_payment_ref', sa.String(255), nullable=True),
        sa.Column('failure_code', sa.String(100), nullable=True),
        sa.Column('plan_tier', sa.String(50), nullable=True),
        sa.Column('description', sa.String(500), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('external_charge_ref', name='uq_ledger_entries_external_charge_ref'),
    )

    op.create_index('ix_ledger_entries_subscription_id', 'ledger_entries', ['subscription_id'])
    op.create_index('ix_ledger_entries_gateway_payment_ref', 'ledger_entries', ['gateway_payment_ref'])
    # Failure window counts and pending-charge checks
    op.create_index('idx_ledger_entries_subscription_kind_status_date', 'ledger_entries', ['subscription_id', 'kind', 'status', 'created_at'])

    # Create daily_usage_counters table
    op.create_table(
        'daily_usage_counters',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('subscription_id', sa.BigInteger(), nullable=False),
        sa.Column('usage_date', sa.Date(), nullable=False),
        sa.Column('units_consumed', sa.Integer(), nullable=False, server_default='0'),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('subscription_id', 'usage_date', name='uq_daily_usage_subscription_date'),
    )

    # Create referral_rewards table
    op.create_table(
        'referral_rewards',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('referrer_subscriber_id', sa.String(255), nullable=False),
        sa.Column('referred_subscriber_id', sa.String(255), nullable=False),
        sa.Column('referrer_tokens', sa.Integer(), nullable=False),
        sa.Column('referred_tokens', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('referrer_subscriber_id', 'referred_subscriber_id', name='uq_referral_rewards_pair'),
    )

    op.create_index('ix_referral_rewards_referrer_subscriber_id', 'referral_rewards', ['referrer_subscriber_id'])


def downgrade() -> None:
    """Remove billing tables."""
    op.drop_index('ix_referral_rewards_referrer_subscriber_id', table_name='referral_rewards')
    op.drop_table('referral_rewards')

    op.drop_table('daily_usage_counters')

    op.drop_index('idx_ledger_entries_subscription_kind_status_date', table_name='ledger_entries')
    op.drop_index('ix_ledger_entries_gateway_payment_ref', table_name='ledger_entries')
    op.drop_index('ix_ledger_entries_subscription_id', table_name='ledger_entries')
    op.drop_table('ledger_entries')

    op.drop_index('idx_subscriptions_renewal', table_name='subscriptions')
    op.drop_index('ix_subscriptions_gateway_customer_ref', table_name='subscriptions')
    op.drop_index('ix_subscriptions_tier', table_name='subscriptions')
    op.drop_index('ix_subscriptions_subscriber_id', table_name='subscriptions')
    op.drop_table('subscriptions')
