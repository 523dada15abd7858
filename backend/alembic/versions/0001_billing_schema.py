"""Billing schema: plans, subscriptions, webhook log, audit trail, payments

Revision ID: 0001_billing_schema
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_billing_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the billing tables and seed the free/pro plans."""

    plans = op.create_table(
        'subscription_plans',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(20), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=False),
        sa.Column('price_check_limit', sa.Integer, nullable=False, server_default='0'),
        sa.Column('post_creation_limit', sa.Integer, nullable=False, server_default='0'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_subscription_plans_name', 'subscription_plans', ['name'], unique=True)

    op.create_table(
        'user_subscriptions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('plan_id', sa.String(36), sa.ForeignKey('subscription_plans.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('restricted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('external_subscription_id', sa.String(255)),
        sa.Column('price_checks_used', sa.Integer, nullable=False, server_default='0'),
        sa.Column('posts_created', sa.Integer, nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(timezone=True)),
        sa.Column('expires_at', sa.DateTime(timezone=True)),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('cancellation_reason', sa.String(500)),
        sa.Column('cancellation_source', sa.String(50)),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_user_subscriptions_user_id', 'user_subscriptions', ['user_id'])
    op.create_index('ix_user_subscriptions_status', 'user_subscriptions', ['status'])
    op.create_index(
        'ix_user_subscriptions_external_subscription_id',
        'user_subscriptions',
        ['external_subscription_id'],
    )
    # At most one active row per user
    op.create_index(
        'uq_user_subscriptions_one_active',
        'user_subscriptions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        'webhook_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('resource_id', sa.String(255)),
        sa.Column('payload', postgresql.JSONB, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='received'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_webhook_events_status', 'webhook_events', ['status'])
    # Retention sweeps filter on received_at
    op.create_index('ix_webhook_events_received_at', 'webhook_events', ['received_at'])

    op.create_table(
        'subscription_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('event_data', postgresql.JSONB),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_subscription_events_user_id', 'subscription_events', ['user_id'])

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('subscription_id', sa.String(36), sa.ForeignKey('user_subscriptions.id'), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('payment_method', sa.String(20), nullable=False, server_default='paypal'),
        sa.Column('paypal_order_id', sa.String(255)),
        sa.Column('paypal_capture_id', sa.String(255)),
        sa.Column('status', sa.String(20), nullable=False, server_default='completed'),
        sa.Column('transaction_data', postgresql.JSONB),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_payment_transactions_user_id', 'payment_transactions', ['user_id'])
    op.create_index('ix_payment_transactions_paypal_order_id', 'payment_transactions', ['paypal_order_id'], unique=True)

    # Subscription tables are only touched by the backend's service role
    for table in ('user_subscriptions', 'webhook_events', 'subscription_events', 'payment_transactions'):
        op.execute(f'ALTER TABLE {table} ENABLE ROW LEVEL SECURITY')

    op.execute("""
        CREATE POLICY "Users can view own subscription"
        ON user_subscriptions FOR SELECT
        TO authenticated
        USING (user_id = auth.uid()::text)
    """)

    op.bulk_insert(
        plans,
        [
            {
                'id': '00000000-0000-4000-8000-000000000001',
                'name': 'free',
                'display_name': 'Free',
                'price_check_limit': 50,
                'post_creation_limit': 100,
                'price': 0,
            },
            {
                'id': '00000000-0000-4000-8000-000000000002',
                'name': 'pro',
                'display_name': 'Pro',
                'price_check_limit': 300,
                'post_creation_limit': 500,
                'price': 4,
            },
        ],
    )


def downgrade() -> None:
    """Drop the billing tables."""

    op.execute('DROP POLICY IF EXISTS "Users can view own subscription" ON user_subscriptions')

    op.drop_table('payment_transactions')
    op.drop_table('subscription_events')
    op.drop_table('webhook_events')
    op.drop_index('uq_user_subscriptions_one_active', table_name='user_subscriptions')
    op.drop_table('user_subscriptions')
    op.drop_table('subscription_plans')
