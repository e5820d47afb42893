"""create plan catalogue, subscriptions, credit ledger and payment tables

Revision ID: 0001_subscription_ledger
Revises:
Create Date: 2026-10-19 09:00:00.000000

Partial unique indexes enforce one active subscription per user and one
listing_creation debit per (user, listing).
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_subscription_ledger'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'subscription_plans',
        sa.Column('id', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('period', sa.String(length=10), nullable=True),
        sa.Column('features', sa.JSON(), nullable=False),
        sa.Column('credits_granted', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_subscription_plans'),
    )

    op.create_table(
        'user_subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.String(length=50), nullable=False),
        sa.Column('transaction_id', sa.String(length=100), nullable=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('credits_remaining', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_user_subscriptions'),
        sa.ForeignKeyConstraint(
            ['plan_id'], ['subscription_plans.id'],
            name='fk_user_subscriptions_plan_id_subscription_plans',
        ),
        sa.CheckConstraint('credits_remaining >= 0', name='ck_user_subscriptions_credits_non_negative'),
    )
    op.create_index('ix_user_subscriptions_user_id', 'user_subscriptions', ['user_id'])
    op.create_index('ix_user_subscriptions_status', 'user_subscriptions', ['status'])
    op.create_index(
        'uq_user_subscriptions_one_active', 'user_subscriptions', ['user_id'], unique=True,
        postgresql_where=sa.text("status = 'active'"), sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index(
        'uq_user_subscriptions_transaction_id', 'user_subscriptions', ['transaction_id'], unique=True,
        postgresql_where=sa.text('transaction_id IS NOT NULL'),
        sqlite_where=sa.text('transaction_id IS NOT NULL'),
    )

    op.create_table(
        'credit_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('subscription_id', sa.Integer(), nullable=True),
        sa.Column('listing_id', sa.Integer(), nullable=True),
        sa.Column('transaction_id', sa.String(length=100), nullable=True),
        sa.Column('credits_added', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credits_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('action_type', sa.String(length=30), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_credit_history'),
        sa.ForeignKeyConstraint(
            ['subscription_id'], ['user_subscriptions.id'],
            name='fk_credit_history_subscription_id_user_subscriptions',
        ),
    )
    op.create_index('ix_credit_history_user_id', 'credit_history', ['user_id'])
    op.create_index(
        'uq_credit_history_listing_debit', 'credit_history', ['user_id', 'listing_id'], unique=True,
        postgresql_where=sa.text("action_type = 'listing_creation'"),
        sqlite_where=sa.text("action_type = 'listing_creation'"),
    )

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.String(length=100), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_type', sa.String(length=20), nullable=False),
        sa.Column('payment_method', sa.String(length=10), nullable=False, server_default='mpesa'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='completed'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_payment_transactions'),
    )
    op.create_index('ix_payment_transactions_user_id', 'payment_transactions', ['user_id'])
    op.create_index(
        'ix_payment_transactions_transaction_id', 'payment_transactions', ['transaction_id'], unique=True
    )

    op.create_table(
        'mpesa_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.String(length=50), nullable=True),
        sa.Column('credit_package', sa.String(length=20), nullable=True),
        sa.Column('phone_number', sa.String(length=15), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('checkout_request_id', sa.String(length=100), nullable=False),
        sa.Column('merchant_request_id', sa.String(length=100), nullable=False),
        sa.Column('mpesa_receipt_number', sa.String(length=50), nullable=True),
        sa.Column('transaction_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('account_reference', sa.String(length=50), nullable=False),
        sa.Column('transaction_desc', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('result_code', sa.Integer(), nullable=True),
        sa.Column('result_desc', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_mpesa_transactions'),
        sa.ForeignKeyConstraint(
            ['plan_id'], ['subscription_plans.id'],
            name='fk_mpesa_transactions_plan_id_subscription_plans',
        ),
    )
    op.create_index('ix_mpesa_transactions_user_id', 'mpesa_transactions', ['user_id'])
    op.create_index(
        'ix_mpesa_transactions_checkout_request_id', 'mpesa_transactions', ['checkout_request_id'], unique=True
    )
    op.create_index('ix_mpesa_transactions_merchant_request_id', 'mpesa_transactions', ['merchant_request_id'])
    op.create_index('ix_mpesa_transactions_status', 'mpesa_transactions', ['status'])
    op.create_index('ix_mpesa_transactions_created_at', 'mpesa_transactions', ['created_at'])


def downgrade() -> None:
    op.drop_table('mpesa_transactions')
    op.drop_table('payment_transactions')
    op.drop_index('uq_credit_history_listing_debit', table_name='credit_history')
    op.drop_table('credit_history')
    op.drop_index('uq_user_subscriptions_transaction_id', table_name='user_subscriptions')
    op.drop_index('uq_user_subscriptions_one_active', table_name='user_subscriptions')
    op.drop_table('user_subscriptions')
    op.drop_table('subscription_plans')
