"""Create vendor, invoice, activity log and stripe event tables

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'vendors',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=False),
        sa.Column('subscription_status', sa.String(length=50), nullable=False, server_default='trialing'),
        sa.Column('subscription_event_created', sa.BigInteger(), nullable=True),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stripe_connect_account_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_vendors_id', 'vendors', ['id'])
    op.create_index('ix_vendors_username', 'vendors', ['username'], unique=True)
    op.create_index('ix_vendors_stripe_customer_id', 'vendors', ['stripe_customer_id'], unique=True)
    op.create_index('ix_vendors_subscription_status', 'vendors', ['subscription_status'])

    op.create_table(
        'vendor_customers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('vendors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('vendor_id', 'stripe_customer_id', name='uq_vendor_customer'),
    )
    op.create_index('ix_vendor_customers_id', 'vendor_customers', ['id'])
    op.create_index('ix_vendor_customers_vendor_id', 'vendor_customers', ['vendor_id'])
    op.create_index('ix_vendor_customers_stripe_customer_id', 'vendor_customers', ['stripe_customer_id'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('stripe_invoice_id', sa.String(length=255), nullable=False),
        sa.Column('customer_id', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('invoice_url', sa.String(length=1024), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='open'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_invoices_id', 'invoices', ['id'])
    op.create_index('ix_invoices_stripe_invoice_id', 'invoices', ['stripe_invoice_id'], unique=True)
    op.create_index('ix_invoices_customer_id', 'invoices', ['customer_id'])

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('related_id', sa.String(length=255), nullable=True),
        sa.Column('severity', sa.String(length=20), nullable=False, server_default='info'),
    )
    op.create_index('ix_activity_logs_id', 'activity_logs', ['id'])
    op.create_index('ix_activity_logs_event_type', 'activity_logs', ['event_type'])
    op.create_index('ix_activity_logs_timestamp', 'activity_logs', ['timestamp'])
    op.create_index('ix_activity_logs_related_id', 'activity_logs', ['related_id'])

    op.create_table(
        'stripe_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('stripe_event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('object_id', sa.String(length=255), nullable=True),
        sa.Column('outcome', sa.String(length=50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('event_created_at', sa.BigInteger(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_stripe_events_id', 'stripe_events', ['id'])
    # Unique: settles concurrent deliveries of the same event
    op.create_index('ix_stripe_events_stripe_event_id', 'stripe_events', ['stripe_event_id'], unique=True)
    op.create_index('ix_stripe_events_event_type', 'stripe_events', ['event_type'])
    op.create_index('ix_stripe_events_object_id', 'stripe_events', ['object_id'])
    op.create_index('ix_stripe_events_processed_at', 'stripe_events', ['processed_at'])


def downgrade() -> None:
    op.drop_table('stripe_events')
    op.drop_table('activity_logs')
    op.drop_table('invoices')
    op.drop_table('vendor_customers')
    op.drop_table('vendors')
