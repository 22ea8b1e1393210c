"""create_orders_tables

Revision ID: 3f9c1e7a2b40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '3f9c1e7a2b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


order_status = sa.Enum(
    'pending', 'processing', 'shipped', 'delivered', 'cancelled',
    name='order_status_enum',
)
payment_status = sa.Enum(
    'pending', 'paid', 'failed', 'partially_refunded', 'refunded',
    'disputed', 'dispute_won', 'dispute_lost',
    name='order_payment_status_enum',
)
fulfillment_status = sa.Enum(
    'unfulfilled', 'partially_fulfilled', 'fulfilled',
    name='order_fulfillment_status_enum',
)
history_field = sa.Enum(
    'status', 'payment_status', 'fulfillment_status',
    name='order_history_field_enum',
)
movement_kind = sa.Enum('sale', 'restock', name='stock_movement_kind_enum')
discount_type = sa.Enum('percentage', 'fixed', name='discount_type_enum')
event_status = sa.Enum(
    'completed', 'skipped', 'failed', name='processed_event_status_enum'
)
dispute_reason = sa.Enum(
    'duplicate', 'fraudulent', 'product_not_received', 'product_unacceptable',
    'unrecognized', 'credit_not_processed', 'general',
    name='dispute_reason_enum',
)
dispute_status = sa.Enum(
    'needs_response', 'under_review', 'won', 'lost', 'charge_refunded',
    name='dispute_status_enum',
)
refund_reason = sa.Enum(
    'customer_request', 'defective', 'wrong_item', 'lost_in_transit', 'other',
    name='refund_reason_enum',
)
refund_status = sa.Enum(
    'pending', 'approved', 'rejected', 'completed', 'failed',
    name='refund_status_enum',
)


def upgrade() -> None:
    """Upgrade schema - Create order, inventory, discount and payment tables."""

    # Inventory
    op.create_table(
        'product_skus',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('sku_code', sa.String(length=100), nullable=False),
        sa.Column('product_title', sa.String(length=255), nullable=False),
        sa.Column('variant_label', sa.String(length=255), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('inventory', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('inventory >= 0', name='sku_inventory_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_product_skus_sku_code', 'product_skus', ['sku_code'], unique=True)

    # Orders
    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=50), nullable=True),
        sa.Column('shipping_address', JSONB(), nullable=True),
        sa.Column('billing_address', JSONB(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('shipping_cost', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_code', sa.String(length=50), nullable=True),
        sa.Column('status', order_status, server_default='pending', nullable=False),
        sa.Column('payment_status', payment_status, server_default='pending', nullable=False),
        sa.Column('fulfillment_status', fulfillment_status, server_default='unfulfilled', nullable=False),
        sa.Column('payment_session_id', sa.String(length=255), nullable=True),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('invoice_id', sa.String(length=255), nullable=True),
        sa.Column('stock_decremented_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stock_restored_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reminder_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('total >= 0', name='order_total_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_session_id'),
        sa.UniqueConstraint('payment_intent_id'),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index(
        'ix_orders_abandoned_lookup',
        'orders',
        ['payment_status', 'status', 'created_at'],
    )

    op.create_table(
        'order_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('sku_id', sa.Uuid(), nullable=False),
        sa.Column('sku_code', sa.String(length=100), nullable=False),
        sa.Column('product_title', sa.String(length=255), nullable=False),
        sa.Column('variant_label', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('quantity > 0', name='order_item_positive_qty'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_sku_id', 'order_items', ['sku_id'])

    op.create_table(
        'order_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('field', history_field, nullable=False),
        sa.Column('previous_value', sa.String(length=50), nullable=False),
        sa.Column('new_value', sa.String(length=50), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_order_history_order_created', 'order_history', ['order_id', 'created_at']
    )

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('sku_id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column('kind', movement_kind, nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['sku_id'], ['product_skus.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stock_movements_sku_id', 'stock_movements', ['sku_id'])
    op.create_index('ix_stock_movements_order_id', 'stock_movements', ['order_id'])

    # Discounts
    op.create_table(
        'discounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('discount_type', discount_type, nullable=False),
        sa.Column('value', sa.Numeric(12, 2), nullable=False),
        sa.Column('min_subtotal', sa.Numeric(12, 2), nullable=True),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('max_uses_per_customer', sa.Integer(), nullable=True),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_discounts_code', 'discounts', ['code'], unique=True)

    op.create_table(
        'discount_usages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('discount_id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('customer_id', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('amount_applied', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['discount_id'], ['discounts.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
    )
    op.create_index(
        'ix_discount_usages_discount_customer',
        'discount_usages',
        ['discount_id', 'customer_id'],
    )

    # Payment events, disputes and refunds
    op.create_table(
        'processed_payment_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('order_reference', sa.String(length=255), nullable=True),
        sa.Column('status', event_status, nullable=False),
        sa.Column('outcome', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), server_default='1', nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id'),
    )
    op.create_index(
        'ix_processed_payment_events_order_reference',
        'processed_payment_events',
        ['order_reference'],
    )
    op.create_index(
        'ix_processed_events_status_received',
        'processed_payment_events',
        ['status', 'received_at'],
    )

    op.create_table(
        'disputes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('reason', dispute_reason, nullable=False),
        sa.Column('status', dispute_status, nullable=False),
        sa.Column('evidence_due_by', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id'),
    )
    op.create_index('ix_disputes_order_id', 'disputes', ['order_id'])

    op.create_table(
        'refunds',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('reason', refund_reason, nullable=False),
        sa.Column('status', refund_status, nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.String(length=255), nullable=True),
        sa.Column('reviewed_by', sa.String(length=255), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('restocked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id'),
    )
    op.create_index('ix_refunds_order_id', 'refunds', ['order_id'])

    op.create_table(
        'refund_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('refund_id', sa.Uuid(), nullable=False),
        sa.Column('order_item_id', sa.Uuid(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('restock', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['refund_id'], ['refunds.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['order_item_id'], ['order_items.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refund_items_refund_id', 'refund_items', ['refund_id'])


def downgrade() -> None:
    """Downgrade schema - Drop order, inventory, discount and payment tables."""
    op.drop_index('ix_refund_items_refund_id', table_name='refund_items')
    op.drop_table('refund_items')
    op.drop_index('ix_refunds_order_id', table_name='refunds')
    op.drop_table('refunds')
    op.drop_index('ix_disputes_order_id', table_name='disputes')
    op.drop_table('disputes')
    op.drop_index('ix_processed_events_status_received', table_name='processed_payment_events')
    op.drop_index('ix_processed_payment_events_order_reference', table_name='processed_payment_events')
    op.drop_table('processed_payment_events')
    op.drop_index('ix_discount_usages_discount_customer', table_name='discount_usages')
    op.drop_table('discount_usages')
    op.drop_index('ix_discounts_code', table_name='discounts')
    op.drop_table('discounts')
    op.drop_index('ix_stock_movements_order_id', table_name='stock_movements')
    op.drop_index('ix_stock_movements_sku_id', table_name='stock_movements')
    op.drop_table('stock_movements')
    op.drop_index('ix_order_history_order_created', table_name='order_history')
    op.drop_table('order_history')
    op.drop_index('ix_order_items_sku_id', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_abandoned_lookup', table_name='orders')
    op.drop_index('ix_orders_customer_id', table_name='orders')
    op.drop_index('ix_orders_order_number', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_product_skus_sku_code', table_name='product_skus')
    op.drop_table('product_skus')

    bind = op.get_bind()
    for enum_type in (
        refund_status,
        refund_reason,
        dispute_status,
        dispute_reason,
        event_status,
        discount_type,
        movement_kind,
        history_field,
        fulfillment_status,
        payment_status,
        order_status,
    ):
        enum_type.drop(bind, checkfirst=True)
