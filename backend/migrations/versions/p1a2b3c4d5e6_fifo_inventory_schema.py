"""fifo inventory schema

Revision ID: p1a2b3c4d5e6
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the parcel operations schema:
- products: catalog with the current_stock cache
- inventory_batches: FIFO cost layers
- orders: parcel orders with allocation / return flags and cost fields
- order_line_items: allocation ledger (order x batch x quantity x unit cost)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'p1a2b3c4d5e6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: Catalog and stock cache
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('name_key', sa.String(length=255), nullable=False),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('default_cogs_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name_key', name='uq_products_name_key'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # inventory_batches: FIFO cost layers
    # ============================================================================
    op.create_table(
        'inventory_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_received', sa.Integer(), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('supplier_reference', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            'remaining_quantity >= 0 AND remaining_quantity <= quantity_received',
            name='ck_batches_remaining_bounds',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_batches_product_id', 'inventory_batches', ['product_id'])
    op.create_index('ix_inventory_batches_received_at', 'inventory_batches', ['received_at'])
    op.create_index('ix_batches_product_fifo', 'inventory_batches', ['product_id', 'received_at', 'id'])

    # ============================================================================
    # orders: Parcel orders
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tracking_number', sa.String(length=64), nullable=False),
        sa.Column('order_ref', sa.String(length=64), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_city', sa.String(length=128), nullable=True),
        sa.Column('product_description', sa.Text(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=True),
        sa.Column('courier_fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('order_status', sa.String(length=32), nullable=False, server_default='dispatched'),
        sa.Column('dispatch_date', sa.Date(), nullable=True),
        sa.Column('return_received', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cogs_allocated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('precogs_cents', sa.Integer(), nullable=True),
        sa.Column('cogs_cents', sa.Integer(), nullable=True),
        sa.Column('cost_finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tracking_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_status', 'orders', ['order_status'])

    # ============================================================================
    # order_line_items: Allocation ledger
    # ============================================================================
    op.create_table(
        'order_line_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('total_cost_cents', sa.Integer(), nullable=False),
        sa.Column('allocated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['inventory_batches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_line_items_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_line_items_order_id', 'order_line_items', ['order_id'])
    op.create_index('ix_order_line_items_product_id', 'order_line_items', ['product_id'])
    op.create_index('ix_order_line_items_batch_id', 'order_line_items', ['batch_id'])


def downgrade():
    op.drop_index('ix_order_line_items_batch_id', table_name='order_line_items')
    op.drop_index('ix_order_line_items_product_id', table_name='order_line_items')
    op.drop_index('ix_order_line_items_order_id', table_name='order_line_items')
    op.drop_table('order_line_items')

    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_batches_product_fifo', table_name='inventory_batches')
    op.drop_index('ix_inventory_batches_received_at', table_name='inventory_batches')
    op.drop_index('ix_inventory_batches_product_id', table_name='inventory_batches')
    op.drop_table('inventory_batches')

    op.drop_table('products')
