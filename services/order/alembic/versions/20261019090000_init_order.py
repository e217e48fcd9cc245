from alembic import op
import sqlalchemy as sa

revision = "20261019090000"
down_revision = None

MONEY = sa.Numeric(14, 2)
NOW = sa.text("(now() at time zone 'utc')")

def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=240), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='draft'),
    )
    op.create_table(
        'product_details',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('color', sa.String(length=64), nullable=False),
        sa.Column('price', MONEY, nullable=False),
        sa.Column('original_price', MONEY, nullable=True),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.UniqueConstraint('product_id', 'color', name='uq_product_details_product_color'),
    )
    op.create_table(
        'product_inventories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_detail_id', sa.Integer(), sa.ForeignKey('product_details.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('size', sa.String(length=16), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('product_detail_id', 'size', name='uq_product_inventories_detail_size'),
        sa.CheckConstraint('stock >= 0', name='ck_product_inventories_stock_non_negative'),
    )
    op.create_table(
        'vouchers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=64), nullable=False, unique=True),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('value', MONEY, nullable=False),
        sa.Column('min_order_value', MONEY, nullable=False, server_default='0'),
        sa.Column('expiration_date', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='active'),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('usage_limit', sa.Integer(), nullable=False, server_default='0'),
    )
    payment_methods = op.create_table(
        'payment_methods',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=64), nullable=False, unique=True),
        sa.Column('is_cash_on_delivery', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_email', sa.String(length=255), nullable=True, index=True),
        sa.Column('subtotal', MONEY, nullable=False),
        sa.Column('voucher_discount', MONEY, nullable=False, server_default='0'),
        sa.Column('shipping_fee', MONEY, nullable=False, server_default='0'),
        sa.Column('shipping_base_price', MONEY, nullable=False, server_default='0'),
        sa.Column('shipping_discount', MONEY, nullable=False, server_default='0'),
        sa.Column('total', MONEY, nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending', index=True),
        sa.Column('payment_method_id', sa.Integer(), sa.ForeignKey('payment_methods.id'), nullable=False),
        sa.Column('payment_status_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('shipping_full_name', sa.String(length=255), nullable=False),
        sa.Column('shipping_phone_number', sa.String(length=32), nullable=False),
        sa.Column('shipping_street_address', sa.String(length=255), nullable=False),
        sa.Column('shipping_ward', sa.String(length=120), nullable=True),
        sa.Column('shipping_district', sa.String(length=120), nullable=False),
        sa.Column('shipping_city', sa.String(length=120), nullable=False),
        sa.Column('cancel_note', sa.Text(), nullable=True),
        sa.Column('refund_amount', MONEY, nullable=True),
        sa.Column('refund_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW, index=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=NOW),
    )
    op.create_table(
        'order_details',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('product_detail_id', sa.Integer(), sa.ForeignKey('product_details.id', ondelete='SET NULL'), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('color', sa.String(length=64), nullable=False),
        sa.Column('size', sa.String(length=16), nullable=False),
        sa.Column('original_price', MONEY, nullable=False),
        sa.Column('discount_price', MONEY, nullable=False),
        sa.Column('discount_percent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('voucher_id', sa.Integer(), sa.ForeignKey('vouchers.id', ondelete='SET NULL'), nullable=True),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
    )
    op.bulk_insert(payment_methods, [
        {'id': 1, 'name': 'Cash on delivery', 'is_cash_on_delivery': True},
        {'id': 2, 'name': 'VNPay', 'is_cash_on_delivery': False},
    ])

def downgrade():
    op.drop_table('order_details')
    op.drop_table('orders')
    op.drop_table('payment_methods')
    op.drop_table('vouchers')
    op.drop_table('product_inventories')
    op.drop_table('product_details')
    op.drop_table('products')
