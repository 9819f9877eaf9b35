"""
Alembic migration: Create order, order item and product access tables.

Creates the orders table with its status enum, the immutable order_items
lines, and user_product_access grants with a unique (user, product, order)
key so duplicate provisioning is rejected by the database.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Upgrade database schema to add order and entitlement tables.
    """
    op.execute("""
        CREATE TYPE order_status AS ENUM (
            'pending',
            'paid',
            'failed',
            'cancelled'
        )
    """)

    op.create_table(
        'orders',
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            server_default=sa.text('gen_random_uuid()'),
            comment='Order identifier, also the gateway order_id',
        ),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment='User who placed the order',
        ),
        sa.Column(
            'total_amount',
            sa.BigInteger(),
            nullable=False,
            comment='Order total in whole currency units',
        ),
        sa.Column(
            'currency',
            sa.String(length=3),
            nullable=False,
            server_default='IDR',
            comment='ISO currency code of total_amount',
        ),
        sa.Column(
            'status',
            postgresql.ENUM(name='order_status', create_type=False),
            nullable=False,
            server_default='pending',
            comment='Current order status',
        ),
        sa.Column(
            'midtrans_transaction_id',
            sa.String(length=255),
            nullable=True,
            comment='Gateway transaction identifier',
        ),
        sa.Column(
            'payment_type',
            sa.String(length=64),
            nullable=True,
            comment='Gateway payment method',
        ),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
            comment='Timestamp when record was last updated',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.CheckConstraint(
            'total_amount >= 0',
            name='ck_orders_total_amount_non_negative',
        ),
        comment='Customer orders reconciled against gateway notifications',
    )

    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_user_status', 'orders', ['user_id', 'status'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            server_default=sa.text('gen_random_uuid()'),
            comment='Unique identifier for the record',
        ),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment='Parent order identifier',
        ),
        sa.Column(
            'product_id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment='Purchased product identifier',
        ),
        sa.Column(
            'product_name',
            sa.String(length=255),
            nullable=False,
            comment='Product name at time of purchase',
        ),
        sa.Column(
            'quantity',
            sa.Integer(),
            nullable=False,
            server_default='1',
            comment='Quantity purchased',
        ),
        sa.Column(
            'price',
            sa.BigInteger(),
            nullable=False,
            comment='Unit price in whole currency units at time of purchase',
        ),
        sa.Column(
            'currency',
            sa.String(length=3),
            nullable=False,
            server_default='IDR',
            comment='ISO currency code of price',
        ),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
        sa.PrimaryKeyConstraint('id', name='pk_order_items'),
        sa.ForeignKeyConstraint(
            ['order_id'],
            ['orders.id'],
            name='fk_order_items_order_id',
            ondelete='CASCADE',
        ),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('price >= 0', name='ck_order_items_price_non_negative'),
        comment='Immutable product lines of an order',
    )

    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'user_product_access',
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            server_default=sa.text('gen_random_uuid()'),
            comment='Unique identifier for the record',
        ),
        sa.Column(
            'user_id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment='User holding the access',
        ),
        sa.Column(
            'product_id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment='Product the user may access',
        ),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment='Paid order that produced the grant',
        ),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
            comment='Timestamp when access was granted',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_user_product_access'),
        sa.ForeignKeyConstraint(
            ['order_id'],
            ['orders.id'],
            name='fk_user_product_access_order_id',
            ondelete='CASCADE',
        ),
        sa.UniqueConstraint(
            'user_id',
            'product_id',
            'order_id',
            name='uq_user_product_access_user_product_order',
        ),
        comment='Product entitlements granted by paid orders',
    )

    op.create_index('ix_user_product_access_user_id', 'user_product_access', ['user_id'])
    op.create_index('ix_user_product_access_order_id', 'user_product_access', ['order_id'])
    op.create_index(
        'ix_user_product_access_user_product',
        'user_product_access',
        ['user_id', 'product_id'],
    )


def downgrade() -> None:
    """
    Downgrade database schema by removing order and entitlement tables.
    """
    op.drop_index('ix_user_product_access_user_product', table_name='user_product_access')
    op.drop_index('ix_user_product_access_order_id', table_name='user_product_access')
    op.drop_index('ix_user_product_access_user_id', table_name='user_product_access')
    op.drop_table('user_product_access')

    op.drop_index('ix_order_items_product_id', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('ix_orders_status_created', table_name='orders')
    op.drop_index('ix_orders_user_status', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')

    op.execute('DROP TYPE IF EXISTS order_status')
