"""Payment core tables and seed data.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
import uuid

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

# Gateways start inactive and without credentials; configure them from the
# admin back office or scripts/configure_gateway.py, then activate one.
DEFAULT_GATEWAYS = [
    {"gateway_name": "midtrans", "display_name": "Midtrans"},
    {"gateway_name": "duitku", "display_name": "Duitku"},
]


def upgrade() -> None:
    op.create_table(
        'payment_gateway_configs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('gateway_name', sa.String(50), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=False),
        sa.Column('api_key_encrypted', sa.Text(), nullable=True),
        sa.Column('secret_key_encrypted', sa.Text(), nullable=True),
        sa.Column('merchant_id', sa.String(100), nullable=True),
        sa.Column('environment', sa.String(20), nullable=False, server_default='sandbox'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('webhook_url', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_name'),
        postgresql.ExcludeConstraint(
            ('is_active', '='),
            name='ex_payment_gateway_configs_single_active',
            using='btree',
            where=sa.text('is_active'),
            deferrable=True,
            initially='DEFERRED',
        ),
    )
    op.create_index('ix_payment_gateway_configs_gateway_name', 'payment_gateway_configs', ['gateway_name'])

    op.create_table(
        'payment_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_mode', sa.String(20), nullable=False, server_default='gateway'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('id = 1', name='ck_payment_settings_singleton'),
    )

    op.create_table(
        'manual_payment_methods',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('provider_name', sa.String(100), nullable=False),
        sa.Column('account_name', sa.String(150), nullable=False),
        sa.Column('account_number', sa.String(100), nullable=False),
        sa.Column('logo_url', sa.String(500), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_manual_payment_methods_is_active', 'manual_payment_methods', ['is_active'])

    op.create_table(
        'orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('order_code', sa.String(64), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('items', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('original_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('promo_code', sa.String(50), nullable=True),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('payment_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_gateway', sa.String(50), nullable=True),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('payment_type', sa.String(50), nullable=True),
        sa.Column('payment_code', sa.Text(), nullable=True),
        sa.Column('transaction_id', sa.String(255), nullable=True),
        sa.Column('manual_payment_method_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('payment_confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('download_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_code'),
        sa.ForeignKeyConstraint(
            ['manual_payment_method_id'], ['manual_payment_methods.id'], ondelete='SET NULL'
        ),
    )
    op.create_index('ix_orders_order_code', 'orders', ['order_code'])
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_payment_deadline', 'orders', ['payment_deadline'])
    op.create_index('ix_orders_status_deadline', 'orders', ['payment_status', 'payment_deadline'])

    # Seed data
    settings_table = sa.table(
        'payment_settings',
        sa.column('id', sa.Integer),
        sa.column('payment_mode', sa.String),
    )
    op.bulk_insert(settings_table, [{"id": 1, "payment_mode": "gateway"}])

    gateways_table = sa.table(
        'payment_gateway_configs',
        sa.column('id', postgresql.UUID(as_uuid=True)),
        sa.column('gateway_name', sa.String),
        sa.column('display_name', sa.String),
        sa.column('environment', sa.String),
        sa.column('is_active', sa.Boolean),
    )
    op.bulk_insert(
        gateways_table,
        [
            {**gateway, "id": uuid.uuid4(), "environment": "sandbox", "is_active": False}
            for gateway in DEFAULT_GATEWAYS
        ],
    )


def downgrade() -> None:
    op.drop_table('orders')
    op.drop_table('manual_payment_methods')
    op.drop_table('payment_settings')
    op.drop_table('payment_gateway_configs')
