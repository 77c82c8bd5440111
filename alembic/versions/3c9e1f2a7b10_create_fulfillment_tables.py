"""create_fulfillment_tables

Revision ID: 3c9e1f2a7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '3c9e1f2a7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

payment_method_enum = sa.Enum('cod', 'online', 'free', name='fulfillment_payment_method_enum')
order_status_enum = sa.Enum(
    'pending', 'processing', 'shipped', 'delivered', 'cancelled',
    name='fulfillment_order_status_enum',
)
cod_status_enum = sa.Enum(
    'pending', 'submitted', 'dispatched', 'delivered', 'failed', 'cancelled',
    name='fulfillment_cod_status_enum',
)
file_status_enum = sa.Enum('received', 'pending', 'ready', name='fulfillment_file_status_enum')
audit_entity_type_enum = sa.Enum('file', 'order', name='fulfillment_audit_entity_type_enum')


def upgrade() -> None:
    """Upgrade schema - Add fulfillment tables."""

    # Orders
    op.create_table(
        'fulfillment_orders',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_number', sa.String(20), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('customer_first', sa.String(100), nullable=True),
        sa.Column('customer_last', sa.String(100), nullable=True),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('payment_method', payment_method_enum, server_default='online', nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('shipping', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('tax', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('discount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=True),
        sa.Column('total_cents', sa.Integer(), nullable=True),
        sa.Column('status', order_status_enum, server_default='pending', nullable=False),
        sa.Column('cod_status', cod_status_enum, nullable=True),
        sa.Column('shipping_address', JSONB(), nullable=True),
        sa.Column('shipping_method', sa.String(100), nullable=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('estimated_delivery', sa.DateTime(timezone=True), nullable=True),
        sa.Column('customer_notes', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fulfillment_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_fulfillment_orders_order_number', 'fulfillment_orders', ['order_number'], unique=True)
    op.create_index('ix_fulfillment_orders_user_id', 'fulfillment_orders', ['user_id'])
    op.create_index('ix_fulfillment_orders_tracking_number', 'fulfillment_orders', ['tracking_number'])

    # Order lines
    op.create_table(
        'fulfillment_order_items',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(100), server_default='', nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('is_virtual', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='fulfillment_item_positive_quantity'),
        sa.ForeignKeyConstraint(['order_id'], ['fulfillment_orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_fulfillment_order_items_order_id', 'fulfillment_order_items', ['order_id'])

    # Carrier parcels
    op.create_table(
        'fulfillment_parcels',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=True),
        sa.Column('legacy_order_id', sa.String(100), nullable=True),
        sa.Column('firstname', sa.String(100), nullable=True),
        sa.Column('familyname', sa.String(100), nullable=True),
        sa.Column('contact_phone', sa.String(50), nullable=True),
        sa.Column('address', sa.String(500), nullable=False),
        sa.Column('to_wilaya_name', sa.String(100), nullable=False),
        sa.Column('to_commune_name', sa.String(100), nullable=False),
        sa.Column('is_stopdesk', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('stopdesk_id', sa.Integer(), nullable=True),
        sa.Column('freeshipping', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('product_list', sa.String(240), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(100), server_default='PENDING', nullable=False),
        sa.Column('tracking', sa.String(100), nullable=True),
        sa.Column('label_url', sa.String(500), nullable=True),
        sa.Column('last_payload', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['fulfillment_orders.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
    )
    op.create_index('ix_fulfillment_parcels_legacy_order_id', 'fulfillment_parcels', ['legacy_order_id'])
    op.create_index('ix_fulfillment_parcels_tracking', 'fulfillment_parcels', ['tracking'])
    op.create_index('ix_fulfillment_parcels_recipient', 'fulfillment_parcels', ['firstname', 'familyname'])
    op.create_index('ix_fulfillment_parcels_contact_phone', 'fulfillment_parcels', ['contact_phone'])

    # Carrier webhook events (dedup by carrier event id)
    op.create_table(
        'fulfillment_carrier_events',
        sa.Column('id', sa.String(100), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payload', JSONB(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # Tuning files
    op.create_table(
        'fulfillment_tuning_files',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('original_filename', sa.String(255), nullable=False),
        sa.Column('status', file_status_enum, server_default='received', nullable=False),
        sa.Column('estimated_processing_time', sa.Integer(), nullable=True),
        sa.Column('estimated_processing_time_set_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_fulfillment_tuning_files_user_id', 'fulfillment_tuning_files', ['user_id'])

    # Audit trail
    op.create_table(
        'fulfillment_audit_logs',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('entity_type', audit_entity_type_enum, nullable=False),
        sa.Column('entity_id', UUID(as_uuid=True), nullable=False),
        sa.Column('actor_id', sa.String(255), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('old_value', sa.String(255), nullable=True),
        sa.Column('new_value', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_fulfillment_audit_logs_entity', 'fulfillment_audit_logs', ['entity_type', 'entity_id'])


def downgrade() -> None:
    """Downgrade schema - Remove fulfillment tables."""

    op.drop_index('ix_fulfillment_audit_logs_entity', table_name='fulfillment_audit_logs')
    op.drop_table('fulfillment_audit_logs')
    op.drop_index('ix_fulfillment_tuning_files_user_id', table_name='fulfillment_tuning_files')
    op.drop_table('fulfillment_tuning_files')
    op.drop_table('fulfillment_carrier_events')
    op.drop_index('ix_fulfillment_parcels_contact_phone', table_name='fulfillment_parcels')
    op.drop_index('ix_fulfillment_parcels_recipient', table_name='fulfillment_parcels')
    op.drop_index('ix_fulfillment_parcels_tracking', table_name='fulfillment_parcels')
    op.drop_index('ix_fulfillment_parcels_legacy_order_id', table_name='fulfillment_parcels')
    op.drop_table('fulfillment_parcels')
    op.drop_index('ix_fulfillment_order_items_order_id', table_name='fulfillment_order_items')
    op.drop_table('fulfillment_order_items')
    op.drop_index('ix_fulfillment_orders_tracking_number', table_name='fulfillment_orders')
    op.drop_index('ix_fulfillment_orders_user_id', table_name='fulfillment_orders')
    op.drop_index('ix_fulfillment_orders_order_number', table_name='fulfillment_orders')
    op.drop_table('fulfillment_orders')

    for enum in (
        audit_entity_type_enum,
        file_status_enum,
        cod_status_enum,
        order_status_enum,
        payment_method_enum,
    ):
        enum.drop(op.get_bind(), checkfirst=True)
