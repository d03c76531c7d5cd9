"""initial schema: users, pods, bookings, access codes, payments

Revision ID: 3f1a9c2d7b40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f1a9c2d7b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=True),
        sa.Column('phone_number', sa.String(length=30), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_users_email'), ['email'], unique=True)

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table(
        'user_roles',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('user_id', 'role_id')
    )

    op.create_table(
        'sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('revoked', sa.Boolean(), nullable=False),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('sessions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sessions_token_hash'), ['token_hash'], unique=True)
        batch_op.create_index(batch_op.f('ix_sessions_user_id'), ['user_id'], unique=False)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=80), nullable=False),
        sa.Column('entity', sa.String(length=80), nullable=True),
        sa.Column('entity_id', sa.String(length=80), nullable=True),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'pods',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pod_number', sa.String(length=40), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('price_per_hour', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('max_capacity', sa.Integer(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('price_per_hour > 0', name='ck_pods_price_positive'),
        sa.CheckConstraint('max_capacity > 0', name='ck_pods_capacity_positive'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pod_number', name='uq_pods_pod_number')
    )

    op.create_table(
        'bookings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('pod_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('check_in', sa.DateTime(), nullable=False),
        sa.Column('check_out', sa.DateTime(), nullable=False),
        sa.Column('total_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.CheckConstraint('check_out > check_in', name='ck_bookings_window'),
        sa.ForeignKeyConstraint(['pod_id'], ['pods.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('bookings', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_bookings_pod_id'), ['pod_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_bookings_user_id'), ['user_id'], unique=False)
        batch_op.create_index('ix_bookings_pod_window', ['pod_id', 'check_in', 'check_out'], unique=False)

    op.create_table(
        'access_codes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.Integer(), nullable=False),
        sa.Column('access_pin', sa.String(length=6), nullable=False),
        sa.Column('access_qr_code', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('valid_from', sa.DateTime(), nullable=False),
        sa.Column('valid_until', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('booking_id', name='uq_access_codes_booking')
    )

    op.create_table(
        'payment_providers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider_id', sa.String(length=40), nullable=False),
        sa.Column('provider_name', sa.String(length=80), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('supported_currencies', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_id')
    )

    op.create_table(
        'payment_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('internal_order_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.Integer(), nullable=True),
        sa.Column('provider_id', sa.String(length=40), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('provider_order_id', sa.String(length=128), nullable=True),
        sa.Column('payment_session_id', sa.String(length=255), nullable=True),
        sa.Column('customer_details', sa.JSON(), nullable=True),
        sa.Column('order_note', sa.String(length=255), nullable=True),
        sa.Column('order_tags', sa.JSON(), nullable=True),
        sa.Column('order_meta', sa.JSON(), nullable=True),
        sa.Column('discount_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('convenience_fee', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('order_expiry_time', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_payment_orders_amount_positive'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ),
        sa.ForeignKeyConstraint(['provider_id'], ['payment_providers.provider_id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('internal_order_id')
    )
    with op.batch_alter_table('payment_orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_orders_order_id'), ['order_id'], unique=True)
        batch_op.create_index(batch_op.f('ix_payment_orders_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_orders_booking_id'), ['booking_id'], unique=False)

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.String(length=80), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('provider_id', sa.String(length=40), nullable=False),
        sa.Column('provider_payment_id', sa.String(length=80), nullable=False),
        sa.Column('provider_transaction_id', sa.String(length=128), nullable=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=True),
        sa.Column('payment_method_details', sa.JSON(), nullable=True),
        sa.Column('gateway_name', sa.String(length=80), nullable=True),
        sa.Column('gateway_transaction_id', sa.String(length=128), nullable=True),
        sa.Column('bank_reference_number', sa.String(length=128), nullable=True),
        sa.Column('auth_id_code', sa.String(length=64), nullable=True),
        sa.Column('payment_message', sa.String(length=255), nullable=True),
        sa.Column('failure_reason', sa.String(length=255), nullable=True),
        sa.Column('gateway_response', sa.JSON(), nullable=True),
        sa.Column('transaction_time', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['payment_orders.order_id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id'),
        sa.UniqueConstraint('provider_payment_id', name='uq_payment_transactions_provider_payment')
    )
    with op.batch_alter_table('payment_transactions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_transactions_order_id'), ['order_id'], unique=False)

    op.create_table(
        'payment_refunds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('refund_id', sa.String(length=64), nullable=False),
        sa.Column('internal_refund_id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('transaction_id', sa.String(length=80), nullable=True),
        sa.Column('provider_id', sa.String(length=40), nullable=False),
        sa.Column('provider_refund_id', sa.String(length=128), nullable=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('refund_type', sa.String(length=20), nullable=False),
        sa.Column('refund_status', sa.String(length=20), nullable=False),
        sa.Column('refund_reason', sa.String(length=255), nullable=True),
        sa.Column('refund_note', sa.String(length=255), nullable=True),
        sa.Column('refund_speed', sa.String(length=20), nullable=False),
        sa.Column('refund_arn', sa.String(length=128), nullable=True),
        sa.Column('provider_response', sa.JSON(), nullable=True),
        sa.Column('failure_reason', sa.String(length=255), nullable=True),
        sa.Column('initiated_at', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_payment_refunds_amount_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['payment_orders.order_id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('internal_refund_id')
    )
    with op.batch_alter_table('payment_refunds', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_refunds_refund_id'), ['refund_id'], unique=True)
        batch_op.create_index(batch_op.f('ix_payment_refunds_order_id'), ['order_id'], unique=False)

    op.create_table(
        'payment_links',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('link_id', sa.String(length=64), nullable=False),
        sa.Column('internal_link_id', sa.String(length=36), nullable=False),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('provider_id', sa.String(length=40), nullable=False),
        sa.Column('link_url', sa.String(length=512), nullable=True),
        sa.Column('purpose', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('customer_details', sa.JSON(), nullable=True),
        sa.Column('link_notes', sa.JSON(), nullable=True),
        sa.Column('link_meta', sa.JSON(), nullable=True),
        sa.Column('expiry_time', sa.DateTime(), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=False),
        sa.Column('usage_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('internal_link_id')
    )
    with op.batch_alter_table('payment_links', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_links_link_id'), ['link_id'], unique=True)
        batch_op.create_index(batch_op.f('ix_payment_links_created_by_user_id'), ['created_by_user_id'], unique=False)

    op.create_table(
        'payment_webhook_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider_id', sa.String(length=40), nullable=False),
        sa.Column('provider_event_id', sa.String(length=128), nullable=True),
        sa.Column('event_type', sa.String(length=80), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('raw_body', sa.Text(), nullable=False),
        sa.Column('signature', sa.String(length=255), nullable=True),
        sa.Column('webhook_timestamp', sa.String(length=64), nullable=True),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('processing_error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('payment_webhook_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_webhook_events_provider_event_id'), ['provider_event_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_webhook_events_order_id'), ['order_id'], unique=False)


def downgrade():
    for table, indexes in (
        ('payment_webhook_events', ('ix_payment_webhook_events_order_id', 'ix_payment_webhook_events_provider_event_id')),
        ('payment_links', ('ix_payment_links_created_by_user_id', 'ix_payment_links_link_id')),
        ('payment_refunds', ('ix_payment_refunds_order_id', 'ix_payment_refunds_refund_id')),
        ('payment_transactions', ('ix_payment_transactions_order_id',)),
    ):
        with op.batch_alter_table(table, schema=None) as batch_op:
            for name in indexes:
                batch_op.drop_index(name)
        op.drop_table(table)

    with op.batch_alter_table('payment_orders', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_payment_orders_booking_id'))
        batch_op.drop_index(batch_op.f('ix_payment_orders_user_id'))
        batch_op.drop_index(batch_op.f('ix_payment_orders_order_id'))
    op.drop_table('payment_orders')
    op.drop_table('payment_providers')
    op.drop_table('access_codes')

    with op.batch_alter_table('bookings', schema=None) as batch_op:
        batch_op.drop_index('ix_bookings_pod_window')
        batch_op.drop_index(batch_op.f('ix_bookings_user_id'))
        batch_op.drop_index(batch_op.f('ix_bookings_pod_id'))
    op.drop_table('bookings')
    op.drop_table('pods')
    op.drop_table('audit_logs')

    with op.batch_alter_table('sessions', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_sessions_user_id'))
        batch_op.drop_index(batch_op.f('ix_sessions_token_hash'))
    op.drop_table('sessions')
    op.drop_table('user_roles')
    op.drop_table('roles')

    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_users_email'))
    op.drop_table('users')
