"""initial_marketplace_schema

Revision ID: 5c1e2a7b9d40
Revises:
Create Date: 2026-10-19 09:12:44.120375

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c1e2a7b9d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum labels are the Python member names, as SQLAlchemy stores them
user_status = sa.Enum('ACTIVE', 'INACTIVE', 'RESTRICTED', 'BANNED', name='user_status')
service_type = sa.Enum('ONE_TIME', 'RECURRING', name='service_type')
booking_status = sa.Enum(
    'PENDING_PAYMENT', 'BOOKED', 'STARTED', 'COMPLETED', 'CANCELLED', 'PAYMENT_FAILED',
    name='booking_status',
)
payment_status = sa.Enum('PENDING', 'COMPLETED', 'HELD', 'FAILED', 'REFUNDED', 'CANCELED', name='payment_status')
invoice_status = sa.Enum('UNPAID', 'PAID', 'CANCELED', name='invoice_status')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('mobile', sa.String(length=20), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('interests', sa.JSON(), nullable=False),
        sa.Column('offered_tags', sa.JSON(), nullable=False),
        sa.Column('status', user_status, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('gateway_customer_id', sa.String(length=255), nullable=True),
        sa.Column('gateway_account_id', sa.String(length=255), nullable=True,
                  comment='Connected payout account; required to receive bookings'),
        sa.Column('loc_latitude', sa.Float(), nullable=True),
        sa.Column('loc_longitude', sa.Float(), nullable=True),
        sa.Column('loc_accuracy', sa.Float(), nullable=True),
        sa.Column('loc_provider', sa.String(length=20), nullable=True),
        sa.Column('loc_recorded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('loc_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('loc_is_stale', sa.Boolean(), nullable=False),
        sa.Column('performance_points', sa.Integer(), nullable=False),
        sa.Column('total_bookings', sa.Integer(), nullable=False),
        sa.Column('successful_bookings', sa.Integer(), nullable=False),
        sa.Column('restriction_on_new_service_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('active_offense_count', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            'performance_points >= 0 AND performance_points <= 100',
            name='user_performance_range',
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_city', 'users', ['city'])
    op.create_index('ix_users_status', 'users', ['status'])
    op.create_index('ix_users_loc_recorded_at', 'users', ['loc_recorded_at'])

    op.create_table(
        'categories',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('image', sa.String(length=500), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_categories_name', 'categories', ['name'])

    op.create_table(
        'category_members',
        sa.Column('category_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('category_id', 'user_id'),
    )

    op.create_table(
        'services',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('category_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('language', sa.String(length=50), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('max_participants', sa.Integer(), nullable=False),
        sa.Column('is_free', sa.Boolean(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('location_name', sa.String(length=255), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('service_type', service_type, nullable=False),
        sa.Column('date', sa.Date(), nullable=True),
        sa.Column('start_time', sa.String(length=5), nullable=True),
        sa.Column('end_time', sa.String(length=5), nullable=True),
        sa.Column('recurring_slots', sa.JSON(), nullable=False,
                  comment='[{day, date?, start_time, end_time}, ...]'),
        sa.Column('is_promoted', sa.Boolean(), nullable=False),
        sa.Column('promoted_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('promoted_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delete_requested', sa.Boolean(), nullable=False),
        sa.Column('delete_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delete_approved', sa.Boolean(), nullable=False),
        sa.Column('delete_approved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('latitude >= -90 AND latitude <= 90', name='service_latitude_range'),
        sa.CheckConstraint('longitude >= -180 AND longitude <= 180', name='service_longitude_range'),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_services_owner_id', 'services', ['owner_id'])
    op.create_index('ix_services_category_id', 'services', ['category_id'])
    op.create_index('ix_services_date', 'services', ['date'])
    # Radius prefilter
    op.create_index('ix_services_lat_lon', 'services', ['latitude', 'longitude'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('service_id', sa.Uuid(), nullable=False),
        sa.Column('payment_id', sa.Uuid(), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('status', booking_status, nullable=False),
        sa.Column('otp_hash', sa.String(length=64), nullable=True),
        sa.Column('otp_expiry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.String(length=50), nullable=True),
        sa.Column('cancel_reason', sa.String(length=500), nullable=True),
        sa.Column('cancellation_fee', sa.Integer(), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='booking_amount_positive'),
        sa.ForeignKeyConstraint(['customer_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['provider_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_bookings_customer_id', 'bookings', ['customer_id'])
    op.create_index('ix_bookings_provider_id', 'bookings', ['provider_id'])
    op.create_index('ix_bookings_service_id', 'bookings', ['service_id'])
    op.create_index('ix_bookings_status', 'bookings', ['status'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('service_id', sa.Uuid(), nullable=False),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('customer_gateway_id', sa.String(length=255), nullable=True),
        sa.Column('provider_gateway_id', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('app_commission', sa.Integer(), nullable=False),
        sa.Column('provider_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', payment_status, nullable=False),
        sa.Column('refund_id', sa.String(length=255), nullable=True),
        sa.Column('refund_reason', sa.String(length=500), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('refund_fee', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['customer_id'], ['users.id']),
        sa.ForeignKeyConstraint(['provider_id'], ['users.id']),
        sa.ForeignKeyConstraint(['service_id'], ['services.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_booking_id', 'payments', ['booking_id'], unique=True)
    op.create_index('ix_payments_payment_intent_id', 'payments', ['payment_intent_id'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column('commission_due', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('penalty_due', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('total_due', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('offense_number', sa.Integer(), nullable=False),
        sa.Column('status', invoice_status, nullable=False),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['provider_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_invoices_provider_id', 'invoices', ['provider_id'])
    op.create_index('ix_invoices_booking_id', 'invoices', ['booking_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_payment_intent_id', 'invoices', ['payment_intent_id'])

    op.create_table(
        'commission_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('percentage', sa.Float(), nullable=False),
        sa.Column('updated_by', sa.Uuid(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'cancellation_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('percentage', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('cancellation_settings')
    op.drop_table('commission_settings')
    op.drop_table('invoices')
    op.drop_table('payments')
    op.drop_table('bookings')
    op.drop_table('services')
    op.drop_table('category_members')
    op.drop_table('categories')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (invoice_status, payment_status, booking_status, service_type, user_status):
        enum_type.drop(bind, checkfirst=True)
