"""Initial marketplace schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Create tours table
    op.create_table('tours',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_amount', sa.Integer(), nullable=False),
        sa.Column('price_currency', sa.String(length=3), nullable=False),
        sa.Column('max_group_size', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('approval_status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('max_group_size > 0', name='ck_tour_max_group_size_positive'),
        sa.CheckConstraint('price_amount > 0', name='ck_tour_price_amount_positive'),
        sa.CheckConstraint('length(price_currency) = 3', name='ck_tour_price_currency_length'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_tours_title'), 'tours', ['title'], unique=False)
    op.create_index(op.f('ix_tours_created_by'), 'tours', ['created_by'], unique=False)
    op.create_index(op.f('ix_tours_approval_status'), 'tours', ['approval_status'], unique=False)

    # Create tour_available_dates table
    op.create_table('tour_available_dates',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tour_id', sa.Uuid(), nullable=False),
        sa.Column('travel_date', sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(['tour_id'], ['tours.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tour_id', 'travel_date', name='uq_tour_available_date')
    )
    op.create_index(op.f('ix_tour_available_dates_tour_id'), 'tour_available_dates', ['tour_id'], unique=False)

    # Create bookings table
    op.create_table('bookings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tour_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('operator_id', sa.String(length=64), nullable=False),
        sa.Column('travel_date', sa.Date(), nullable=False),
        sa.Column('participants', sa.Integer(), nullable=False),
        sa.Column('price_at_booking', sa.Integer(), nullable=False),
        sa.Column('total_price', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('payment_intent_ref', sa.String(length=255), nullable=True),
        sa.Column('amount_paid', sa.Integer(), nullable=False),
        sa.Column('refund_ref', sa.String(length=255), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('participants >= 1', name='ck_booking_participants_positive'),
        sa.CheckConstraint('price_at_booking > 0', name='ck_booking_price_positive'),
        sa.CheckConstraint('total_price = price_at_booking * participants', name='ck_booking_total_price'),
        sa.CheckConstraint('amount_paid >= 0', name='ck_booking_amount_paid_non_negative'),
        sa.ForeignKeyConstraint(['tour_id'], ['tours.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_tour_id'), 'bookings', ['tour_id'], unique=False)
    op.create_index(op.f('ix_bookings_user_id'), 'bookings', ['user_id'], unique=False)
    op.create_index(op.f('ix_bookings_operator_id'), 'bookings', ['operator_id'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)
    op.create_index(op.f('ix_bookings_payment_intent_ref'), 'bookings', ['payment_intent_ref'], unique=False)
    op.create_index('ix_bookings_tour_date_status', 'bookings', ['tour_id', 'travel_date', 'status'], unique=False)

    # Create notifications table
    op.create_table('notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('recipient_user_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('category', sa.String(length=20), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_notifications_recipient_user_id'), 'notifications', ['recipient_user_id'], unique=False)
    op.create_index(op.f('ix_notifications_created_at'), 'notifications', ['created_at'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('notifications')
    op.drop_table('bookings')
    op.drop_table('tour_available_dates')
    op.drop_table('tours')
