"""Initial tour engine schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

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
    # Create guide_profiles table
    op.create_table('guide_profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('guide_id', sa.String(length=128), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=True),
        sa.Column('stripe_account_id', sa.String(length=255), nullable=True),
        sa.Column('early_bird_settings', sa.JSON(), nullable=True),
        sa.Column('group_discount_settings', sa.JSON(), nullable=True),
        sa.Column('last_minute_settings', sa.JSON(), nullable=True),
        sa.Column('discounts_disabled', sa.Boolean(), nullable=False),
        sa.Column('deposit_type', sa.String(length=20), nullable=False),
        sa.Column('deposit_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('length(guide_id) > 0', name='ck_guide_profile_guide_id_not_empty'),
        sa.CheckConstraint('deposit_amount >= 0', name='ck_guide_profile_deposit_non_negative'),
        sa.CheckConstraint(
            "deposit_type IN ('percentage', 'fixed', 'none')", name='ck_guide_profile_deposit_type_valid'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('guide_id')
    )
    op.create_index(op.f('ix_guide_profiles_guide_id'), 'guide_profiles', ['guide_id'], unique=False)

    # Create tours table
    op.create_table('tours',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('guide_id', sa.String(length=128), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('duration', sa.String(length=64), nullable=True),
        sa.Column('meeting_point', sa.String(length=255), nullable=True),
        sa.Column('group_size', sa.Integer(), nullable=True),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('is_custom', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('archived', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('price >= 0', name='ck_tour_price_non_negative'),
        sa.CheckConstraint('length(currency) = 3', name='ck_tour_currency_length'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )
    op.create_index(op.f('ix_tours_guide_id'), 'tours', ['guide_id'], unique=False)
    op.create_index(op.f('ix_tours_title'), 'tours', ['title'], unique=False)
    op.create_index(op.f('ix_tours_slug'), 'tours', ['slug'], unique=False)

    # Create tour_date_slots table
    op.create_table('tour_date_slots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tour_id', sa.Uuid(), nullable=False),
        sa.Column('slot_date', sa.Date(), nullable=False),
        sa.Column('spots_total', sa.Integer(), nullable=False),
        sa.Column('spots_booked', sa.Integer(), nullable=False),
        sa.Column('price_override', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('currency_override', sa.String(length=3), nullable=True),
        sa.Column('discount_label', sa.String(length=100), nullable=True),
        sa.Column('discount_percentage', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('spots_total >= 0', name='ck_slot_spots_total_non_negative'),
        sa.CheckConstraint('spots_booked >= 0', name='ck_slot_spots_booked_non_negative'),
        sa.CheckConstraint('spots_booked <= spots_total', name='ck_slot_spots_booked_lte_total'),
        sa.CheckConstraint(
            'discount_percentage IS NULL OR (discount_percentage >= 0 AND discount_percentage <= 100)',
            name='ck_slot_discount_percentage_range'
        ),
        sa.ForeignKeyConstraint(['tour_id'], ['tours.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tour_id', 'slot_date', name='uq_slot_tour_date')
    )
    op.create_index(op.f('ix_tour_date_slots_tour_id'), 'tour_date_slots', ['tour_id'], unique=False)
    op.create_index(op.f('ix_tour_date_slots_slot_date'), 'tour_date_slots', ['slot_date'], unique=False)

    # Create guest_profiles table
    op.create_table('guest_profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_index(op.f('ix_guest_profiles_email'), 'guest_profiles', ['email'], unique=False)

    # Create tour_offers table
    op.create_table('tour_offers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('conversation_id', sa.String(length=128), nullable=False),
        sa.Column('guide_id', sa.String(length=128), nullable=False),
        sa.Column('guest_email', sa.String(length=320), nullable=False),
        sa.Column('guest_id', sa.Uuid(), nullable=True),
        sa.Column('tour_id', sa.Uuid(), nullable=False),
        sa.Column('price_per_person', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('base_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('total_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('deposit_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('final_payment_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('duration', sa.String(length=64), nullable=False),
        sa.Column('preferred_date', sa.Date(), nullable=True),
        sa.Column('group_size', sa.Integer(), nullable=False),
        sa.Column('meeting_point', sa.String(length=255), nullable=True),
        sa.Column('meeting_time', sa.String(length=32), nullable=True),
        sa.Column('itinerary', sa.Text(), nullable=True),
        sa.Column('included_items', sa.JSON(), nullable=True),
        sa.Column('personal_note', sa.Text(), nullable=True),
        sa.Column('token', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('declined_at', sa.DateTime(), nullable=True),
        sa.Column('decline_reason', sa.Text(), nullable=True),
        sa.Column('checkout_session_id', sa.String(length=255), nullable=True),
        sa.Column('booking_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('group_size > 0', name='ck_offer_group_size_positive'),
        sa.CheckConstraint('total_price >= 0', name='ck_offer_total_price_non_negative'),
        sa.CheckConstraint(
            "status IN ('pending', 'payment_pending', 'accepted', 'declined', 'expired')",
            name='ck_offer_status_valid'
        ),
        sa.ForeignKeyConstraint(['guest_id'], ['guest_profiles.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['tour_id'], ['tours.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token')
    )
    op.create_index(op.f('ix_tour_offers_conversation_id'), 'tour_offers', ['conversation_id'], unique=False)
    op.create_index(op.f('ix_tour_offers_guide_id'), 'tour_offers', ['guide_id'], unique=False)
    op.create_index(op.f('ix_tour_offers_tour_id'), 'tour_offers', ['tour_id'], unique=False)
    op.create_index(op.f('ix_tour_offers_token'), 'tour_offers', ['token'], unique=False)
    op.create_index(op.f('ix_tour_offers_expires_at'), 'tour_offers', ['expires_at'], unique=False)

    # Create bookings table
    op.create_table('bookings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('reference', sa.String(length=32), nullable=False),
        sa.Column('tour_id', sa.Uuid(), nullable=False),
        sa.Column('slot_id', sa.Uuid(), nullable=True),
        sa.Column('offer_id', sa.Uuid(), nullable=True),
        sa.Column('guest_id', sa.Uuid(), nullable=True),
        sa.Column('guest_email', sa.String(length=320), nullable=False),
        sa.Column('participants', sa.Integer(), nullable=False),
        sa.Column('total_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('deposit_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('checkout_session_id', sa.String(length=255), nullable=True),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('holds_capacity', sa.Boolean(), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('participants > 0', name='ck_booking_participants_positive'),
        sa.CheckConstraint('total_price >= 0', name='ck_booking_total_price_non_negative'),
        sa.CheckConstraint('length(reference) > 0', name='ck_booking_reference_not_empty'),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name='ck_booking_status_valid'
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'succeeded', 'failed')", name='ck_booking_payment_status_valid'
        ),
        sa.ForeignKeyConstraint(['tour_id'], ['tours.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['slot_id'], ['tour_date_slots.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['offer_id'], ['tour_offers.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['guest_id'], ['guest_profiles.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference'),
        sa.UniqueConstraint('payment_intent_id')
    )
    op.create_index(op.f('ix_bookings_reference'), 'bookings', ['reference'], unique=False)
    op.create_index(op.f('ix_bookings_tour_id'), 'bookings', ['tour_id'], unique=False)
    op.create_index(op.f('ix_bookings_slot_id'), 'bookings', ['slot_id'], unique=False)
    op.create_index(op.f('ix_bookings_offer_id'), 'bookings', ['offer_id'], unique=False)
    op.create_index(op.f('ix_bookings_guest_id'), 'bookings', ['guest_id'], unique=False)
    op.create_index(op.f('ix_bookings_guest_email'), 'bookings', ['guest_email'], unique=False)
    op.create_index(op.f('ix_bookings_checkout_session_id'), 'bookings', ['checkout_session_id'], unique=False)
    op.create_index(op.f('ix_bookings_created_at'), 'bookings', ['created_at'], unique=False)

    # Create conversation_messages table
    op.create_table('conversation_messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('conversation_id', sa.String(length=128), nullable=False),
        sa.Column('sender_type', sa.String(length=20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_automated', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        op.f('ix_conversation_messages_conversation_id'), 'conversation_messages', ['conversation_id'], unique=False
    )

    # Create payment_events table
    op.create_table('payment_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id')
    )
    op.create_index(op.f('ix_payment_events_event_id'), 'payment_events', ['event_id'], unique=False)
    op.create_index(op.f('ix_payment_events_event_type'), 'payment_events', ['event_type'], unique=False)

    # Create idempotency_records table
    op.create_table('idempotency_records',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('method', sa.String(length=100), nullable=False),
        sa.Column('request_body_hash', sa.String(length=64), nullable=False),
        sa.Column('response_status_code', sa.Integer(), nullable=False),
        sa.Column('response_body', sa.Text(), nullable=False),
        sa.Column('response_headers', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('length(idempotency_key) > 0', name='ck_idempotency_key_not_empty'),
        sa.CheckConstraint('length(request_body_hash) = 64', name='ck_idempotency_hash_length'),
        sa.CheckConstraint(
            'response_status_code >= 100 AND response_status_code <= 599', name='ck_idempotency_status_code_valid'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', 'method', name='uq_idempotency_key_method')
    )
    op.create_index(
        op.f('ix_idempotency_records_idempotency_key'), 'idempotency_records', ['idempotency_key'], unique=False
    )
    op.create_index(op.f('ix_idempotency_records_method'), 'idempotency_records', ['method'], unique=False)
    op.create_index(op.f('ix_idempotency_records_expires_at'), 'idempotency_records', ['expires_at'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('idempotency_records')
    op.drop_table('payment_events')
    op.drop_table('conversation_messages')
    op.drop_table('bookings')
    op.drop_table('tour_offers')
    op.drop_table('guest_profiles')
    op.drop_table('tour_date_slots')
    op.drop_table('tours')
    op.drop_table('guide_profiles')
