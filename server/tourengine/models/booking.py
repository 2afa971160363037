"""Booking model definition."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment status of a booking."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Booking(Base):
    """A guest's booking of a slot or of an accepted custom offer."""

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Human-readable reference, e.g. MTH-2026-4F7K2Q
    reference: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tours.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Offer bookings carry no slot
    slot_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("tour_date_slots.id", ondelete="SET NULL"), nullable=True, index=True
    )
    offer_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("tour_offers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    guest_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("guest_profiles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    guest_email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)

    participants: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    deposit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING.value, index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )

    checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    # Dedup key for payment confirmations
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    # True while this booking's participants are counted in the slot's spots_booked
    holds_capacity: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("participants > 0", name="ck_booking_participants_positive"),
        CheckConstraint("total_price >= 0", name="ck_booking_total_price_non_negative"),
        CheckConstraint("length(reference) > 0", name="ck_booking_reference_not_empty"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="ck_booking_status_valid"
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'succeeded', 'failed')",
            name="ck_booking_payment_status_valid",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, reference='{self.reference}', "
            f"participants={self.participants}, status={self.status}/{self.payment_status})>"
        )
