"""Custom tour offer model and its status machine."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Date, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class OfferStatus(str, Enum):
    """Offer status enumeration.

    pending -> payment_pending -> accepted, with declined and expired as the
    other terminal states.
    """
    PENDING = "pending"
    PAYMENT_PENDING = "payment_pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_open(self) -> bool:
        """Still waiting on the guest or on payment."""
        return self in (OfferStatus.PENDING, OfferStatus.PAYMENT_PENDING)

    def can_transition_to(self, target: "OfferStatus") -> bool:
        return target in _TRANSITIONS[self]

    @classmethod
    def sources_for(cls, target: "OfferStatus") -> tuple["OfferStatus", ...]:
        """All states from which ``target`` is reachable in one step."""
        return tuple(status for status in cls if status.can_transition_to(target))


_TRANSITIONS: dict[OfferStatus, frozenset[OfferStatus]] = {
    OfferStatus.PENDING: frozenset({
        OfferStatus.PAYMENT_PENDING,
        OfferStatus.ACCEPTED,
        OfferStatus.DECLINED,
        OfferStatus.EXPIRED,
    }),
    OfferStatus.PAYMENT_PENDING: frozenset({
        OfferStatus.PENDING,
        OfferStatus.ACCEPTED,
        OfferStatus.DECLINED,
        OfferStatus.EXPIRED,
    }),
    OfferStatus.ACCEPTED: frozenset(),
    OfferStatus.DECLINED: frozenset(),
    OfferStatus.EXPIRED: frozenset(),
}

_TERMINAL = frozenset({OfferStatus.ACCEPTED, OfferStatus.DECLINED, OfferStatus.EXPIRED})


class TourOffer(Base):
    """A guide's custom priced proposal to one guest, addressed by an unguessable token."""

    __tablename__ = "tour_offers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    conversation_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    guide_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    guest_email: Mapped[str] = mapped_column(String(320), nullable=False)
    guest_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("guest_profiles.id", ondelete="SET NULL"), nullable=True
    )

    # Draft custom tour created along with the offer
    tour_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tours.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Pricing snapshot taken at creation
    price_per_person: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    deposit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    final_payment_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    # Itinerary metadata
    duration: Mapped[str] = mapped_column(String(64), nullable=False)
    preferred_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    group_size: Mapped[int] = mapped_column(Integer, nullable=False)
    meeting_point: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meeting_time: Mapped[str | None] = mapped_column(String(32), nullable=True)
    itinerary: Mapped[str | None] = mapped_column(Text, nullable=True)
    included_items: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    personal_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    # Only ever written by OfferService through guarded updates
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OfferStatus.PENDING.value, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)

    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    booking_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("group_size > 0", name="ck_offer_group_size_positive"),
        CheckConstraint("total_price >= 0", name="ck_offer_total_price_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'payment_pending', 'accepted', 'declined', 'expired')",
            name="ck_offer_status_valid",
        ),
    )

    @property
    def offer_status(self) -> OfferStatus:
        return OfferStatus(self.status)

    def __repr__(self) -> str:
        return f"<TourOffer(id={self.id}, guide_id='{self.guide_id}', status={self.status})>"
