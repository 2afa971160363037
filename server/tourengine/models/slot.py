"""Tour date slot model definition."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class TourDateSlot(Base):
    """One bookable date of a tour with a fixed number of spots."""

    __tablename__ = "tour_date_slots"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    slot_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # Capacity; spots_booked is only ever written through SlotService
    spots_total: Mapped[int] = mapped_column(Integer, nullable=False)
    spots_booked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Per-date pricing adjustments
    price_override: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    currency_override: Mapped[str | None] = mapped_column(String(3), nullable=True)
    discount_label: Mapped[str | None] = mapped_column(String(100), nullable=True)
    discount_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("spots_total >= 0", name="ck_slot_spots_total_non_negative"),
        CheckConstraint("spots_booked >= 0", name="ck_slot_spots_booked_non_negative"),
        CheckConstraint("spots_booked <= spots_total", name="ck_slot_spots_booked_lte_total"),
        CheckConstraint(
            "discount_percentage IS NULL OR (discount_percentage >= 0 AND discount_percentage <= 100)",
            name="ck_slot_discount_percentage_range",
        ),
        UniqueConstraint("tour_id", "slot_date", name="uq_slot_tour_date"),
    )

    @property
    def spots_remaining(self) -> int:
        return max(self.spots_total - self.spots_booked, 0)

    def __repr__(self) -> str:
        return (
            f"<TourDateSlot(id={self.id}, tour_id={self.tour_id}, "
            f"date={self.slot_date}, spots={self.spots_booked}/{self.spots_total})>"
        )
