"""Tour model definition."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class Tour(Base):
    """Tour entity: a guide's listed hike, or the draft behind a custom offer."""

    __tablename__ = "tours"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    guide_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # Tour information
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[str | None] = mapped_column(String(64), nullable=True)
    meeting_point: Mapped[str | None] = mapped_column(String(255), nullable=True)
    group_size: Mapped[int | None] = mapped_column(nullable=True)

    # Base price per participant
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    is_custom: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_tour_price_non_negative"),
        CheckConstraint("length(currency) = 3", name="ck_tour_currency_length"),
    )

    def __repr__(self) -> str:
        return f"<Tour(id={self.id}, title='{self.title}', slug='{self.slug}')>"
