"""Guide profile model definition."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class DepositType(str, Enum):
    """How the upfront deposit of a booking is derived."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    NONE = "none"


class GuideProfile(Base):
    """A guide selling tours, with the pricing policy applied to every quote."""

    __tablename__ = "guide_profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # External user id of the guide account
    guide_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # Payment destination (connected account); offers cannot be paid without it
    stripe_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Pricing policy, parsed into value types by the pricing schemas
    early_bird_settings: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    group_discount_settings: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_minute_settings: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    discounts_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deposit_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DepositType.PERCENTAGE.value
    )
    deposit_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("length(guide_id) > 0", name="ck_guide_profile_guide_id_not_empty"),
        CheckConstraint("deposit_amount >= 0", name="ck_guide_profile_deposit_non_negative"),
        CheckConstraint(
            "deposit_type IN ('percentage', 'fixed', 'none')",
            name="ck_guide_profile_deposit_type_valid",
        ),
    )

    def __repr__(self) -> str:
        return f"<GuideProfile(guide_id='{self.guide_id}', name='{self.display_name}')>"
