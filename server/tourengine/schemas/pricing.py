"""Pricing policy value types and price breakdown schemas."""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models.guide import DepositType
from .common import CURRENCY_PATTERN


class EarlyBirdSettings(BaseModel):
    """Three lead-time tiers; tier1 requires the longest lead time."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    tier1_days: int = Field(..., ge=0)
    tier1_percent: Decimal = Field(..., ge=0, le=100)
    tier2_days: int = Field(..., ge=0)
    tier2_percent: Decimal = Field(..., ge=0, le=100)
    tier3_days: int = Field(..., ge=0)
    tier3_percent: Decimal = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def check_tier_order(self) -> "EarlyBirdSettings":
        if not self.tier1_days >= self.tier2_days >= self.tier3_days:
            raise ValueError("Early bird tier days must be non-increasing from tier1 to tier3")
        return self


class GroupDiscountSettings(BaseModel):
    """Two bounded participant bands plus an open-ended top band."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    tier1_min: int = Field(..., ge=1)
    tier1_max: int = Field(..., ge=1)
    tier1_percent: Decimal = Field(..., ge=0, le=100)
    tier2_min: int = Field(..., ge=1)
    tier2_max: int = Field(..., ge=1)
    tier2_percent: Decimal = Field(..., ge=0, le=100)
    tier3_min: int = Field(..., ge=1)
    tier3_percent: Decimal = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def check_bands(self) -> "GroupDiscountSettings":
        if self.tier1_min > self.tier1_max:
            raise ValueError("Group tier1 band must have min <= max")
        if self.tier2_min > self.tier2_max:
            raise ValueError("Group tier2 band must have min <= max")
        return self


class LastMinuteSettings(BaseModel):
    """Discount applied when the tour starts within ``hours``."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    hours: int = Field(..., ge=0)
    percent: Decimal = Field(..., ge=0, le=100)


class DepositPolicy(BaseModel):
    """How much of the final price is collected upfront."""

    model_config = ConfigDict(frozen=True)

    deposit_type: DepositType = DepositType.PERCENTAGE
    amount: Decimal = Field(Decimal("0"), ge=0)

    @model_validator(mode="after")
    def check_percentage(self) -> "DepositPolicy":
        if self.deposit_type == DepositType.PERCENTAGE and self.amount > 100:
            raise ValueError("Percentage deposit cannot exceed 100")
        return self


class PricingPolicy(BaseModel):
    """A guide's complete pricing policy, parsed from the stored profile."""

    model_config = ConfigDict(frozen=True)

    early_bird: Optional[EarlyBirdSettings] = None
    group_discount: Optional[GroupDiscountSettings] = None
    last_minute: Optional[LastMinuteSettings] = None
    deposit: DepositPolicy = DepositPolicy()
    discounts_disabled: bool = False


class PriceBreakdown(BaseModel):
    """Result of a price computation, every amount rounded to cents."""

    model_config = ConfigDict(frozen=True)

    base_price: Decimal
    early_bird_discount: Decimal
    group_discount: Decimal
    last_minute_discount: Decimal
    total_discount: Decimal
    final_price: Decimal
    deposit_amount: Decimal
    final_payment_amount: Decimal


class QuoteRequest(BaseModel):
    """Request schema for a price quote.

    Either ``slot_id`` is given, or ``guide_id`` with an explicit ``base_price``
    (price per person) and ``days_until_tour``.
    """

    slot_id: Optional[str] = Field(None, description="Slot to quote")
    guide_id: Optional[str] = Field(None, description="Guide whose policy applies")
    base_price: Optional[Decimal] = Field(None, ge=0, description="Price per person")
    days_until_tour: Optional[int] = Field(None, ge=0, description="Lead time in days")
    participants: int = Field(..., ge=1, le=100, description="Number of participants")
    currency: str = Field("EUR", pattern=CURRENCY_PATTERN, description="Currency of an explicit base price")

    @model_validator(mode="after")
    def check_target(self) -> "QuoteRequest":
        if self.slot_id is None and (
            self.guide_id is None or self.base_price is None or self.days_until_tour is None
        ):
            raise ValueError("Provide slot_id, or guide_id with base_price and days_until_tour")
        return self


class Quote(BaseModel):
    """Price quote response schema."""

    currency: str = Field(..., description="ISO 4217 currency code")
    participants: int
    unit_price: Decimal = Field(..., description="Price per person before discounts")
    discount_label: Optional[str] = None
    breakdown: PriceBreakdown


def parse_policy_json(raw: Any, model: type[BaseModel]) -> Optional[BaseModel]:
    """Parse a stored JSON policy blob; ``None`` and ``{}`` mean no policy."""
    if not raw:
        return None
    return model.model_validate(raw)
