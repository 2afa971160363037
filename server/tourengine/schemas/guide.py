"""Guide profile Pydantic schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ..models.guide import DepositType
from .common import EMAIL_PATTERN
from .pricing import EarlyBirdSettings, GroupDiscountSettings, LastMinuteSettings


class UpsertGuideRequest(BaseModel):
    """Request schema for creating or updating the caller's guide profile."""

    display_name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=320, pattern=EMAIL_PATTERN)
    stripe_account_id: Optional[str] = Field(None, max_length=255)
    early_bird_settings: Optional[EarlyBirdSettings] = None
    group_discount_settings: Optional[GroupDiscountSettings] = None
    last_minute_settings: Optional[LastMinuteSettings] = None
    discounts_disabled: bool = False
    deposit_type: DepositType = DepositType.PERCENTAGE
    deposit_amount: Decimal = Field(Decimal("0"), ge=0)


class Guide(BaseModel):
    """Guide profile response schema."""

    guide_id: str
    display_name: str
    email: Optional[str] = None
    payouts_enabled: bool = Field(..., description="A payment destination is configured")
    early_bird_settings: Optional[EarlyBirdSettings] = None
    group_discount_settings: Optional[GroupDiscountSettings] = None
    last_minute_settings: Optional[LastMinuteSettings] = None
    discounts_disabled: bool
    deposit_type: DepositType
    deposit_amount: Decimal
