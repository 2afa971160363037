"""Custom tour offer Pydantic schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.offer import OfferStatus
from .common import CURRENCY_PATTERN, EMAIL_PATTERN


class CreateOfferRequest(BaseModel):
    """Request schema for a guide's custom offer."""

    conversation_id: str = Field(..., min_length=1, max_length=128)
    guest_email: str = Field(..., max_length=320, pattern=EMAIL_PATTERN)
    guest_id: Optional[str] = None
    price_per_person: Decimal = Field(..., ge=0, description="Quoted price per person")
    group_size: int = Field(..., ge=1, le=50)
    currency: str = Field("EUR", pattern=CURRENCY_PATTERN)
    duration: str = Field(..., min_length=1, max_length=64, description="e.g. 'Full day'")
    preferred_date: Optional[date] = None
    meeting_point: Optional[str] = Field(None, max_length=255)
    meeting_time: Optional[str] = Field(None, max_length=32)
    itinerary: Optional[str] = Field(None, max_length=5000)
    included_items: List[str] = Field(default_factory=list)
    personal_note: Optional[str] = Field(None, max_length=2000)
    apply_discounts: bool = Field(False, description="Run the guide's discount policy on the quote")


class CreateOfferResponse(BaseModel):
    """Token and expiry of a newly created offer."""

    offer_id: str
    token: str
    expires_at: datetime
    total_price: Decimal
    currency: str


class OfferTokenRequest(BaseModel):
    """Request schema addressing an offer by its token."""

    token: str = Field(..., min_length=1, max_length=64)


class DeclineOfferRequest(OfferTokenRequest):
    """Request schema for declining an offer."""

    reason: Optional[str] = Field(None, max_length=1000)


class Offer(BaseModel):
    """Offer view for the guest landing page."""

    id: str
    status: OfferStatus
    guide_id: str
    guest_email: str
    duration: str
    preferred_date: Optional[date] = None
    group_size: int
    meeting_point: Optional[str] = None
    meeting_time: Optional[str] = None
    itinerary: Optional[str] = None
    included_items: List[str] = Field(default_factory=list)
    personal_note: Optional[str] = None
    price_per_person: Decimal
    total_price: Decimal
    deposit_amount: Decimal
    final_payment_amount: Decimal
    currency: str
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    booking_id: Optional[str] = None


class AcceptOfferResponse(BaseModel):
    """Checkout session created for an accepted offer."""

    offer_id: str
    status: OfferStatus
    session_id: str
    checkout_url: str
    platform_fee: Decimal
    guide_net_amount: Decimal
