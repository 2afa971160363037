"""Booking-related Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..models.booking import BookingStatus, PaymentStatus
from .common import EMAIL_PATTERN


class CancellationActor(str, Enum):
    """Who cancelled a booking."""
    GUEST = "guest"
    GUIDE = "guide"
    ADMIN = "admin"
    SYSTEM = "system"


class CheckoutRequest(BaseModel):
    """Request schema for starting a slot booking checkout."""

    slot_id: str = Field(..., description="Slot to book")
    participants: int = Field(..., ge=1, le=50, description="Number of participants")
    guest_email: str = Field(..., max_length=320, pattern=EMAIL_PATTERN)
    guest_id: Optional[str] = Field(None, description="Known guest profile")
    success_url: Optional[str] = Field(None, max_length=2000)
    cancel_url: Optional[str] = Field(None, max_length=2000)


class CancelBookingRequest(BaseModel):
    """Request schema for cancelling a booking."""

    reference: str = Field(..., description="Booking reference")
    actor: CancellationActor = Field(CancellationActor.GUEST, description="Who cancels")
    reason: Optional[str] = Field(None, max_length=1000)


class GetBookingRequest(BaseModel):
    """Request schema for getting a booking."""

    reference: str = Field(..., description="Booking reference")


class Booking(BaseModel):
    """Booking response schema."""

    id: str = Field(..., description="Unique booking ID")
    reference: str = Field(..., description="Human-readable booking reference")
    tour_id: str
    slot_id: Optional[str] = None
    offer_id: Optional[str] = None
    guest_email: str
    participants: int = Field(..., ge=1)
    total_price: Decimal
    deposit_amount: Decimal
    currency: str
    status: BookingStatus
    payment_status: PaymentStatus
    created_at: datetime
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class CheckoutResponse(BaseModel):
    """A pending booking with the checkout session the guest pays through."""

    booking: Booking
    session_id: str
    checkout_url: str
