"""Slot inventory Pydantic schemas."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import CURRENCY_PATTERN


class AvailabilityStatus(str, Enum):
    """Availability badge of a slot."""
    AVAILABLE = "available"
    LIMITED = "limited"
    BOOKED = "booked"


class CreateSlotRequest(BaseModel):
    """Request schema for opening a bookable date."""

    tour_id: str = Field(..., description="Tour the slot belongs to")
    slot_date: date = Field(..., description="Tour date")
    spots_total: int = Field(..., ge=1, le=500, description="Capacity of the date")
    price_override: Optional[Decimal] = Field(None, ge=0, description="Per-person price for this date")
    currency_override: Optional[str] = Field(None, pattern=CURRENCY_PATTERN)
    discount_label: Optional[str] = Field(None, max_length=100)
    discount_percentage: Optional[Decimal] = Field(None, ge=0, le=100)


class UpdateSlotRequest(BaseModel):
    """Request schema for editing a slot; only fields sent are changed."""

    slot_id: str = Field(..., description="Slot to update")
    spots_total: Optional[int] = Field(None, ge=0, le=500)
    price_override: Optional[Decimal] = Field(None, ge=0)
    currency_override: Optional[str] = Field(None, pattern=CURRENCY_PATTERN)
    discount_label: Optional[str] = Field(None, max_length=100)
    discount_percentage: Optional[Decimal] = Field(None, ge=0, le=100)


class ReserveSpotsRequest(BaseModel):
    """Request schema for reserving spots on a slot."""

    slot_id: str = Field(..., description="Slot to reserve on")
    count: int = Field(..., ge=1, le=100, description="Number of spots")


class ReleaseSpotsRequest(BaseModel):
    """Request schema for releasing spots back to a slot."""

    slot_id: str = Field(..., description="Slot to release on")
    count: int = Field(..., ge=1, le=100, description="Number of spots")
    booking_id: Optional[str] = Field(None, description="Booking whose spots are released, at most once")


class ChangeSlotDateRequest(BaseModel):
    """Request schema for moving a slot to another date."""

    slot_id: str = Field(..., description="Slot to move")
    new_date: date = Field(..., description="New tour date")


class DeleteSlotRequest(BaseModel):
    """Request schema for deleting a slot."""

    slot_id: str = Field(..., description="Slot to delete")


class Slot(BaseModel):
    """Slot response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique slot ID")
    tour_id: str
    slot_date: date
    spots_total: int
    spots_booked: int
    spots_remaining: int
    availability_status: AvailabilityStatus
    price_override: Optional[Decimal] = None
    currency_override: Optional[str] = None
    discount_label: Optional[str] = None
    discount_percentage: Optional[Decimal] = None


class AvailabilityResponse(BaseModel):
    """Availability of a tour over a date range."""

    tour_id: str
    slots: List[Slot]


class ReleaseResult(BaseModel):
    """Outcome of a release; ``released`` is False when the guard made it a no-op."""

    released: bool
    slot: Slot


class DateChangeResult(BaseModel):
    """Outcome of a slot date change and its notification fan-out."""

    slot: Slot
    previous_date: date
    notified: int = Field(..., description="Booking holders notified")
    failed: int = Field(..., description="Notifications that could not be delivered")
