"""Tour-related Pydantic schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import CURRENCY_PATTERN


class CreateTourRequest(BaseModel):
    """Request schema for creating a tour."""

    title: str = Field(..., min_length=1, max_length=255, description="Tour title")
    slug: str = Field(..., min_length=1, max_length=255, pattern=r"^[a-z0-9-]+$", description="URL-friendly slug")
    description: Optional[str] = Field(None, max_length=5000, description="Tour description")
    price: Decimal = Field(..., ge=0, description="Base price per person")
    currency: str = Field("EUR", pattern=CURRENCY_PATTERN)
    duration: Optional[str] = Field(None, max_length=64)
    meeting_point: Optional[str] = Field(None, max_length=255)


class Tour(BaseModel):
    """Tour response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique tour ID")
    guide_id: str
    title: str
    slug: str
    description: Optional[str] = None
    price: Decimal
    currency: str
    is_custom: bool
    is_active: bool
    archived: bool
