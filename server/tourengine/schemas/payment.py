"""Payment confirmation Pydantic schemas."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .booking import Booking


class ConfirmationOutcome(str, Enum):
    """What happened to a payment confirmation."""
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class PaymentConfirmation(BaseModel):
    """A normalized 'payment succeeded' notification from the processor."""

    confirmation_id: str = Field(..., min_length=1, description="Payment intent identifier")
    session_id: Optional[str] = None
    payment_status: str = Field("paid", description="Processor payment status")
    customer_email: Optional[str] = None
    amount_total: Optional[int] = Field(None, ge=0, description="Amount in minor units")
    currency: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class ConfirmationResult(BaseModel):
    """Result of processing a payment confirmation."""

    outcome: ConfirmationOutcome
    booking: Optional[Booking] = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment processor."""

    received: bool = True
    event_id: str
    event_type: str
    duplicate: bool = False
