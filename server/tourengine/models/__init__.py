"""Models module exporting all database models."""

from .booking import Booking, BookingStatus, PaymentStatus
from .guest import GuestProfile
from .guide import DepositType, GuideProfile
from .idempotency import IdempotencyRecord
from .message import ConversationMessage
from .offer import OfferStatus, TourOffer
from .payment_event import PaymentEvent
from .slot import TourDateSlot
from .tour import Tour

__all__ = [
    # Catalog
    "GuideProfile",
    "DepositType",
    "Tour",
    "TourDateSlot",

    # Bookings and offers
    "Booking",
    "BookingStatus",
    "PaymentStatus",
    "TourOffer",
    "OfferStatus",
    "GuestProfile",

    # Messaging and payment ledger
    "ConversationMessage",
    "PaymentEvent",

    # Idempotency entity
    "IdempotencyRecord",
]
