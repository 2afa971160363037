"""Background workers for the tour engine."""

from .abandoned_booking_worker import AbandonedBookingWorker
from .idempotency_cleanup_worker import IdempotencyCleanupWorker
from .offer_expiry_worker import OfferExpiryWorker

__all__ = ["AbandonedBookingWorker", "IdempotencyCleanupWorker", "OfferExpiryWorker"]
