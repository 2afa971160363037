"""Background worker for cancelling abandoned bookings."""

import logging

from ..core.database import async_session_factory, utcnow
from ..core.dependencies import get_email_sender
from ..services.notification_service import NotificationDispatcher
from ..services.sweeper_service import SweeperService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class AbandonedBookingWorker(BaseWorker):
    """
    Cancels bookings that never reached the payment processor.

    Their spots go back to the slot once the grace period has passed.
    """

    def __init__(self, interval_seconds: int = 300):
        super().__init__(name="AbandonedBookings", interval_seconds=interval_seconds)

    async def process(self) -> None:
        """Run one abandoned booking sweep."""
        async with async_session_factory() as db:
            notifier = NotificationDispatcher(db, get_email_sender())
            result = await SweeperService(db, notifier).sweep_abandoned_bookings(utcnow())

            if result.failed:
                logger.warning(
                    "Abandoned booking sweep had failures",
                    extra={"worker": self.name, "failed": result.failed, "succeeded": result.succeeded}
                )
