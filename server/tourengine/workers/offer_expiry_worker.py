"""Background worker for expiring custom tour offers."""

import logging

from ..core.database import async_session_factory, utcnow
from ..core.dependencies import get_email_sender
from ..services.notification_service import NotificationDispatcher
from ..services.sweeper_service import SweeperService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class OfferExpiryWorker(BaseWorker):
    """
    Expires pending offers past their expiry and archives their draft tours.

    Accept and decline also check expiry when they read an offer, so this
    worker only tidies up offers nobody touches again.
    """

    def __init__(self, interval_seconds: int = 300):
        super().__init__(name="OfferExpiry", interval_seconds=interval_seconds)

    async def process(self) -> None:
        """Run one expired offer sweep."""
        async with async_session_factory() as db:
            notifier = NotificationDispatcher(db, get_email_sender())
            result = await SweeperService(db, notifier).sweep_expired_offers(utcnow())

            if result.failed:
                logger.warning(
                    "Offer expiry sweep had failures",
                    extra={"worker": self.name, "failed": result.failed, "succeeded": result.succeeded}
                )
