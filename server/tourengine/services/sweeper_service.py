"""Lifecycle sweepers for abandoned bookings and expired offers."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.offer import OfferStatus, TourOffer
from ..schemas.sweep import SweepError, SweepResult
from .booking_service import BookingService
from .notification_service import NotificationDispatcher
from .offer_service import OfferService
from .tour_service import TourService

logger = logging.getLogger(__name__)

ABANDONED_BOOKINGS = "abandoned_bookings"
EXPIRED_OFFERS = "expired_offers"

OFFER_EXPIRED_NOTE = "This custom tour offer has expired after {days} days without acceptance."


class SweeperService:
    """
    Batch cleanup of state nobody will complete.

    Candidates are selected up front, then each one is handled in its own
    transaction with the selection predicate re-checked at update time.
    Items that no longer match are skipped, so sweeps may overlap.
    """

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.notifier = notifier
        self.booking_service = BookingService(db, notifier=notifier)
        self.offer_service = OfferService(db, notifier=notifier)
        self.tour_service = TourService(db)

    async def sweep_abandoned_bookings(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Cancel bookings that never reached the payment processor.

        A booking qualifies when it is not cancelled, its payment is pending,
        it has neither checkout session nor payment intent, and it is older
        than the grace period. Its spots are released.
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=settings.abandoned_booking_grace_minutes)

        result = await self.db.execute(
            select(Booking.id)
            .where(
                Booking.status != BookingStatus.CANCELLED.value,
                Booking.payment_status == PaymentStatus.PENDING.value,
                Booking.checkout_session_id.is_(None),
                Booking.payment_intent_id.is_(None),
                Booking.created_at < cutoff,
            )
            .order_by(Booking.created_at)
        )
        booking_ids = list(result.scalars())

        sweep = SweepResult(sweeper=ABANDONED_BOOKINGS, total=len(booking_ids))
        for booking_id in booking_ids:
            try:
                cancelled = await self.booking_service.cancel_abandoned(booking_id, cutoff)
            except Exception as e:
                await self.db.rollback()
                self._record_failure(sweep, booking_id, e)
                continue

            if cancelled:
                sweep.succeeded += 1
                metrics_collector.record_sweep_item(ABANDONED_BOOKINGS, "succeeded")
            else:
                sweep.skipped += 1
                metrics_collector.record_sweep_item(ABANDONED_BOOKINGS, "skipped")

        self._log_result(sweep)
        return sweep

    async def sweep_expired_offers(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Expire pending offers past their expiry and archive their draft tours.

        Offers in payment_pending are left to the payment processor's own
        session expiry.
        """
        now = now or utcnow()

        result = await self.db.execute(
            select(TourOffer.id, TourOffer.tour_id, TourOffer.conversation_id)
            .where(
                TourOffer.status == OfferStatus.PENDING.value,
                TourOffer.expires_at < now,
            )
            .order_by(TourOffer.expires_at)
        )
        candidates = list(result.all())

        sweep = SweepResult(sweeper=EXPIRED_OFFERS, total=len(candidates))
        expired_conversations = []
        for offer_id, tour_id, conversation_id in candidates:
            try:
                expired = await self.offer_service.expire(offer_id, now, commit=False)
                if expired and tour_id is not None:
                    await self.tour_service.archive_tour(tour_id, commit=False)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                self._record_failure(sweep, offer_id, e)
                continue

            if expired:
                sweep.succeeded += 1
                expired_conversations.append(conversation_id)
                metrics_collector.record_sweep_item(EXPIRED_OFFERS, "succeeded")
                logger.info("Offer expired", extra={"offer_id": str(offer_id)})
            else:
                sweep.skipped += 1
                metrics_collector.record_sweep_item(EXPIRED_OFFERS, "skipped")

        if self.notifier is not None:
            note = OFFER_EXPIRED_NOTE.format(days=settings.offer_ttl_days)
            for conversation_id in expired_conversations:
                await self.notifier.post_system_message(conversation_id, note)

        self._log_result(sweep)
        return sweep

    def _record_failure(self, sweep: SweepResult, item_id, error: Exception) -> None:
        sweep.failed += 1
        sweep.errors.append(SweepError(item_id=str(item_id), error=str(error)))
        metrics_collector.record_sweep_item(sweep.sweeper, "failed")
        logger.error(
            "Sweep item failed",
            exc_info=True,
            extra={"sweeper": sweep.sweeper, "item_id": str(item_id), "error": str(error)}
        )

    @staticmethod
    def _log_result(sweep: SweepResult) -> None:
        if sweep.total == 0:
            return
        logger.info(
            "Sweep completed",
            extra={
                "sweeper": sweep.sweeper,
                "total": sweep.total,
                "succeeded": sweep.succeeded,
                "skipped": sweep.skipped,
                "failed": sweep.failed,
            }
        )
