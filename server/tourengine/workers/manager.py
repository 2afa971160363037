"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from ..core.config import settings
from .abandoned_booking_worker import AbandonedBookingWorker
from .base import BaseWorker
from .idempotency_cleanup_worker import IdempotencyCleanupWorker
from .offer_expiry_worker import OfferExpiryWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Owns the sweeper workers started and stopped by the application lifespan.
    """

    def __init__(self):
        self.workers: Dict[str, BaseWorker] = {}
        self._setup_workers()

    def _setup_workers(self) -> None:
        """Initialize all workers."""
        interval = settings.sweeper_interval_seconds
        self.workers["abandoned_bookings"] = AbandonedBookingWorker(interval_seconds=interval)
        self.workers["offer_expiry"] = OfferExpiryWorker(interval_seconds=interval)
        self.workers["idempotency_cleanup"] = IdempotencyCleanupWorker(interval_seconds=3600)

    async def start_all(self) -> None:
        """Start all workers."""
        for name, worker in self.workers.items():
            try:
                await worker.start()
            except Exception as e:
                logger.error(
                    "Failed to start worker",
                    exc_info=True,
                    extra={"worker": name, "error": str(e)}
                )

        logger.info("Workers started", extra={"count": len(self.workers)})

    async def stop_all(self) -> None:
        """Stop all workers gracefully."""
        results = await asyncio.gather(
            *(worker.stop() for worker in self.workers.values()),
            return_exceptions=True,
        )

        for name, result in zip(self.workers.keys(), results):
            if isinstance(result, Exception):
                logger.error("Error stopping worker", extra={"worker": name, "error": str(result)})

        logger.info("All workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Map of worker name to running state."""
        return {name: worker.running for name, worker in self.workers.items()}


# Global worker manager instance
worker_manager = WorkerManager()
