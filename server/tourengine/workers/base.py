"""Base class of the periodic sweeper workers."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """
    Runs ``process`` every ``interval_seconds`` until stopped.

    An iteration that raises is logged and the loop carries on with the next
    interval. Stopping waits for the current iteration to finish, so a sweep
    is never cut off between its per-item commits.
    """

    def __init__(self, name: str, interval_seconds: float = 60):
        self.name = name
        self.interval_seconds = interval_seconds
        self.iterations = 0
        self.last_error: Optional[str] = None
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @abstractmethod
    async def process(self) -> None:
        """One sweep."""

    async def start(self) -> None:
        if self.running:
            logger.warning("Worker is already running", extra={"worker": self.name})
            return

        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name=f"worker:{self.name}")
        logger.info("Worker started", extra={"worker": self.name, "interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if not self.running:
            return

        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Worker stopped", extra={"worker": self.name, "iterations": self.iterations})

    async def _run_once(self) -> None:
        started = time.perf_counter()
        try:
            await self.process()
            self.last_error = None
        except Exception as e:
            self.last_error = str(e)
            logger.error(
                "Worker iteration failed",
                exc_info=True,
                extra={"worker": self.name, "error": str(e)}
            )
        finally:
            self.iterations += 1

        logger.debug(
            "Worker iteration finished",
            extra={"worker": self.name, "duration_seconds": round(time.perf_counter() - started, 3)}
        )

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            await self._run_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
