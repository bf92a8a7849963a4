"""Background loop that runs the healing pass on an interval."""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from ..config import HealingSettings
from .service import HealingResult, PaymentHealingService

logger = logging.getLogger(__name__)


class HealingScheduler:
    """
    Runs ``PaymentHealingService.run`` every ``interval`` as one asyncio task.

    Overlapping passes are prevented within this process only. Several
    processes sharing a database may heal concurrently; the finalizer's row
    lock and the ownership check keep that safe.
    """

    # Shared by every scheduler in the process.
    _running = False

    def __init__(self, healing: PaymentHealingService, settings: Optional[HealingSettings] = None):
        self.healing = healing
        self.settings = settings or healing.settings
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """True while a healing pass is in progress in this process."""
        return HealingScheduler._running

    def start(self) -> Optional[asyncio.Task]:
        """Spawn the loop task. Does nothing when disabled or already started."""
        if not self.settings.enabled:
            logger.info("Payment healing scheduler is disabled.")
            return None
        if self._task is not None and not self._task.done():
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_forever(), name="payment-healing")
        return self._task

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to finish."""
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
        logger.info("Payment healing scheduler stopped.")

    async def tick(self) -> Optional[HealingResult]:
        """Run one healing pass unless one is already in progress.

        Returns:
            The pass result, or None when the pass was skipped.
        """
        if HealingScheduler._running:
            logger.warning("Previous healing pass still in progress. Skipping this tick.")
            return None

        HealingScheduler._running = True
        try:
            return await self.healing.run()
        finally:
            HealingScheduler._running = False

    async def run_forever(self) -> None:
        """Loop until stopped or cancelled. Errors in a pass are logged, never raised."""
        if not self.settings.enabled:
            logger.info("Payment healing scheduler is disabled.")
            return

        initial_delay = self.settings.initial_delay
        if initial_delay > timedelta(0):
            logger.info(f"Payment healing initial delay {initial_delay.total_seconds()}s")
            if await self._wait(initial_delay):
                return

        logger.info(f"Payment healing scheduler started. Interval={self.settings.interval}")
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Payment healing pass failed")

            if await self._wait(self.settings.interval):
                break

        logger.info("Payment healing loop exited.")

    async def _wait(self, delay: timedelta) -> bool:
        """Sleep for ``delay``; return True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay.total_seconds())
        except asyncio.TimeoutError:
            return False
        return True
