# Periodic cache sweep. Owned by the app lifespan: started at startup, cancelled at shutdown.

import asyncio
import logging
import os
from typing import List, Optional

from app.services.location_cache import LocationCache

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_MS = int(os.getenv("LOCATION_SWEEP_INTERVAL_MS", "15000"))


class StalenessCleanupScheduler:
    """
    Runs cache.sweep() every interval_ms on the event loop.

    Only evicts expired cache entries. Marking a user offline is a separate
    operation (LocationTracker.mark_offline) with its own trigger.
    """

    def __init__(self, cache: LocationCache, interval_ms: int = SWEEP_INTERVAL_MS):
        self.cache = cache
        self.interval = interval_ms / 1000.0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> List[int]:
        return self.cache.sweep()

    async def _run(self) -> None:
        logger.info("Cache sweeper started (every %.1fs, ttl %.0fs)", self.interval, self.cache.ttl)
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.run_once()
            except Exception:
                logger.exception("Cache sweep failed")

    def start(self) -> None:
        if self.running:
            logger.warning("Cache sweeper is already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="location-cache-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Cache sweeper stopped")
