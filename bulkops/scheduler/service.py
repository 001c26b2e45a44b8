import asyncio
import logging
from typing import Optional

from bulkops.scheduler.ticker import run_retention_sweep
from bulkops.settings import settings
from bulkops.store.base import OperationStore

logger = logging.getLogger(__name__)

class SweeperService:
    def __init__(self, store: OperationStore, interval: Optional[int] = None):
        self.store = store
        self.interval = interval or settings.SWEEP_INTERVAL_SECONDS
        self._running = False
        self._task = None

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Sweeper service started.")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Sweeper service stopped.")

    async def _loop(self):
        while self._running:
            try:
                await run_retention_sweep(self.store)
            except Exception as e:
                # Storage hiccup: try again next tick
                logger.error(f"Error in retention sweeper: {e}", exc_info=True)

            await asyncio.sleep(self.interval)
