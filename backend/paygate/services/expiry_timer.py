"""
Expiry Sweep Timer — background task pruning unpaid, expired sessions.
"""
import asyncio
import logging
from typing import Optional

from paygate.services.session_store import SessionStore

logger = logging.getLogger("paygate.expiry_timer")


class ExpirySweepTimer:
    def __init__(self, store: SessionStore, interval_seconds: float = 300.0):
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="expiry-sweep")
        logger.info(f"Expiry sweep started (every {self.interval_seconds}s)")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweep stopped")

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.store.sweep_expired()
            except Exception:
                logger.exception("Expiry sweep pass failed")
