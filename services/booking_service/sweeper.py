"""
Expiry Sweeper

Background task that periodically completes approved reservations whose
window has ended.
"""

import asyncio
from uuid import UUID

import structlog

from services.booking_service.lifecycle import LifecycleEngine

logger = structlog.get_logger(__name__)


class ExpirySweeper:
    """Runs complete_expired_reservations every interval_seconds."""

    def __init__(self, lifecycle: LifecycleEngine, interval_seconds: float = 60.0):
        self.lifecycle = lifecycle
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> list[UUID]:
        return await self.lifecycle.complete_expired_reservations()

    async def _loop(self) -> None:
        logger.info("Expiry sweeper started", interval_seconds=self.interval_seconds)
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                # The next tick retries; a failed sweep leaves no partial state
                logger.error("Expiry sweep failed", error=str(e))

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Expiry sweeper stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
