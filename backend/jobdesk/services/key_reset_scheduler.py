import asyncio
import logging
from typing import Awaitable, Callable

from .key_rotation import KeyRotationGateway


logger = logging.getLogger(__name__)


class ErrorCountResetScheduler:
    """
    Periodically re-admits exhausted API keys by resetting every error count.

    Owned by the process entry point (FastAPI startup/shutdown hooks); nothing starts on import.
    """

    def __init__(
        self,
        gateway: KeyRotationGateway,
        *,
        interval_s: float = 3600.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.gateway = gateway
        self.interval_s = float(interval_s)
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, *, max_ticks: int | None = None) -> int:
        """Sleep/reset loop. Returns the number of resets performed (only reached with max_ticks)."""
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            await self._sleep(self.interval_s)
            self.gateway.reset_all_error_counts()
            ticks += 1
        return ticks

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self.run())
        logger.info("API key error reset scheduled every %.0fs", self.interval_s)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("API key error reset scheduler stopped")
