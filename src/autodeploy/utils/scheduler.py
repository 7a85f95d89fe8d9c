"""Fixed-interval trigger for the reload loop."""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()


class PeriodicTrigger:
    """Calls an async callback every ``interval`` seconds.

    Each call is awaited before the next one is scheduled, so a slow call
    delays the following tick instead of overlapping with it. Exceptions are
    logged and the loop carries on with the next tick.
    """

    def __init__(self, callback: Callable[[], Awaitable[object]], interval: float, name: str = "periodic-trigger"):
        self.callback = callback
        self.interval = interval
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self.failures = 0

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("Periodic trigger started", interval=self.interval)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Periodic trigger stopped")

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_run = loop.time() + self.interval
        while True:
            await asyncio.sleep(max(0.0, next_run - loop.time()))
            started = loop.time()
            # A call that overran the interval is followed immediately by the next one.
            next_run = started + self.interval
            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failures += 1
                logger.error("Periodic reload failed", error=str(e), error_type=type(e).__name__)
            logger.debug("Tick finished", elapsed=round(loop.time() - started, 3))
