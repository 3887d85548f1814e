import asyncio
import logging
from typing import Optional

from .logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


class Ticker:
    """
    Run-wide rate limiter shared by every user's action loop.

    A single background task emits one tick per `interval` seconds into a
    one-slot buffer. Ticks that nobody is waiting for are dropped, and each
    emitted tick is consumed by exactly one waiting consumer, so the total
    action throughput is bounded by the ticker whatever the number of users.
    Which consumer wins a tick is left to the event loop.
    """

    def __init__(self, interval: float):
        if interval <= 0:
            raise ValueError(f"Ticker interval must be positive, got {interval}")

        self.interval = interval
        self._ticks: asyncio.Queue[float] = asyncio.Queue(maxsize=1)
        self._task: Optional[asyncio.Task] = None
        self.emitted = 0
        self.dropped = 0

    @classmethod
    def per_minute(cls, rate: float) -> "Ticker":
        if rate <= 0:
            raise ValueError(f"Rate must be positive, got {rate}")
        return cls(60.0 / rate)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self):
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval

        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            next_tick += self.interval

            try:
                self._ticks.put_nowait(loop.time())
            except asyncio.QueueFull:
                self.dropped += 1
            else:
                self.emitted += 1

    async def wait(self) -> float:
        """
        Block until a tick is available and consume it.
        """
        return await self._ticks.get()

    async def stop(self):
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

        logger.debug("Ticker stopped", {"emitted": self.emitted, "dropped": self.dropped})
