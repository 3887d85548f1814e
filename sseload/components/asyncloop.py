import asyncio
import logging
from signal import SIGINT, SIGTERM
from typing import Any, Awaitable, Callable

from .logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


class AsyncLoop:
    def __init__(self):
        self.loop = asyncio.new_event_loop()

    def run(self, process: Callable[[], Awaitable], interrupt: Callable[[], None]) -> Any:
        """
        Run an async process to completion with SIGINT/SIGTERM routed to
        `interrupt` instead of killing the loop, so the process can run its own
        shutdown sequence.

        Args:
            process: Async callable to run (e.g. load_test.run)
            interrupt: Sync callback invoked from the loop on SIGINT/SIGTERM

        Returns:
            The process' result. Exceptions raised by the process propagate once
            the remaining tasks have been cancelled and the loop closed.
        """
        for sig in (SIGINT, SIGTERM):
            self.loop.add_signal_handler(sig, interrupt)

        try:
            return self.loop.run_until_complete(process())
        except asyncio.CancelledError:
            logger.error("Stopping the instance")
            raise
        finally:
            self.stop()

    def stop(self):
        if self.loop.is_closed():
            return

        tasks = asyncio.all_tasks(self.loop)
        for task in tasks:
            task.cancel()
        if tasks:
            self.loop.run_until_complete(asyncio.gather(*tasks, return_exceptions=True))

        self.loop.run_until_complete(self.loop.shutdown_asyncgens())
        for sig in (SIGINT, SIGTERM):
            self.loop.remove_signal_handler(sig)
        self.loop.close()
