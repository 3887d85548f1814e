import functools
import logging

from .logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


def connectguard(func):
    """
    Decorator to check if the user is connected before running anything
    """

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        if not self.connected:
            logger.debug("User not connected, skipping", {"method": func.__name__})
            return

        return await func(self, *args, **kwargs)

    return wrapper
