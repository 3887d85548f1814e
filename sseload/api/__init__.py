from .board_api import BoardAPI
from .errors import APIError, RateLimitError

__all__ = ["BoardAPI", "APIError", "RateLimitError"]
