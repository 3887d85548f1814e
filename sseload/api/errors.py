from typing import Optional

RATE_LIMIT_STATUS = 429
RATE_LIMIT_MARKER = "Too many requests"


class APIError(Exception):
    """
    Raised when the application API answers with an unexpected status or cannot
    be reached at all (`status` is then 0).
    """

    def __init__(self, message: str, status: int = 0, body: Optional[str] = None):
        super().__init__(f"{message}: {status} - {body}" if body is not None else message)
        self.status = status
        self.body = body

    @classmethod
    def from_response(cls, message: str, status: int, body: str) -> "APIError":
        if status == RATE_LIMIT_STATUS or RATE_LIMIT_MARKER.lower() in (body or "").lower():
            return RateLimitError(message, status, body)
        return cls(message, status, body)


class RateLimitError(APIError):
    """
    The server is throttling requests. Any measurement taken while this happens
    is meaningless, so the whole run is aborted.
    """
