"""Custom exceptions for windowguard."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from windowguard.app.services.rate_limit.models import Decision


RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


class WindowGuardException(Exception):
    """Base class for windowguard exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class StoreUnavailableError(WindowGuardException):
    """Raised when the shared counter store cannot serve a command.

    Only administrative operations raise this; request checks fail open.
    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, key: str, cause: Optional[BaseException] = None):
        self.key = key
        self.cause = cause
        detail = f"Rate limit store unavailable for key {key!r}"
        if cause is not None:
            detail += f": {cause}"
        super().__init__(detail)


class RateLimitExceededError(WindowGuardException):
    """Raised by rate limit dependencies when a caller is over quota.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, decision: "Decision", retry_after: int):
        self.decision = decision
        self.retry_after = retry_after
        super().__init__(RATE_LIMIT_MESSAGE)

    def headers(self) -> dict[str, str]:
        """Rate limit headers for the rejection response."""
        headers = self.decision.headers()
        headers["Retry-After"] = str(self.retry_after)
        return headers

    def to_response(self) -> dict:
        """Convert to the API error body."""
        return {
            "success": False,
            "message": self.message,
            "error": None,
        }
