import asyncio
from typing import List, Optional, Tuple, Type

import httpx


class RaindropError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int = 500, hint: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.hint = hint


class ValidationError(RaindropError):
    """Raised for bad input before any request is made."""

    def __init__(self, message: str, hint: Optional[str] = "Check your input parameters."):
        super().__init__(message, 400, hint)


class AuthenticationError(RaindropError):
    pass


class NotFoundError(RaindropError):
    pass


class BadRequestError(RaindropError):
    pass


class RateLimitError(RaindropError):
    """Raised when rate limits are exhausted."""


class ServerError(RaindropError):
    """Raised when Raindrop.io is down (5xx)."""


class RequestTimeoutError(RaindropError):
    def __init__(self, timeout: float, hint: Optional[str] = None):
        super().__init__(f"Request timeout after {timeout:g}s", 504, hint)
        self.timeout = timeout


class NetworkError(RaindropError):
    pass


class SchemaValidationError(RaindropError):
    """Raised when a response does not match the expected shape."""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message, 500, "The API returned an unexpected response. Try again or report this issue.")
        self.issues = issues or []


class MaxRetriesExceededError(RaindropError):
    def __init__(self, message: str = "Maximum retries exceeded"):
        super().__init__(message, 504)


STATUS_ERRORS = {
    400: (BadRequestError, "Invalid request. Check your input parameters."),
    401: (AuthenticationError, "Authentication failed. Try running 'raindropctl login' again."),
    404: (NotFoundError, "The requested resource was not found. Verify the ID is correct."),
    429: (RateLimitError, "Wait a few minutes before trying again."),
}

SERVER_ERROR_HINT = "The Raindrop.io server is experiencing issues. Try again later."
TIMEOUT_HINT = "The request took too long. Try again later."
NETWORK_HINT = "Check your internet connection and try again."


def classify_status(status_code: int) -> Tuple[Type[RaindropError], Optional[str]]:
    """Map an HTTP status to an error class and remediation hint."""
    if status_code >= 500:
        return ServerError, SERVER_ERROR_HINT
    return STATUS_ERRORS.get(status_code, (RaindropError, None))


def classify_transport(exc: BaseException) -> Tuple[Type[RaindropError], str]:
    """Map a transport failure to an error class and remediation hint."""
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return RequestTimeoutError, TIMEOUT_HINT
    return NetworkError, NETWORK_HINT
