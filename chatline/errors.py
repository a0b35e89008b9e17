"""
Error taxonomy for chatline.

Configuration and malformed-data errors are raised where they are detected.
Request-level failures are caught at the service boundary, mapped to one of
these classes with a human-readable message, and re-raised.
"""

from __future__ import annotations

HTTP_ERROR_MESSAGES: dict[int, str] = {
    400: "Bad Request - Check your request parameters",
    401: "Unauthorized - Invalid API key",
    403: "Forbidden - Access denied",
    404: "Not Found - Resource not found",
    429: "Too Many Requests - Rate limit exceeded",
    500: "Internal Server Error - Please try again later",
    502: "Bad Gateway - Service temporarily unavailable",
    503: "Service Unavailable - Please try again later",
}

NETWORK_ERROR_MESSAGE = "Network Error - Please check your connection"
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"


class ChatError(Exception):
    """Base class for every error chatline surfaces to a caller."""

    def __init__(self, message: str = UNEXPECTED_ERROR_MESSAGE):
        super().__init__(message)
        self.message = message


class ConfigurationError(ChatError):
    """Missing or invalid credentials / endpoint."""


class MalformedDataError(ChatError):
    """Import or parse failure."""


class NetworkError(ChatError):
    """No response was received from the backend."""

    def __init__(self, message: str = NETWORK_ERROR_MESSAGE):
        super().__init__(message)


class RequestError(ChatError):
    """The backend answered with an error status."""

    def __init__(self, message: str, status_code: int, raw_message: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.raw_message = raw_message


class ClientRequestError(RequestError):
    """4xx: bad params, auth, not found, rate limit."""


class ServerError(RequestError):
    """5xx."""


def error_for_status(status_code: int, raw_message: str = "") -> RequestError:
    """Build the RequestError subclass for an HTTP status."""
    message = HTTP_ERROR_MESSAGES.get(status_code) or raw_message or "API Error"
    if status_code >= 500:
        cls = ServerError
    elif 400 <= status_code < 500:
        cls = ClientRequestError
    else:
        cls = RequestError
    return cls(message, status_code=status_code, raw_message=raw_message)
