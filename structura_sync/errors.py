"""Error types for the offline sync layer and their classification.

Callers get three distinguishable failures from the HTTP helper:

- ``ApiError``: the server answered with a non-2xx status.
- ``RequestTimeoutError``: no answer within the configured timeout.
- ``NetworkError``: the request never reached the server.

``categorize_error`` and ``user_message`` group any of these (and
pydantic validation failures) for logging and for display.
"""

from enum import Enum

import httpx
from pydantic import ValidationError


class SyncError(Exception):
    """Base class for errors raised by structura_sync."""


class ApiError(SyncError):
    def __init__(self, status_code: int, body: str = "", url: str = ""):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"{status_code}: {body}")


class RequestTimeoutError(SyncError):
    def __init__(self, method: str, url: str, timeout: float):
        self.method = method
        self.url = url
        self.timeout = timeout
        super().__init__(f"API request timeout (> {timeout:g}s): {method} {url}")


class NetworkError(SyncError):
    def __init__(self, method: str, url: str, reason: str):
        self.method = method
        self.url = url
        super().__init__(f"Network error: {method} {url} - {reason}")


class StorageError(SyncError):
    """The durable store could not be read or written."""


class ErrorCategory(str, Enum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    SERVER = "server"
    CLIENT = "client"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


def _status_of(error: BaseException) -> int | None:
    if isinstance(error, ApiError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def categorize_error(error: BaseException) -> ErrorCategory:
    """Groups an exception by cause."""
    if isinstance(error, (RequestTimeoutError, httpx.TimeoutException)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (NetworkError, httpx.TransportError)):
        return ErrorCategory.NETWORK

    status = _status_of(error)
    if status is not None:
        if status == 401:
            return ErrorCategory.AUTHENTICATION
        if status == 403:
            return ErrorCategory.AUTHORIZATION
        if 400 <= status < 500:
            return ErrorCategory.CLIENT
        if status >= 500:
            return ErrorCategory.SERVER

    if isinstance(error, ValidationError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


def user_message(error: BaseException) -> str:
    """Message suitable for showing to the user."""
    status = _status_of(error)
    if status == 401:
        return "Your session has expired. Please sign in again."
    if status == 403:
        return "You do not have permission to access this resource."
    if status == 404:
        return "The requested resource was not found."
    if status is not None and status >= 500:
        return "A server error occurred. Please try again later."
    if isinstance(error, RequestTimeoutError):
        return "The request timed out. Please try again."
    if isinstance(error, (NetworkError, httpx.TransportError)):
        return "The server did not respond. Please check your internet connection."
    return "An error occurred while connecting to the server."
