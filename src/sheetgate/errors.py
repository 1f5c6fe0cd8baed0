"""
Errors raised by the remote client and the request orchestrator.

Validation failures are never raised; they are returned inside a
ValidationResult. Everything here describes a failed call to the remote
endpoint and says whether retrying it can help.
"""

from typing import Any, Optional

import httpx


class SheetgateError(Exception):
    """Base class for remote call failures."""

    retryable = False
    user_message = "The operation could not be completed."

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.context = context or {}
        # Filled in by the RequestQueue when the error settles a request
        self.attempts: Optional[int] = None
        self.elapsed: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "user_message": self.user_message,
            "status": self.status,
            "retryable": self.retryable,
            "attempts": self.attempts,
            "elapsed": self.elapsed,
        }


class NetworkError(SheetgateError):
    retryable = True
    user_message = "Connection problem. Check your network and try again."


class RequestTimeoutError(SheetgateError):
    retryable = True
    user_message = "The operation took too long. Try again."


class ServerError(SheetgateError):
    retryable = True
    user_message = "The server failed to process the request. Try again later."


class RateLimitError(SheetgateError):
    retryable = True
    user_message = "Too many requests. Wait a moment before trying again."

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class AuthenticationError(SheetgateError):
    user_message = "Your session is no longer valid. Sign in again."


class AuthorizationError(SheetgateError):
    user_message = "You do not have permission to perform this operation."


class NotFoundError(SheetgateError):
    user_message = "The requested record was not found."


class RequestRejectedError(SheetgateError):
    """Any other 4xx: the request itself is wrong and resending it won't help."""

    user_message = "The request was rejected by the server."


class RemoteOperationError(SheetgateError):
    """The endpoint answered ``ok: false`` for an otherwise healthy call."""


class QueueClearedError(SheetgateError):
    user_message = "The operation was cancelled."


class RelatedDataError(SheetgateError):
    """A snapshot of a related table could not be loaded."""

    retryable = True


def is_retryable(error: BaseException) -> bool:
    """Errors outside the taxonomy are treated as transient."""
    if isinstance(error, SheetgateError):
        return error.retryable
    return True


def error_for_status(
    status: int, message: str, headers: Optional[httpx.Headers] = None, **kwargs
) -> SheetgateError:
    """Map an HTTP error status to the matching error class."""
    if status == 401:
        return AuthenticationError(message, status=status, **kwargs)
    if status == 403:
        return AuthorizationError(message, status=status, **kwargs)
    if status == 404:
        return NotFoundError(message, status=status, **kwargs)
    if status == 408:
        return RequestTimeoutError(message, status=status, **kwargs)
    if status == 429:
        retry_after = None
        if headers is not None and headers.get("retry-after"):
            try:
                retry_after = float(headers["retry-after"])
            except ValueError:
                retry_after = None
        return RateLimitError(message, retry_after=retry_after, status=status, **kwargs)
    if status >= 500:
        return ServerError(message, status=status, **kwargs)
    return RequestRejectedError(message, status=status, **kwargs)


def classify_transport_error(
    error: httpx.HTTPError, context: Optional[dict[str, Any]] = None
) -> SheetgateError:
    """Translate an httpx exception raised before any response arrived."""
    if isinstance(error, httpx.TimeoutException):
        return RequestTimeoutError(f"Request timed out: {error}", context=context)
    return NetworkError(f"Network error: {error}", context=context)
