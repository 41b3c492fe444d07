from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_REQUEST = "InvalidRequest"
    AUTH = "AuthError"
    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    NETWORK = "NetworkError"
    ABORTED = "Aborted"
    UNKNOWN = "Unknown"


class LLMError(Exception):
    """Base error for every failure surfaced by the completion client."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    retryable: bool = False
    status_code: int = 500

    def __init__(self, message: str = "Unknown error occurred", *, upstream_status: int | None = None):
        super().__init__(message)
        self.message = message
        self.upstream_status = upstream_status


class InvalidRequestError(LLMError):
    kind = ErrorKind.INVALID_REQUEST
    status_code = 400


class AuthError(LLMError):
    kind = ErrorKind.AUTH
    status_code = 401


class NotFoundError(LLMError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class RateLimitedError(LLMError):
    kind = ErrorKind.RATE_LIMITED
    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded: Please try again later",
        *,
        retry_after_seconds: int | None = None,
        local: bool = False,
        upstream_status: int | None = None,
    ):
        super().__init__(message, upstream_status=upstream_status)
        self.retry_after_seconds = retry_after_seconds
        # Admission-gate rejections are surfaced immediately, never retried.
        self.local = local
        self.retryable = not local


class ServiceUnavailableError(LLMError):
    kind = ErrorKind.SERVICE_UNAVAILABLE
    retryable = True
    status_code = 503


class NetworkError(LLMError):
    kind = ErrorKind.NETWORK
    retryable = True
    status_code = 502


class AbortedError(LLMError):
    kind = ErrorKind.ABORTED
    status_code = 504


class UnknownError(LLMError):
    kind = ErrorKind.UNKNOWN


class ConfigurationError(Exception):
    """Invalid service configuration detected at startup."""
