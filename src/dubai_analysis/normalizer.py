"""
Maps provider- and transport-level failures into the closed error taxonomy.

Callers never branch on provider-specific fields: whatever the adapter or
transport raised, `normalize_error` returns one `LLMError` subclass with a
human-readable message.
"""

from __future__ import annotations

import asyncio
import errno
from typing import Any

import httpx

from .contracts import RawResponse
from .errors import (
    AbortedError,
    AuthError,
    InvalidRequestError,
    LLMError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    ServiceUnavailableError,
    UnknownError,
)

_RESET_ERRNOS = {errno.ECONNRESET, errno.ECONNABORTED, errno.EPIPE}
_TIMEOUT_ERRNOS = {errno.ETIMEDOUT}


def error_from_status(
    status: int,
    message: str | None = None,
    *,
    provider: str | None = None,
    retry_after_seconds: int | None = None,
) -> LLMError:
    label = provider or "Provider"
    detail = message or "no details"
    if status == 400:
        return InvalidRequestError(f"Bad request: {detail}", upstream_status=status)
    if status == 401:
        return AuthError("Authentication error: Invalid API key", upstream_status=status)
    if status == 403:
        return AuthError("Authorization error: Not authorized to use this endpoint", upstream_status=status)
    if status == 404:
        return NotFoundError("Not found: The requested resource doesn't exist", upstream_status=status)
    if status == 429:
        return RateLimitedError(
            "Rate limit exceeded: Please try again later",
            retry_after_seconds=retry_after_seconds,
            upstream_status=status,
        )
    if status >= 500:
        return ServiceUnavailableError(
            f"Service error: {label} servers returned error ({status})", upstream_status=status
        )
    if 400 <= status < 500:
        return InvalidRequestError(f"{label} API error ({status}): {detail}", upstream_status=status)
    return UnknownError(f"{label} API error ({status}): {detail}", upstream_status=status)


def _extract_message(payload: Any) -> str | None:
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(err, str):
            return err
    return None


def _from_os_error(exc: OSError) -> LLMError:
    if exc.errno in _TIMEOUT_ERRNOS:
        return NetworkError("Request timeout: The request took too long to complete")
    if exc.errno in _RESET_ERRNOS or isinstance(exc, ConnectionError):
        return NetworkError("Connection reset: Please check your network connection")
    return NetworkError(f"Network error ({exc.errno}): {exc}")


def normalize_error(raw: Any, *, provider: str | None = None) -> LLMError:
    if isinstance(raw, LLMError):
        return raw
    if raw is None:
        return UnknownError("Unknown error occurred")
    if isinstance(raw, RawResponse):
        return error_from_status(
            raw.status_code,
            _extract_message(raw.payload) or raw.text[:200] or None,
            provider=provider,
            retry_after_seconds=raw.retry_after_seconds(),
        )
    if isinstance(raw, bool):
        return UnknownError(str(raw))
    if isinstance(raw, int):
        return error_from_status(raw, provider=provider)
    if isinstance(raw, httpx.HTTPStatusError):
        resp = raw.response
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        retry_after = resp.headers.get("retry-after")
        return error_from_status(
            resp.status_code,
            _extract_message(payload) or str(raw),
            provider=provider,
            retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if isinstance(raw, httpx.TimeoutException):
        return NetworkError("Request timeout: The request took too long to complete")
    if isinstance(raw, httpx.TransportError):
        return NetworkError("Connection reset: Please check your network connection")
    if isinstance(raw, asyncio.CancelledError):
        return AbortedError("Request aborted: timeout or user cancellation")
    if isinstance(raw, (asyncio.TimeoutError, TimeoutError)):
        return NetworkError("Request timeout: The request took too long to complete")
    if isinstance(raw, OSError):
        return _from_os_error(raw)
    if isinstance(raw, BaseException):
        return UnknownError(str(raw) or type(raw).__name__)
    return UnknownError(str(raw))
