from __future__ import annotations

import asyncio
import re
import uuid
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.middleware.trustedhost import TrustedHostMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .config import AnalysisServiceConfig

API_PREFIX = "/api/"

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")

BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-site",
}
# Analysis results and key status must never be stored by the browser or a proxy.
API_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def coerce_request_id(value: str | None) -> str:
    if value and _REQUEST_ID_RE.fullmatch(value):
        return value
    return uuid.uuid4().hex


def error_body(message: str, request_id: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": message}
    if request_id:
        body["requestId"] = request_id
    return body


def is_api_path(path: str) -> bool:
    return path.startswith(API_PREFIX)


def _error(request: Request, status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_body(message, getattr(request.state, "request_id", None)),
        headers=headers,
    )


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = coerce_request_id(request.headers.get("x-request-id"))
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers.setdefault("X-Request-Id", request_id)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, *, noindex: bool = True):
        super().__init__(app)
        self.noindex = noindex

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        headers = dict(BASE_HEADERS)
        if self.noindex:
            headers["X-Robots-Tag"] = "noindex, nofollow"
        if is_api_path(request.url.path):
            headers.update(API_HEADERS)
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response


class MaxBodySizeMiddleware(BaseHTTPMiddleware):
    """Rejects oversized `/api/` bodies with 413 before any handler parses them."""

    def __init__(self, app: ASGIApp, *, limit: int):
        super().__init__(app)
        self.limit = limit

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self.limit > 0 and request.method in ("POST", "PUT", "PATCH") and is_api_path(request.url.path):
            declared = request.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > self.limit:
                return _error(request, 413, "Request body too large.")
            if len(await request.body()) > self.limit:
                return _error(request, 413, "Request body too large.")
        return await call_next(request)


class ConcurrencyLimitMiddleware(BaseHTTPMiddleware):
    """Caps in-flight `/api/` requests; `/healthz` stays reachable when saturated."""

    def __init__(self, app: ASGIApp, *, max_inflight: int):
        super().__init__(app)
        self._sem = asyncio.Semaphore(max(1, max_inflight))

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not is_api_path(request.url.path):
            return await call_next(request)
        if self._sem.locked():
            return _error(request, 429, "Server is busy. Try again later.", {"Retry-After": "1"})
        async with self._sem:
            return await call_next(request)


def install_middlewares(app: FastAPI, *, cfg: AnalysisServiceConfig) -> None:
    if cfg.cors_allow_credentials and "*" in cfg.cors_allow_origins:
        raise ValueError("CORS_ALLOW_ORIGINS cannot include '*' when CORS_ALLOW_CREDENTIALS=true.")

    app.add_middleware(MaxBodySizeMiddleware, limit=int(cfg.max_request_body_bytes or 0))
    app.add_middleware(ConcurrencyLimitMiddleware, max_inflight=int(cfg.max_inflight_requests or 1))
    app.add_middleware(SecurityHeadersMiddleware, noindex=not cfg.enable_api_docs)
    # Outermost of ours, so short-circuited responses still carry X-Request-Id.
    app.add_middleware(RequestIdMiddleware)

    if cfg.allowed_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=list(cfg.allowed_hosts))
    if cfg.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(cfg.cors_allow_origins),
            allow_credentials=cfg.cors_allow_credentials,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "X-Request-Id"],
            max_age=600,
        )
