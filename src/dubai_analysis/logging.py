from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, MutableMapping
from typing import Any

import structlog

SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "openai-organization",
        "x-goog-api-key",
        "token",
        "password",
    }
)
_SENSITIVE_FRAGMENTS = ("api_key", "apikey", "secret", "fernet")

REDACTED = "[REDACTED]"

# Order matters: the query-param rule must run before the generic key shapes.
_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._-]{6,}"), f"Bearer {REDACTED}"),
    (re.compile(r"([?&]key=)[^&\s\"']+"), rf"\1{REDACTED}"),
    (re.compile(r"\b(?:sk-[A-Za-z0-9_-]{16,}|AIza[0-9A-Za-z_-]{20,})"), REDACTED),
    (re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+"), "[EMAIL_REDACTED]"),
)


def redact_str(value: str, *, secrets: Iterable[str] = ()) -> str:
    """Mask configured secrets, provider key shapes and e-mail addresses."""
    for secret in secrets:
        if secret:
            value = value.replace(secret, REDACTED)
    for pattern, replacement in _PATTERNS:
        value = pattern.sub(replacement, value)
    return value


def _is_sensitive_key(key: Any) -> bool:
    name = str(key).lower()
    return name in SENSITIVE_KEYS or any(fragment in name for fragment in _SENSITIVE_FRAGMENTS)


def redact(obj: Any, *, secrets: Iterable[str] = ()) -> Any:
    secrets = tuple(secrets)
    if isinstance(obj, str):
        return redact_str(obj, secrets=secrets)
    if isinstance(obj, Mapping):
        return {k: REDACTED if _is_sensitive_key(k) else redact(v, secrets=secrets) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(redact(v, secrets=secrets) for v in obj)
    return obj


class RedactingProcessor:
    """structlog processor applying `redact` to every event before rendering."""

    def __init__(self, secrets: Iterable[str] = ()):
        self.secrets = tuple(s for s in secrets if isinstance(s, str) and s)

    def __call__(self, _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> dict[str, Any]:
        return redact(event_dict, secrets=self.secrets)


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level)

    renderer: Any = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            RedactingProcessor(secrets or []),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
