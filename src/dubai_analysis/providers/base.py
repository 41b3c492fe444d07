from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from ..contracts import CompletionRequest, CompletionResult, RawResponse
from ..errors import LLMError


@dataclass(frozen=True)
class ApiCredentials:
    api_key: str
    org_id: str | None = None


KeySource = Callable[[], ApiCredentials | None]


def static_key(api_key: str | None, org_id: str | None = None) -> KeySource:
    creds = ApiCredentials(api_key=api_key, org_id=org_id) if api_key else None
    return lambda: creds


class ProviderAdapter(Protocol):
    """Single remote "generate completion" operation for one provider."""

    name: str

    async def send(self, request: CompletionRequest) -> RawResponse: ...

    def parse(self, raw: RawResponse) -> CompletionResult: ...

    def normalize_error(self, raw: Any) -> LLMError: ...

    async def close(self) -> None: ...


def raw_from_httpx(resp: httpx.Response) -> RawResponse:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    return RawResponse(
        status_code=resp.status_code,
        payload=payload,
        headers={k.lower(): v for k, v in resp.headers.items()},
        text=resp.text,
    )


def token_count(value: Any) -> int:
    """Usage counters as reported upstream; anything non-numeric counts as 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float) and value == value:
        return max(0, int(value))
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0
