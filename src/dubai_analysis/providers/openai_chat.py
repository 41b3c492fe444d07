from __future__ import annotations

from typing import Any

import httpx
import structlog

from ..contracts import CompletionRequest, CompletionResult, FunctionCall, RawResponse
from ..errors import AuthError, LLMError, UnknownError
from ..normalizer import error_from_status, normalize_error
from .base import KeySource, raw_from_httpx, token_count

log = structlog.get_logger()

OPENAI_API_BASE = "https://api.openai.com/v1"


class OpenAIChatAdapter:
    name = "openai"

    def __init__(
        self,
        key_source: KeySource,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = OPENAI_API_BASE,
        timeout_seconds: float = 60,
    ):
        self._key_source = key_source
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")

    async def close(self) -> None:
        await self._client.aclose()

    def _payload(self, request: CompletionRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.functions:
            payload["functions"] = list(request.functions)
        return payload

    async def send(self, request: CompletionRequest) -> RawResponse:
        creds = self._key_source()
        if creds is None or not creds.api_key:
            raise AuthError("OpenAI API key not configured. Set it via /api/set-api-key or OPENAI_API_KEY.")

        headers = {"Authorization": f"Bearer {creds.api_key}"}
        if creds.org_id:
            headers["OpenAI-Organization"] = creds.org_id

        resp = await self._client.post(
            f"{self._base_url}/chat/completions",
            headers=headers,
            json=self._payload(request),
        )
        return raw_from_httpx(resp)

    def parse(self, raw: RawResponse) -> CompletionResult:
        data = raw.payload
        if not isinstance(data, dict):
            raise UnknownError("Malformed OpenAI response: expected a JSON object.")

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise UnknownError("Malformed OpenAI response: missing choices.")

        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message")
        if not isinstance(message, dict):
            raise UnknownError("Malformed OpenAI response: missing message.")

        function_call = None
        fc = message.get("function_call")
        if isinstance(fc, dict) and isinstance(fc.get("name"), str):
            function_call = FunctionCall(name=fc["name"], arguments=str(fc.get("arguments") or "{}"))

        content = message.get("content")
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise UnknownError("Malformed OpenAI response: content is not text.")

        usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
        return CompletionResult(
            text=content,
            model=str(data.get("model") or ""),
            input_tokens=token_count(usage.get("prompt_tokens")),
            output_tokens=token_count(usage.get("completion_tokens")),
            finish_reason=first.get("finish_reason"),
            function_call=function_call,
        )

    def normalize_error(self, raw: Any) -> LLMError:
        if isinstance(raw, RawResponse):
            err = raw.payload.get("error") if isinstance(raw.payload, dict) else None
            message = err.get("message") if isinstance(err, dict) else None
            if isinstance(err, dict) and err.get("code"):
                log.debug("openai_error_code", code=err.get("code"), status_code=raw.status_code)
            return error_from_status(
                raw.status_code,
                message,
                provider="OpenAI",
                retry_after_seconds=raw.retry_after_seconds(),
            )
        return normalize_error(raw, provider="OpenAI")
