from __future__ import annotations

import json
from typing import Any

import httpx
import structlog

from ..contracts import CompletionRequest, CompletionResult, FunctionCall, RawResponse
from ..errors import AuthError, LLMError, UnknownError
from ..normalizer import error_from_status, normalize_error
from .base import KeySource, raw_from_httpx, token_count

log = structlog.get_logger()

GEMINI_DEV_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

# google.rpc status names -> HTTP-equivalent status
_RPC_STATUS = {
    "INVALID_ARGUMENT": 400,
    "FAILED_PRECONDITION": 400,
    "OUT_OF_RANGE": 400,
    "UNAUTHENTICATED": 401,
    "PERMISSION_DENIED": 403,
    "NOT_FOUND": 404,
    "RESOURCE_EXHAUSTED": 429,
    "INTERNAL": 500,
    "UNAVAILABLE": 503,
    "DEADLINE_EXCEEDED": 504,
}


def _invalid_api_key(err: dict[str, Any]) -> bool:
    for detail in err.get("details") or []:
        if isinstance(detail, dict) and detail.get("reason") == "API_KEY_INVALID":
            return True
    message = err.get("message")
    return isinstance(message, str) and "API key not valid" in message


class GeminiAdapter:
    """Gemini Developer API (`generateContent`) with an API key."""

    name = "gemini"

    def __init__(
        self,
        key_source: KeySource,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = GEMINI_DEV_API_BASE,
        timeout_seconds: float = 60,
    ):
        self._key_source = key_source
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")

    async def close(self) -> None:
        await self._client.aclose()

    def _payload(self, request: CompletionRequest) -> dict[str, Any]:
        system_parts: list[str] = []
        contents: list[dict[str, Any]] = []
        for msg in request.messages:
            if msg.role == "system":
                if msg.content:
                    system_parts.append(msg.content)
                continue
            gemini_role = "model" if msg.role == "assistant" else "user"
            contents.append({"role": gemini_role, "parts": [{"text": msg.content}]})

        payload: dict[str, Any] = {"contents": contents}

        system_instruction = "\n\n".join(system_parts).strip()
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        if request.functions:
            payload["tools"] = [{"functionDeclarations": list(request.functions)}]

        generation_config: dict[str, Any] = {}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.max_tokens is not None:
            generation_config["maxOutputTokens"] = request.max_tokens
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    async def send(self, request: CompletionRequest) -> RawResponse:
        creds = self._key_source()
        if creds is None or not creds.api_key:
            raise AuthError("Gemini API key not configured. Please set GEMINI_API_KEY to use this feature.")

        resp = await self._client.post(
            f"{self._base_url}/models/{request.model}:generateContent",
            params={"key": creds.api_key},
            json=self._payload(request),
        )
        return raw_from_httpx(resp)

    def parse(self, raw: RawResponse) -> CompletionResult:
        data = raw.payload
        if not isinstance(data, dict):
            raise UnknownError("Malformed Gemini response: expected a JSON object.")

        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise UnknownError("Missing candidates in upstream response.")

        candidate = candidates[0] if isinstance(candidates[0], dict) else {}
        content = candidate.get("content")
        if not isinstance(content, dict):
            raise UnknownError("Missing content in upstream response.")

        parts = content.get("parts")
        if not isinstance(parts, list) or not parts:
            raise UnknownError("Missing parts in upstream response.")

        texts: list[str] = []
        function_call = None
        for part in parts:
            if not isinstance(part, dict):
                continue
            if isinstance(part.get("text"), str):
                texts.append(part["text"])
            fc = part.get("functionCall")
            if function_call is None and isinstance(fc, dict) and isinstance(fc.get("name"), str):
                function_call = FunctionCall(name=fc["name"], arguments=json.dumps(fc.get("args") or {}))

        if not texts and function_call is None:
            raise UnknownError("Missing text in upstream response.")

        usage = data.get("usageMetadata") if isinstance(data.get("usageMetadata"), dict) else {}
        return CompletionResult(
            text="".join(texts),
            model=str(data.get("modelVersion") or ""),
            input_tokens=token_count(usage.get("promptTokenCount")),
            output_tokens=token_count(usage.get("candidatesTokenCount")),
            finish_reason=candidate.get("finishReason"),
            function_call=function_call,
        )

    def normalize_error(self, raw: Any) -> LLMError:
        if isinstance(raw, RawResponse):
            err = raw.payload.get("error") if isinstance(raw.payload, dict) else None
            status = raw.status_code
            message = None
            if isinstance(err, dict):
                message = err.get("message") if isinstance(err.get("message"), str) else None
                if _invalid_api_key(err):
                    status = 401
                elif raw.status_code >= 400 and err.get("status") in _RPC_STATUS:
                    status = _RPC_STATUS[err["status"]]
            if status != raw.status_code:
                log.debug("gemini_error_remapped", status_code=raw.status_code, mapped=status)
            return error_from_status(
                status,
                message,
                provider="Gemini",
                retry_after_seconds=raw.retry_after_seconds(),
            )
        return normalize_error(raw, provider="Gemini")
