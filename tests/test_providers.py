import json

import httpx
import pytest

from dubai_analysis.client import ClientOptions, LLMClient
from dubai_analysis.contracts import CompletionRequest, RawResponse
from dubai_analysis.errors import AuthError, InvalidRequestError, RateLimitedError, UnknownError
from dubai_analysis.providers.base import ApiCredentials, static_key
from dubai_analysis.providers.gemini_official import GeminiAdapter
from dubai_analysis.providers.openai_chat import OpenAIChatAdapter


def _mock_transport(handler):
    return httpx.MockTransport(handler)


def _request(model: str, **kwargs) -> CompletionRequest:
    return CompletionRequest.from_prompt(model, "hi", system="You are terse.", **kwargs)


async def _no_sleep(_: float) -> None:
    return None


@pytest.mark.asyncio
async def test_openai_send_and_parse():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test-key"
        assert request.headers["openai-organization"] == "org-1"
        body = json.loads(request.content.decode("utf-8"))
        assert body["model"] == "gpt-4o-mini"
        assert body["messages"][0] == {"role": "system", "content": "You are terse."}
        assert body["messages"][1] == {"role": "user", "content": "hi"}
        assert body["temperature"] == 0.2
        assert "functions" not in body
        return httpx.Response(
            200,
            json={
                "model": "gpt-4o-mini-2024-07-18",
                "choices": [{"message": {"role": "assistant", "content": "hello"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 11, "completion_tokens": 2},
            },
        )

    adapter = OpenAIChatAdapter(
        static_key("sk-test-key", "org-1"),
        client=httpx.AsyncClient(transport=_mock_transport(handler)),
        base_url="https://example.test/v1",
    )
    try:
        raw = await adapter.send(_request("gpt-4o-mini", temperature=0.2))
        result = adapter.parse(raw)
    finally:
        await adapter.close()

    assert result.text == "hello"
    assert result.model == "gpt-4o-mini-2024-07-18"
    assert (result.input_tokens, result.output_tokens) == (11, 2)
    assert result.finish_reason == "stop"


@pytest.mark.asyncio
async def test_openai_function_call_is_parsed():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        assert body["functions"][0]["name"] == "format_table"
        return httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "message": {
                            "content": None,
                            "function_call": {"name": "format_table", "arguments": '{"data": []}'},
                        }
                    }
                ]
            },
        )

    adapter = OpenAIChatAdapter(static_key("sk-x"), client=httpx.AsyncClient(transport=_mock_transport(handler)))
    try:
        raw = await adapter.send(_request("gpt-4o", functions=({"name": "format_table", "parameters": {}},)))
        result = adapter.parse(raw)
    finally:
        await adapter.close()

    assert result.text == ""
    assert result.function_call.name == "format_table"
    assert json.loads(result.function_call.arguments) == {"data": []}


@pytest.mark.asyncio
async def test_openai_missing_key_raises_auth_error_without_network():
    calls = {"n": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200)

    adapter = OpenAIChatAdapter(lambda: None, client=httpx.AsyncClient(transport=_mock_transport(handler)))
    try:
        with pytest.raises(AuthError):
            await adapter.send(_request("gpt-4o-mini"))
    finally:
        await adapter.close()
    assert calls["n"] == 0


@pytest.mark.asyncio
async def test_openai_key_source_is_read_per_call():
    seen = []
    creds = {"value": ApiCredentials("sk-first")}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["authorization"])
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    adapter = OpenAIChatAdapter(lambda: creds["value"], client=httpx.AsyncClient(transport=_mock_transport(handler)))
    try:
        await adapter.send(_request("gpt-4o-mini"))
        creds["value"] = ApiCredentials("sk-second")
        await adapter.send(_request("gpt-4o-mini"))
    finally:
        await adapter.close()
    assert seen == ["Bearer sk-first", "Bearer sk-second"]


def test_openai_malformed_payload_is_unknown_error():
    adapter = OpenAIChatAdapter(static_key("sk-x"), client=httpx.AsyncClient())
    with pytest.raises(UnknownError):
        adapter.parse(RawResponse(200, {"choices": []}))
    with pytest.raises(UnknownError):
        adapter.parse(RawResponse(200, "not json"))


def test_openai_error_payload_normalization():
    adapter = OpenAIChatAdapter(static_key("sk-x"), client=httpx.AsyncClient())
    err = adapter.normalize_error(
        RawResponse(400, {"error": {"message": "Invalid 'messages'", "code": "invalid_value"}})
    )
    assert isinstance(err, InvalidRequestError)
    assert err.message == "Bad request: Invalid 'messages'"


@pytest.mark.asyncio
async def test_openai_client_retries_429_then_succeeds_over_http():
    calls = {"n": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(429, headers={"retry-after": "0"}, json={"error": {"message": "rl"}})
        return httpx.Response(200, json={"choices": [{"message": {"content": "finally"}}]})

    adapter = OpenAIChatAdapter(static_key("sk-x"), client=httpx.AsyncClient(transport=_mock_transport(handler)))
    client = LLMClient(adapter, options=ClientOptions(max_retries=3), sleeper=_no_sleep)
    try:
        result = await client.complete(_request("gpt-4o-mini"))
    finally:
        await client.close()

    assert result.text == "finally"
    assert result.retries == 2
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_gemini_send_maps_roles_and_config():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/models/gemini-1.5-flash:generateContent")
        assert request.url.params.get("key") == "g-key"
        body = json.loads(request.content.decode("utf-8"))
        assert body["systemInstruction"] == {"parts": [{"text": "You are terse."}]}
        assert body["contents"] == [{"role": "user", "parts": [{"text": "hi"}]}]
        assert body["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 64}
        assert body["tools"][0]["functionDeclarations"][0]["name"] == "generate_chart"
        return httpx.Response(
            200,
            json={
                "candidates": [{"content": {"parts": [{"text": "hel"}, {"text": "lo"}]}, "finishReason": "STOP"}],
                "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2},
                "modelVersion": "gemini-1.5-flash-002",
            },
        )

    adapter = GeminiAdapter(
        static_key("g-key"),
        client=httpx.AsyncClient(transport=_mock_transport(handler)),
        base_url="https://example.test/v1beta",
    )
    try:
        raw = await adapter.send(
            _request(
                "gemini-1.5-flash",
                temperature=0.3,
                max_tokens=64,
                functions=({"name": "generate_chart", "parameters": {}},),
            )
        )
        result = adapter.parse(raw)
    finally:
        await adapter.close()

    assert result.text == "hello"
    assert result.model == "gemini-1.5-flash-002"
    assert (result.input_tokens, result.output_tokens) == (4, 2)
    assert result.finish_reason == "STOP"


def test_gemini_function_call_part_is_parsed():
    adapter = GeminiAdapter(static_key("g"), client=httpx.AsyncClient())
    result = adapter.parse(
        RawResponse(
            200,
            {
                "candidates": [
                    {"content": {"parts": [{"functionCall": {"name": "format_table", "args": {"data": [{"a": 1}]}}}]}}
                ]
            },
        )
    )
    assert result.text == ""
    assert result.function_call.name == "format_table"
    assert json.loads(result.function_call.arguments) == {"data": [{"a": 1}]}


def test_gemini_missing_candidates_is_unknown_error():
    adapter = GeminiAdapter(static_key("g"), client=httpx.AsyncClient())
    with pytest.raises(UnknownError):
        adapter.parse(RawResponse(200, {"candidates": []}))


def test_gemini_invalid_api_key_maps_to_auth_error():
    adapter = GeminiAdapter(static_key("g"), client=httpx.AsyncClient())
    err = adapter.normalize_error(
        RawResponse(
            400,
            {
                "error": {
                    "code": 400,
                    "message": "API key not valid. Please pass a valid API key.",
                    "status": "INVALID_ARGUMENT",
                    "details": [{"reason": "API_KEY_INVALID"}],
                }
            },
        )
    )
    assert isinstance(err, AuthError)


def test_gemini_resource_exhausted_maps_to_rate_limited():
    adapter = GeminiAdapter(static_key("g"), client=httpx.AsyncClient())
    err = adapter.normalize_error(
        RawResponse(429, {"error": {"message": "quota", "status": "RESOURCE_EXHAUSTED"}}, headers={"retry-after": "9"})
    )
    assert isinstance(err, RateLimitedError)
    assert err.retry_after_seconds == 9
    assert err.retryable is True


@pytest.mark.asyncio
async def test_gemini_missing_key_raises_auth_error():
    adapter = GeminiAdapter(static_key(None), client=httpx.AsyncClient())
    try:
        with pytest.raises(AuthError):
            await adapter.send(_request("gemini-1.5-pro"))
    finally:
        await adapter.close()


@pytest.mark.parametrize("prompt_tokens,completion_tokens", [("n/a", None), ({"total": 3}, -4), (float("nan"), True)])
def test_openai_odd_usage_counters_count_as_zero(prompt_tokens, completion_tokens):
    adapter = OpenAIChatAdapter(static_key("sk-x"), client=httpx.AsyncClient())
    result = adapter.parse(
        RawResponse(
            200,
            {
                "choices": [{"message": {"role": "assistant", "content": "fine"}}],
                "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
            },
        )
    )
    assert result.text == "fine"
    assert (result.input_tokens, result.output_tokens) == (0, 0)


def test_gemini_string_usage_counters_are_tolerated():
    adapter = GeminiAdapter(static_key("g"), client=httpx.AsyncClient())
    result = adapter.parse(
        RawResponse(
            200,
            {
                "candidates": [{"content": {"parts": [{"text": "fine"}]}}],
                "usageMetadata": {"promptTokenCount": "12", "candidatesTokenCount": "lots"},
            },
        )
    )
    assert (result.input_tokens, result.output_tokens) == (12, 0)
