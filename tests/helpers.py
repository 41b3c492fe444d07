from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from dubai_analysis.analysis import AnalysisService
from dubai_analysis.client import ClientOptions, ClientState, LLMClient
from dubai_analysis.contracts import CompletionResult, FunctionCall, RawResponse
from dubai_analysis.normalizer import normalize_error


def ok(text: str = "ok", **extra: Any) -> RawResponse:
    return RawResponse(200, {"text": text, **extra})


def fail(status: int, message: str = "boom", retry_after: int | None = None) -> RawResponse:
    headers = {"retry-after": str(retry_after)} if retry_after is not None else {}
    return RawResponse(status, {"error": {"message": message}}, headers=headers)


class ScriptedAdapter:
    """Plays back canned responses; the last step repeats once the script runs out."""

    def __init__(self, *steps: Any, name: str = "openai"):
        self.name = name
        self.steps = list(steps) or [ok()]
        self.requests: list[Any] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def send(self, request):
        self.requests.append(request)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return await step(request)
        return step

    def parse(self, raw: RawResponse) -> CompletionResult:
        data = raw.payload or {}
        fc = data.get("function_call")
        return CompletionResult(
            text=data.get("text", ""),
            model=data.get("model", "scripted-model"),
            input_tokens=data.get("input_tokens", 3),
            output_tokens=data.get("output_tokens", 5),
            function_call=FunctionCall(**fc) if fc else None,
        )

    def normalize_error(self, raw: Any):
        return normalize_error(raw, provider="Scripted")

    async def close(self) -> None:
        self.closed = True


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_client(
    adapter: ScriptedAdapter,
    *,
    state: ClientState | None = None,
    sleeper: Callable[[float], Awaitable[None]] | None = None,
    **options: Any,
) -> LLMClient:
    return LLMClient(
        adapter,
        options=ClientOptions(**options),
        state=state or ClientState(),
        sleeper=sleeper or SleepRecorder(),
        rng=lambda: 0.0,
    )


def make_service(
    openai: ScriptedAdapter | None = None,
    gemini: ScriptedAdapter | None = None,
    *,
    max_retries: int = 3,
    max_requests_per_minute: int = 100,
    max_requests_per_day: int = 1000,
) -> AnalysisService:
    state = ClientState.create(
        max_requests_per_minute=max_requests_per_minute,
        max_requests_per_day=max_requests_per_day,
    )
    clients = {}
    if openai is not None:
        clients["openai"] = make_client(openai, state=state, max_retries=max_retries)
    if gemini is not None:
        clients["gemini"] = make_client(gemini, state=state, max_retries=max_retries)
    return AnalysisService(clients, state=state)
