from __future__ import annotations

import asyncio
import contextlib
import random
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar

import structlog

from .cancellation import CancellationToken
from .contracts import VALID_ROLES, CompletionRequest, CompletionResult
from .errors import AbortedError, InvalidRequestError, LLMError, RateLimitedError, UnknownError
from .metrics import llm_request_latency_seconds, llm_requests_total, llm_retries_total, llm_tokens_total
from .providers.base import ProviderAdapter
from .rate_limiter import AdmissionGate
from .telemetry import TelemetryRecord, TelemetryRecorder

log = structlog.get_logger()

T = TypeVar("T")

JITTER_RATIO = 0.3


def compute_backoff(
    attempt: int,
    *,
    initial: float,
    maximum: float,
    rng: Callable[[], float] = random.random,
) -> float:
    # attempt: 1-based retry number
    base = float(min(maximum, initial * (2 ** max(0, attempt - 1))))
    return base + rng() * JITTER_RATIO * base


@dataclass(frozen=True)
class ClientOptions:
    max_retries: int = 3
    backoff_initial_seconds: float = 1.0
    backoff_max_seconds: float = 60.0
    timeout_seconds: float = 60.0
    telemetry_enabled: bool = True


@dataclass
class ClientState:
    """Mutable state shared by every call made through one client."""

    telemetry: TelemetryRecorder = field(default_factory=TelemetryRecorder)
    gate: AdmissionGate | None = None

    @classmethod
    def create(
        cls,
        *,
        max_requests_per_minute: int | None = 10,
        max_requests_per_day: int | None = 50,
        timezone: str = "Asia/Dubai",
        telemetry_capacity: int = 100,
        production: bool = False,
        sink: Callable[[TelemetryRecord], None] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> "ClientState":
        gate = None
        if max_requests_per_minute or max_requests_per_day:
            gate = AdmissionGate(
                max_requests_per_minute,
                max_requests_per_day,
                timezone=timezone,
                clock=clock,
            )
        return cls(
            telemetry=TelemetryRecorder(telemetry_capacity, production=production, sink=sink),
            gate=gate,
        )


@dataclass
class RetryState:
    started_at: float
    attempt: int = 0
    last_error: LLMError | None = None


class LLMClient:
    """
    Resilient wrapper around a provider adapter.

    Adds validation, local admission control, bounded retries with
    exponential backoff and jitter, a wall-clock deadline, caller
    cancellation, error normalization and per-call telemetry.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        *,
        options: ClientOptions | None = None,
        state: ClientState | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
        rng: Callable[[], float] | None = None,
    ):
        self.adapter = adapter
        self.options = options or ClientOptions()
        self.state = state or ClientState()
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._clock: Callable[[], float] = clock or time.monotonic
        self._rng: Callable[[], float] = rng or random.random

    @property
    def provider(self) -> str:
        return self.adapter.name

    async def close(self) -> None:
        await self.adapter.close()

    def telemetry(self) -> list[TelemetryRecord]:
        return self.state.telemetry.records()

    def _validate(self, request: CompletionRequest) -> None:
        if not request.model or not request.model.strip():
            raise InvalidRequestError("Model identifier is required.")
        if not request.messages:
            raise InvalidRequestError("At least one message is required.")
        for msg in request.messages:
            if msg.role not in VALID_ROLES:
                raise InvalidRequestError(f"Unsupported message role: {msg.role!r}")
            if not isinstance(msg.content, str):
                raise InvalidRequestError("Message content must be a string.")

    def backoff_for(self, error: LLMError, attempt: int) -> float:
        delay = compute_backoff(
            attempt,
            initial=self.options.backoff_initial_seconds,
            maximum=self.options.backoff_max_seconds,
            rng=self._rng,
        )
        if isinstance(error, RateLimitedError) and error.retry_after_seconds:
            ceiling = self.options.backoff_max_seconds * (1 + JITTER_RATIO)
            delay = min(max(delay, float(error.retry_after_seconds)), ceiling)
        return delay

    async def _guarded(
        self,
        aw: Awaitable[T],
        cancel: CancellationToken | None,
        deadline: float,
    ) -> T:
        if cancel is not None and cancel.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise AbortedError(f"Request aborted: {cancel.reason}")
        remaining = deadline - self._clock()
        if remaining <= 0:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise AbortedError(f"Request aborted: timeout after {self.options.timeout_seconds:g}s")

        task: asyncio.Future[T] = asyncio.ensure_future(aw)
        waiters: set[asyncio.Future[Any]] = {task}
        cancel_waiter: asyncio.Future[Any] | None = None
        if cancel is not None:
            cancel_waiter = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_waiter)
        try:
            done, _ = await asyncio.wait(waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if task in done:
            return task.result()
        if cancel is not None and cancel.cancelled:
            raise AbortedError(f"Request aborted: {cancel.reason}")
        raise AbortedError(f"Request aborted: timeout after {self.options.timeout_seconds:g}s")

    def _finish(
        self,
        *,
        request_id: str,
        request: CompletionRequest,
        started_wall: float,
        started: float,
        result: CompletionResult | None = None,
        error: str | None = None,
    ) -> None:
        elapsed = max(0.0, self._clock() - started)
        status = "success" if result is not None else "error"
        llm_requests_total.labels(provider=self.provider, status=status).inc()
        llm_request_latency_seconds.labels(provider=self.provider).observe(elapsed)
        if result is not None:
            llm_tokens_total.labels(provider=self.provider, direction="input").inc(result.input_tokens)
            llm_tokens_total.labels(provider=self.provider, direction="output").inc(result.output_tokens)

        if not self.options.telemetry_enabled:
            return
        self.state.telemetry.record(
            TelemetryRecord(
                request_id=request_id,
                model=request.model,
                endpoint=request.endpoint,
                started_at=started_wall,
                ended_at=started_wall + elapsed,
                latency_ms=int(elapsed * 1000),
                success=result is not None,
                input_tokens=result.input_tokens if result else 0,
                output_tokens=result.output_tokens if result else 0,
                error=error,
            )
        )

    async def _attempt(
        self,
        request: CompletionRequest,
        cancel: CancellationToken | None,
        deadline: float,
    ) -> CompletionResult:
        try:
            raw = await self._guarded(self.adapter.send(request), cancel, deadline)
        except LLMError:
            raise
        except Exception as e:
            raise self.adapter.normalize_error(e) from e
        if not raw.is_success:
            raise self.adapter.normalize_error(raw)
        try:
            return self.adapter.parse(raw)
        except LLMError:
            raise
        except Exception as e:
            raise UnknownError(f"Malformed {self.provider} response: {e}") from e

    async def complete(
        self,
        request: CompletionRequest,
        cancel: CancellationToken | None = None,
    ) -> CompletionResult:
        self._validate(request)
        if cancel is not None and cancel.cancelled:
            raise AbortedError(f"Request aborted: {cancel.reason}")
        if self.state.gate is not None:
            self.state.gate.admit()

        request_id = f"req_{uuid.uuid4().hex[:16]}"
        started_wall = time.time()
        started = self._clock()
        deadline = started + self.options.timeout_seconds
        retry = RetryState(started_at=started)
        bound = log.bind(request_id=request_id, provider=self.provider, model=request.model, endpoint=request.endpoint)
        finish = dict(request_id=request_id, request=request, started_wall=started_wall, started=started)

        while True:
            try:
                result = await self._attempt(request, cancel, deadline)
            except LLMError as e:
                retry.last_error = e
            else:
                result = replace(
                    result,
                    model=result.model or request.model,
                    retries=retry.attempt,
                    latency_seconds=max(0.0, self._clock() - started),
                )
                self._finish(**finish, result=result)
                bound.debug("llm_call_ok", retries=retry.attempt, output_tokens=result.output_tokens)
                return result

            err = retry.last_error
            if not err.retryable:
                bound.warning("llm_call_failed", kind=err.kind.value, error=err.message, retries=retry.attempt)
                self._finish(**finish, error=err.message)
                raise err

            retry.attempt += 1
            if retry.attempt > self.options.max_retries:
                bound.warning(
                    "llm_retries_exhausted",
                    kind=err.kind.value,
                    error=err.message,
                    max_retries=self.options.max_retries,
                )
                self._finish(
                    **finish,
                    error=f"Failed after {self.options.max_retries} retries. Last error: {err.message}",
                )
                raise err

            delay = self.backoff_for(err, retry.attempt)
            llm_retries_total.labels(provider=self.provider, kind=err.kind.value).inc()
            bound.info(
                "llm_retry",
                attempt=retry.attempt,
                max_retries=self.options.max_retries,
                delay_seconds=round(delay, 3),
                kind=err.kind.value,
            )
            try:
                await self._guarded(self._sleep(delay), cancel, deadline)
            except AbortedError as abort:
                bound.warning("llm_call_failed", kind=abort.kind.value, error=abort.message, retries=retry.attempt)
                self._finish(**finish, error=abort.message)
                raise
