import asyncio

import httpx
import pytest

from helpers import ScriptedAdapter, SleepRecorder, fail, make_client, ok

from dubai_analysis.cancellation import CancellationToken
from dubai_analysis.client import ClientState, compute_backoff
from dubai_analysis.contracts import CompletionRequest, Message
from dubai_analysis.errors import (
    AbortedError,
    AuthError,
    InvalidRequestError,
    NetworkError,
    RateLimitedError,
    ServiceUnavailableError,
    UnknownError,
)
from dubai_analysis.rate_limiter import AdmissionGate


def _request(model: str = "gpt-4o-mini", prompt: str = "hi") -> CompletionRequest:
    return CompletionRequest.from_prompt(model, prompt, system="be brief")


def test_compute_backoff_is_exponential_with_bounded_jitter():
    assert compute_backoff(1, initial=1.0, maximum=60.0, rng=lambda: 0.0) == 1.0
    assert compute_backoff(3, initial=1.0, maximum=60.0, rng=lambda: 0.0) == 4.0
    assert compute_backoff(3, initial=1.0, maximum=60.0, rng=lambda: 1.0) == pytest.approx(5.2)
    # capped before jitter is applied
    assert compute_backoff(10, initial=1.0, maximum=60.0, rng=lambda: 0.0) == 60.0
    assert compute_backoff(10, initial=1.0, maximum=60.0, rng=lambda: 1.0) == pytest.approx(78.0)


def test_compute_backoff_stays_within_bounds_for_random_jitter():
    for attempt in range(1, 12):
        base = min(60.0, 2.0 ** (attempt - 1))
        delay = compute_backoff(attempt, initial=1.0, maximum=60.0)
        assert base <= delay <= base * 1.3


@pytest.mark.asyncio
async def test_retries_rate_limit_twice_then_succeeds():
    adapter = ScriptedAdapter(fail(429), fail(429), ok("done"))
    sleeper = SleepRecorder()
    client = make_client(adapter, sleeper=sleeper, max_retries=3)

    result = await client.complete(_request())

    assert result.text == "done"
    assert result.retries == 2
    assert adapter.calls == 3
    assert sleeper.delays == [1.0, 2.0]
    records = client.telemetry()
    assert len(records) == 1
    assert records[0].success is True
    assert records[0].output_tokens == 5


@pytest.mark.asyncio
async def test_auth_error_is_not_retried():
    adapter = ScriptedAdapter(fail(401))
    sleeper = SleepRecorder()
    client = make_client(adapter, sleeper=sleeper, max_retries=3)

    with pytest.raises(AuthError):
        await client.complete(_request())

    assert adapter.calls == 1
    assert sleeper.delays == []
    records = client.telemetry()
    assert len(records) == 1
    assert records[0].success is False


@pytest.mark.asyncio
async def test_empty_messages_fail_validation_without_network():
    adapter = ScriptedAdapter(ok())
    client = make_client(adapter)

    with pytest.raises(InvalidRequestError):
        await client.complete(CompletionRequest(model="gpt-4o-mini", messages=()))

    assert adapter.calls == 0
    assert client.telemetry() == []


@pytest.mark.asyncio
async def test_unknown_role_and_missing_model_are_invalid():
    client = make_client(ScriptedAdapter(ok()))
    with pytest.raises(InvalidRequestError):
        await client.complete(CompletionRequest(model="m", messages=(Message("tool", "x"),)))
    with pytest.raises(InvalidRequestError):
        await client.complete(CompletionRequest(model=" ", messages=(Message("user", "x"),)))


@pytest.mark.asyncio
async def test_gives_up_after_max_retries_plus_one_attempts():
    adapter = ScriptedAdapter(fail(503))
    sleeper = SleepRecorder()
    client = make_client(adapter, sleeper=sleeper, max_retries=2)

    with pytest.raises(ServiceUnavailableError):
        await client.complete(_request())

    assert adapter.calls == 3
    assert len(sleeper.delays) == 2
    records = client.telemetry()
    assert len(records) == 1
    assert records[0].error.startswith("Failed after 2 retries. Last error: Service error")


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt():
    adapter = ScriptedAdapter(fail(500))
    client = make_client(adapter, max_retries=0)
    with pytest.raises(ServiceUnavailableError):
        await client.complete(_request())
    assert adapter.calls == 1


@pytest.mark.asyncio
async def test_retry_after_header_lengthens_backoff():
    adapter = ScriptedAdapter(fail(429, retry_after=5), ok())
    sleeper = SleepRecorder()
    client = make_client(adapter, sleeper=sleeper)

    await client.complete(_request())

    assert sleeper.delays == [5.0]


@pytest.mark.asyncio
async def test_retry_after_is_capped_at_max_backoff_with_jitter():
    adapter = ScriptedAdapter(fail(429, retry_after=3600), ok())
    sleeper = SleepRecorder()
    client = make_client(adapter, sleeper=sleeper, backoff_max_seconds=10.0)

    await client.complete(_request())

    assert sleeper.delays == [pytest.approx(13.0)]


@pytest.mark.asyncio
async def test_transport_errors_are_normalized_and_retried():
    adapter = ScriptedAdapter(httpx.ConnectError("refused"), ok("back"))
    client = make_client(adapter)

    result = await client.complete(_request())

    assert result.text == "back"
    assert result.retries == 1


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_unknown_error():
    adapter = ScriptedAdapter(RuntimeError("kaboom"))
    client = make_client(adapter)

    with pytest.raises(UnknownError) as exc:
        await client.complete(_request())

    assert exc.value.message == "kaboom"
    assert adapter.calls == 1


@pytest.mark.asyncio
async def test_network_error_exhaustion_raises_network_error():
    adapter = ScriptedAdapter(httpx.ReadTimeout("slow"))
    client = make_client(adapter, max_retries=1)
    with pytest.raises(NetworkError):
        await client.complete(_request())
    assert adapter.calls == 2


@pytest.mark.asyncio
async def test_pre_cancelled_token_aborts_before_any_attempt():
    gate = AdmissionGate(5, 5)
    adapter = ScriptedAdapter(ok())
    client = make_client(adapter, state=ClientState(gate=gate))
    token = CancellationToken()
    token.cancel()

    with pytest.raises(AbortedError):
        await client.complete(_request(), token)

    assert adapter.calls == 0
    assert gate.daily_count == 0


@pytest.mark.asyncio
async def test_cancel_during_backoff_sleep_aborts():
    adapter = ScriptedAdapter(fail(503))
    client = make_client(adapter, sleeper=asyncio.sleep, max_retries=3, backoff_initial_seconds=10.0)
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.02, token.cancel, "user left")

    with pytest.raises(AbortedError) as exc:
        await client.complete(_request(), token)

    assert "user left" in exc.value.message
    assert adapter.calls == 1
    records = client.telemetry()
    assert records[-1].success is False


@pytest.mark.asyncio
async def test_cancel_during_in_flight_request_aborts():
    started = asyncio.Event()

    async def hang(_request):
        started.set()
        await asyncio.sleep(10)

    adapter = ScriptedAdapter(hang)
    client = make_client(adapter)
    token = CancellationToken()

    task = asyncio.create_task(client.complete(_request(), token))
    await started.wait()
    token.cancel()

    with pytest.raises(AbortedError):
        await task


@pytest.mark.asyncio
async def test_wall_clock_timeout_aborts_hanging_request():
    async def hang(_request):
        await asyncio.sleep(10)

    adapter = ScriptedAdapter(hang)
    client = make_client(adapter, timeout_seconds=0.05)

    with pytest.raises(AbortedError) as exc:
        await client.complete(_request())

    assert "timeout" in exc.value.message
    assert adapter.calls == 1


@pytest.mark.asyncio
async def test_admission_gate_rejects_locally_without_retry():
    adapter = ScriptedAdapter(ok())
    sleeper = SleepRecorder()
    client = make_client(
        adapter,
        state=ClientState(gate=AdmissionGate(max_per_minute=1, max_per_day=10)),
        sleeper=sleeper,
    )

    await client.complete(_request())
    with pytest.raises(RateLimitedError) as exc:
        await client.complete(_request())

    assert exc.value.local is True
    assert exc.value.retryable is False
    assert "per minute" in exc.value.message
    assert adapter.calls == 1
    assert sleeper.delays == []
    assert len(client.telemetry()) == 1


@pytest.mark.asyncio
async def test_telemetry_disabled_records_nothing():
    client = make_client(ScriptedAdapter(ok()), telemetry_enabled=False)
    await client.complete(_request())
    assert client.telemetry() == []


@pytest.mark.asyncio
async def test_result_carries_model_fallback_and_latency():
    adapter = ScriptedAdapter(ok("x", model=""))
    client = make_client(adapter)
    result = await client.complete(_request(model="gpt-4o"))
    assert result.model == "gpt-4o"
    assert result.latency_seconds >= 0.0


class _BrokenParser(ScriptedAdapter):
    def parse(self, raw):
        raise KeyError("choices")


@pytest.mark.asyncio
async def test_parse_failure_becomes_unknown_error_and_is_recorded():
    adapter = _BrokenParser(ok())
    client = make_client(adapter)

    with pytest.raises(UnknownError) as exc:
        await client.complete(_request())

    assert exc.value.message.startswith("Malformed")
    assert adapter.calls == 1
    records = client.telemetry()
    assert len(records) == 1
    assert records[0].success is False


@pytest.mark.asyncio
async def test_failing_telemetry_sink_does_not_fail_the_call():
    def sink(_record):
        raise OSError("collector down")

    state = ClientState.create(production=True, sink=sink)
    client = make_client(ScriptedAdapter(ok("still here")), state=state)

    result = await client.complete(_request())

    assert result.text == "still here"
    assert len(client.telemetry()) == 1


def test_zero_minute_limit_still_builds_daily_gate():
    state = ClientState.create(max_requests_per_minute=0, max_requests_per_day=1)
    assert isinstance(state.gate, AdmissionGate)
    assert state.gate.max_per_minute is None
    assert state.gate.max_per_day == 1
