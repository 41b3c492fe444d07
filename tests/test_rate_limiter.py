from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from dubai_analysis.errors import RateLimitedError
from dubai_analysis.rate_limiter import AdmissionGate

DUBAI = ZoneInfo("Asia/Dubai")


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _at(*args, tz=DUBAI) -> float:
    return datetime(*args, tzinfo=tz).timestamp()


def test_minute_window_rejects_then_readmits_after_61_seconds():
    clock = FakeClock(_at(2024, 3, 10, 12, 0, 0))
    gate = AdmissionGate(max_per_minute=2, max_per_day=100, clock=clock)

    gate.admit()
    gate.admit()
    with pytest.raises(RateLimitedError) as exc:
        gate.admit()
    assert exc.value.local is True
    assert exc.value.message == "Rate limit exceeded (2 requests per minute). Please wait a moment."
    assert exc.value.retry_after_seconds == 60

    clock.advance(61)
    gate.admit()
    assert gate.daily_count == 3


def test_minute_window_retry_after_counts_down():
    clock = FakeClock(_at(2024, 3, 10, 12, 0, 0))
    gate = AdmissionGate(max_per_minute=1, max_per_day=100, clock=clock)
    gate.admit()
    clock.advance(10)
    decision = gate.check()
    assert decision.allowed is False
    assert decision.scope == "minute"
    assert decision.retry_after_seconds == 50


def test_daily_quota_resets_on_next_dubai_day():
    clock = FakeClock(_at(2024, 3, 10, 22, 0, 0))
    gate = AdmissionGate(max_per_minute=100, max_per_day=2, clock=clock)

    gate.admit()
    gate.admit()
    with pytest.raises(RateLimitedError) as exc:
        gate.admit()
    assert exc.value.message == "Daily quota exceeded (2 requests). Please try again tomorrow."
    assert exc.value.retry_after_seconds == 2 * 3600

    clock.now = _at(2024, 3, 11, 0, 0, 1)
    gate.admit()
    assert gate.daily_count == 1


def test_daily_reset_follows_dubai_midnight_not_utc():
    # 19:59:30 UTC is 23:59:30 in Dubai (UTC+4)
    clock = FakeClock(_at(2024, 3, 10, 19, 59, 30, tz=timezone.utc))
    gate = AdmissionGate(max_per_minute=100, max_per_day=1, clock=clock)
    gate.admit()
    assert gate.check().allowed is False

    clock.advance(61)
    assert gate.check().allowed is True
    assert gate.snapshot()["reset_date"] == "2024-03-11"


def test_check_does_not_consume_quota():
    clock = FakeClock(_at(2024, 3, 10, 12, 0, 0))
    gate = AdmissionGate(max_per_minute=1, max_per_day=1, clock=clock)
    for _ in range(3):
        assert gate.check().allowed is True
    assert gate.daily_count == 0


def test_daily_limit_takes_precedence_over_minute_limit():
    clock = FakeClock(_at(2024, 3, 10, 12, 0, 0))
    gate = AdmissionGate(max_per_minute=1, max_per_day=1, clock=clock)
    gate.admit()
    decision = gate.check()
    assert decision.scope == "daily"


def test_snapshot_reports_counts():
    clock = FakeClock(_at(2024, 3, 10, 12, 0, 0))
    gate = AdmissionGate(max_per_minute=5, max_per_day=50, clock=clock)
    gate.admit()
    snap = gate.snapshot()
    assert snap["requests_last_minute"] == 1
    assert snap["requests_today"] == 1
    assert snap["max_per_day"] == 50


def test_disabled_minute_limit_keeps_daily_quota():
    clock = FakeClock(_at(2024, 3, 10, 12, 0, 0))
    gate = AdmissionGate(max_per_minute=0, max_per_day=2, clock=clock)
    gate.admit()
    gate.admit()
    with pytest.raises(RateLimitedError) as exc:
        gate.admit()
    assert exc.value.message == "Daily quota exceeded (2 requests). Please try again tomorrow."
    assert gate.snapshot()["max_per_minute"] is None


def test_disabled_daily_limit_keeps_minute_window():
    clock = FakeClock(_at(2024, 3, 10, 12, 0, 0))
    gate = AdmissionGate(max_per_minute=1, max_per_day=None, clock=clock)
    gate.admit()
    assert gate.check().scope == "minute"
