from __future__ import annotations

import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import structlog

from .errors import RateLimitedError
from .metrics import admission_rejections_total

log = structlog.get_logger()

WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    reason: str | None = None
    retry_after_seconds: int | None = None
    scope: str | None = None


class AdmissionGate:
    """
    Client-side self-throttling before a call reaches the network.

    Tracks a sliding 60-second window of admitted calls plus a calendar-day
    counter in a fixed reference timezone. Advisory only: it does not
    coordinate across processes.
    """

    def __init__(
        self,
        max_per_minute: int | None = 10,
        max_per_day: int | None = 50,
        *,
        timezone: str = "Asia/Dubai",
        clock: Callable[[], float] | None = None,
    ):
        # A falsy limit disables that check only.
        self.max_per_minute = int(max_per_minute) if max_per_minute and max_per_minute > 0 else None
        self.max_per_day = int(max_per_day) if max_per_day and max_per_day > 0 else None
        self._tz = ZoneInfo(timezone)
        self._clock: Callable[[], float] = clock or time.time
        self._lock = threading.Lock()
        self._window: deque[float] = deque()
        self._daily_count = 0
        self._reset_date: date = self._today(self._clock())

    def _today(self, now: float) -> date:
        return datetime.fromtimestamp(now, tz=self._tz).date()

    def _seconds_until_tomorrow(self, now: float) -> int:
        current = datetime.fromtimestamp(now, tz=self._tz)
        midnight = datetime.combine(current.date() + timedelta(days=1), datetime.min.time(), tzinfo=self._tz)
        return max(1, math.ceil((midnight - current).total_seconds()))

    def _refresh(self, now: float) -> None:
        today = self._today(now)
        if today != self._reset_date:
            self._daily_count = 0
            self._reset_date = today
        while self._window and now - self._window[0] >= WINDOW_SECONDS:
            self._window.popleft()

    def _decide(self, now: float) -> AdmissionDecision:
        self._refresh(now)
        if self.max_per_day is not None and self._daily_count >= self.max_per_day:
            return AdmissionDecision(
                allowed=False,
                reason=f"Daily quota exceeded ({self.max_per_day} requests). Please try again tomorrow.",
                retry_after_seconds=self._seconds_until_tomorrow(now),
                scope="daily",
            )
        if self.max_per_minute is not None and len(self._window) >= self.max_per_minute:
            wait = WINDOW_SECONDS - (now - self._window[0])
            return AdmissionDecision(
                allowed=False,
                reason=(
                    f"Rate limit exceeded ({self.max_per_minute} requests per minute). "
                    "Please wait a moment."
                ),
                retry_after_seconds=max(1, math.ceil(wait)),
                scope="minute",
            )
        return AdmissionDecision(allowed=True)

    def check(self) -> AdmissionDecision:
        with self._lock:
            return self._decide(self._clock())

    def admit(self) -> None:
        with self._lock:
            now = self._clock()
            decision = self._decide(now)
            if decision.allowed:
                self._window.append(now)
                self._daily_count += 1
                return
        scope = decision.scope or "minute"
        admission_rejections_total.labels(scope=scope).inc()
        log.info("llm_admission_rejected", scope=scope, retry_after_seconds=decision.retry_after_seconds)
        raise RateLimitedError(
            decision.reason or "Rate limit exceeded",
            retry_after_seconds=decision.retry_after_seconds,
            local=True,
        )

    @property
    def daily_count(self) -> int:
        with self._lock:
            self._refresh(self._clock())
            return self._daily_count

    def snapshot(self) -> dict[str, int | str | None]:
        with self._lock:
            self._refresh(self._clock())
            return {
                "requests_last_minute": len(self._window),
                "requests_today": self._daily_count,
                "max_per_minute": self.max_per_minute,
                "max_per_day": self.max_per_day,
                "reset_date": self._reset_date.isoformat(),
            }
