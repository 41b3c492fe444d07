from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

import structlog

log = structlog.get_logger()

DEFAULT_CAPACITY = 100


@dataclass(frozen=True)
class TelemetryRecord:
    request_id: str
    model: str
    endpoint: str
    started_at: float
    ended_at: float
    latency_ms: int
    success: bool
    input_tokens: int = 0
    output_tokens: int = 0
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _log_sink(record: TelemetryRecord) -> None:
    log.info("llm_telemetry", **record.as_dict())


class TelemetryRecorder:
    """
    Bounded in-memory log of recent call outcomes (FIFO eviction).

    In production mode each record is also forwarded to `sink`.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        production: bool = False,
        sink: Callable[[TelemetryRecord], None] | None = None,
    ):
        self.capacity = max(1, int(capacity))
        self.production = production
        self._sink = sink or _log_sink
        self._records: deque[TelemetryRecord] = deque(maxlen=self.capacity)
        self._lock = threading.Lock()

    def record(self, record: TelemetryRecord) -> None:
        with self._lock:
            self._records.append(record)
        if self.production:
            try:
                self._sink(record)
            except Exception as e:
                log.warning("llm_telemetry_sink_failed", request_id=record.request_id, error=str(e))
        else:
            log.debug("llm_telemetry", request_id=record.request_id, success=record.success)

    def records(self) -> list[TelemetryRecord]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
