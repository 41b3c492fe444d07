from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

server_requests_total = Counter(
    "server_requests_total",
    "Total HTTP requests handled by server",
    labelnames=["path", "status"],
)

server_request_latency_seconds = Histogram(
    "server_request_latency_seconds",
    "HTTP request latency (seconds)",
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120, 300],
    labelnames=["path"],
)

server_errors_total = Counter(
    "server_errors_total",
    "Total errors returned by server",
    labelnames=["type"],
)

llm_requests_total = Counter(
    "llm_requests_total",
    "Terminal outcomes of LLM completion calls",
    labelnames=["provider", "status"],
)

llm_request_latency_seconds = Histogram(
    "llm_request_latency_seconds",
    "LLM completion latency including retries",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["provider"],
)

llm_retries_total = Counter(
    "llm_retries_total",
    "LLM completion retries by error kind",
    labelnames=["provider", "kind"],
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Tokens reported by the provider",
    labelnames=["provider", "direction"],
)

admission_rejections_total = Counter(
    "llm_admission_rejections_total",
    "Calls rejected by the local admission gate",
    labelnames=["scope"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
