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

upstream_requests_total = Counter(
    "openrouter_upstream_requests_total",
    "Requests sent to the OpenRouter completion endpoint",
    labelnames=["status"],
)

upstream_request_latency_seconds = Histogram(
    "openrouter_upstream_request_latency_seconds",
    "OpenRouter completion request latency",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60],
)

call_attempts_total = Counter(
    "structured_call_attempts_total",
    "Structured/JSON-mode attempts by outcome",
    labelnames=["mode", "outcome"],
)

calls_total = Counter(
    "structured_calls_total",
    "Completed orchestrator calls",
    labelnames=["mode", "status"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
