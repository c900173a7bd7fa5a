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
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["path"],
)

server_errors_total = Counter(
    "server_errors_total",
    "Total errors returned by server",
    labelnames=["type"],
)

backend_attempts_total = Counter(
    "backend_attempts_total",
    "Inference backend attempts per candidate model",
    labelnames=["model", "outcome"],
)

backend_attempt_latency_seconds = Histogram(
    "backend_attempt_latency_seconds",
    "Inference backend attempt latency",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 20, 30, 60],
    labelnames=["model"],
)

completions_total = Counter(
    "completions_total",
    "Completion requests by final result",
    labelnames=["status", "fallback"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
