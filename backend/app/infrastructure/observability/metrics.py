from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

REQUESTS_TOTAL = Counter(
    "total_requests",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
REQUEST_LATENCY_SECONDS = Histogram(
    "request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path"),
)
DB_QUERY_DURATION_SECONDS = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    labelnames=("operation",),
)
REDIS_LATENCY_SECONDS = Histogram(
    "redis_latency_seconds",
    "Redis command latency in seconds",
    labelnames=("operation",),
)
AUTH_DECISIONS_TOTAL = Counter(
    "auth_decisions_total",
    "Session authentication decisions by outcome",
    labelnames=("outcome",),
)
LEDGER_LOOKUP_SECONDS = Histogram(
    "ledger_lookup_seconds",
    "Revocation ledger lookup latency in seconds",
)
LEDGER_DEGRADED_TOTAL = Counter(
    "ledger_degraded_total",
    "Ledger and permission store operations that failed closed or failed fatally",
    labelnames=("operation",),
)
REVOCATIONS_TOTAL = Counter(
    "revocations_total",
    "Revoked token records written, by reason",
    labelnames=("reason",),
)
PERMISSION_CHECKS_TOTAL = Counter(
    "permission_checks_total",
    "Permission resolver decisions",
    labelnames=("result",),
)
REVOCATIONS_PURGED_TOTAL = Counter(
    "revocations_purged_total",
    "Expired revocation ledger rows removed by the purge sweep",
)


def record_request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(status_code)).inc()
    REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(duration_seconds)


def observe_db_query(duration_seconds: float, operation: str = "sql") -> None:
    DB_QUERY_DURATION_SECONDS.labels(operation=operation).observe(duration_seconds)


def observe_redis_latency(duration_seconds: float, operation: str) -> None:
    REDIS_LATENCY_SECONDS.labels(operation=operation).observe(duration_seconds)


def record_auth_decision(outcome: str) -> None:
    AUTH_DECISIONS_TOTAL.labels(outcome=outcome).inc()


def record_ledger_degraded(operation: str) -> None:
    LEDGER_DEGRADED_TOTAL.labels(operation=operation).inc()


def record_revocations(reason: str, amount: int = 1) -> None:
    if amount > 0:
        REVOCATIONS_TOTAL.labels(reason=reason).inc(amount)


def record_permission_check(allowed: bool) -> None:
    PERMISSION_CHECKS_TOTAL.labels(result="allow" if allowed else "deny").inc()


@contextmanager
def measure_redis(operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        observe_redis_latency(perf_counter() - started_at, operation=operation)


@contextmanager
def measure_ledger_lookup():
    started_at = perf_counter()
    try:
        yield
    finally:
        LEDGER_LOOKUP_SECONDS.observe(perf_counter() - started_at)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
