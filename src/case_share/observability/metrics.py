"""Prometheus metrics for the sharing service.

HTTP series are written by ``AccessLogMiddleware``. Sharing series are
written through the ``record_*`` helpers by the controller, the access-code
gateway and the invite sweep. Everything lives in the default registry so
the process collectors are exported alongside.
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

# ── HTTP ──────────────────────────────────────────────────────────────

HTTP_REQUESTS_TOTAL = Counter(
    "http_server_requests_total",
    "Requests by method, route template and status.",
    labelnames=["method", "path", "status"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_server_request_duration_seconds",
    "Request latency by method and route template.",
    labelnames=["method", "path"],
    buckets=LATENCY_BUCKETS,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "http_server_requests_in_flight",
    "Requests currently being served.",
)

# ── Sharing ───────────────────────────────────────────────────────────

SHARE_OPERATIONS_TOTAL = Counter(
    "case_share_operations_total",
    "Sharing operations by name and outcome (ok, degraded, or an error kind).",
    labelnames=["operation", "outcome"],
)

INVITE_REDEMPTIONS_TOTAL = Counter(
    "case_invite_redemptions_total",
    "Invite redemption attempts by outcome.",
    labelnames=["outcome"],
)

EXPIRED_INVITES_PURGED_TOTAL = Counter(
    "case_invites_purged_total",
    "Expired invite rows deleted by the sweep.",
)

ACCESS_CODE_FOREIGN_ROWS_TOTAL = Counter(
    "case_access_code_foreign_rows_total",
    "Rows of another case returned to an access-code read and dropped.",
    labelnames=["kind"],
)


def record_operation(operation: str, outcome: str) -> None:
    SHARE_OPERATIONS_TOTAL.labels(operation=operation, outcome=outcome).inc()


def record_redemption(outcome: str) -> None:
    INVITE_REDEMPTIONS_TOTAL.labels(outcome=outcome).inc()


def record_purge(count: int) -> None:
    if count:
        EXPIRED_INVITES_PURGED_TOTAL.inc(count)


def record_foreign_rows(kind: str, count: int) -> None:
    ACCESS_CODE_FOREIGN_ROWS_TOTAL.labels(kind=kind).inc(count)


def metrics_text() -> tuple[bytes, str]:
    """Render the default registry. Returns (body, content_type)."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
