"""Prometheus metrics shared by the HTTP layer and the token services."""

from prometheus_client import Counter, Gauge, Histogram

HTTP_REQUESTS = Counter(
    "tokenkeeper_http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)
HTTP_LATENCY = Histogram(
    "tokenkeeper_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "route"],
)
AUTH_FAILURES = Counter(
    "tokenkeeper_auth_failures_total",
    "Rejected token or credential checks by error type",
    ["error"],
)
TOKEN_REUSE = Counter(
    "tokenkeeper_token_reuse_total",
    "Refresh token reuse events that revoked a device family",
)
TOKEN_ROTATIONS = Counter(
    "tokenkeeper_token_rotations_total",
    "Successful refresh token rotations",
)
CLEANUP_DELETED = Counter(
    "tokenkeeper_cleanup_deleted_total",
    "Refresh token records removed by cleanup",
)
CLEANUP_UP = Gauge(
    "tokenkeeper_cleanup_scheduler_up",
    "Cleanup scheduler liveness (1 running, 0 stopped)",
)
