"""Prometheus collectors shared by the API layer and the auth services."""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "authcore_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "authcore_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
LOGIN_ATTEMPTS = Counter(
    "authcore_login_attempts_total",
    "Login attempts by outcome",
    ["outcome"],
)
SESSION_CHECK_FAILURES = Counter(
    "authcore_session_check_storage_failures_total",
    "Session checks that could not reach storage",
    ["policy"],
)
AUDIT_APPEND_FAILURES = Counter(
    "authcore_audit_append_failures_total",
    "Audit ledger writes that were dropped",
)
