"""Prometheus counters for auth events and HTTP traffic."""

from prometheus_client import Counter, Histogram

LOGIN_ATTEMPTS = Counter(
    "authcore_login_attempts_total",
    "Login attempts by outcome",
    ["result"],
)
REFRESH_ROTATIONS = Counter(
    "authcore_refresh_rotations_total",
    "Refresh token presentations by outcome",
    ["result"],
)
ACCOUNT_LOCKOUTS = Counter(
    "authcore_lockouts_total",
    "Failed logins that started or extended a lock",
)
TOKENS_CLEANED = Counter(
    "authcore_tokens_cleaned_total",
    "Expired refresh token records removed",
)
FAILED_LOGINS_PURGED = Counter(
    "authcore_failed_logins_purged_total",
    "Stale failed-login counters removed",
)
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
