"""Prometheus metric inventory.

Every metric the service exports is declared here; modules import the
ones they own and increment them at the point of action.  The default
registry is process-global, so tests assert on deltas.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    # The callback includes one provider round-trip, hence the upper buckets.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Sign-in metrics
# ---------------------------------------------------------------------------

AUTH_HANDSHAKE = Counter(
    "auth_handshake_total",
    "Login initiations and callbacks by outcome",
    ["phase", "outcome"],  # phase: login|callback; outcome: redirected|success or an error reason
)

USER_RECONCILIATIONS = Counter(
    "user_reconciliations_total",
    "Register-or-authenticate results",
    ["outcome"],  # created|existing|race_lost
)

SESSION_STORE_ERRORS = Counter(
    "session_store_errors_total",
    "Session store operations that failed",
    ["operation"],  # read|write|destroy
)
