"""Prometheus metric inventory.

Every metric the service exposes is declared here; the modules that own
the behavior import and increment them at the point of action.

HTTP metrics are populated by MetricsMiddleware.  Domain counters track
lifecycle transitions so dashboards can answer questions such as "how many
attempts are being expired by the sweep instead of submitted?" without
scanning logs.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics
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
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Domain metrics
# ---------------------------------------------------------------------------

ENROLLMENTS = Counter(
    "enrollments_total",
    "Enrollment operations by result",
    ["result"],  # created|duplicate|rejected|removed
)

CERTIFICATES = Counter(
    "certificates_issued_total",
    "Certificate issuance calls by result",
    ["result"],  # issued|already_issued|render_failed
)

ATTEMPT_TRANSITIONS = Counter(
    "exam_attempt_transitions_total",
    "Exam attempt state transitions",
    ["transition"],  # started|submitted|expired|abandoned
)

NOTIFICATIONS = Counter(
    "notifications_total",
    "Notification dispatch outcomes",
    ["result"],  # queued|dropped|delivered
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # hit|miss
)
