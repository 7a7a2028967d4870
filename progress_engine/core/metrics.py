"""Prometheus metric inventory.

Every metric the service exports is declared here; the owning modules
import the one they need and increment it at the point of action.

Counters only go up, so dashboards read them through rate():

  rate(progress_events_applied_total{result="applied"}[5m])
    → events folded into progress per second
  rate(progress_version_conflicts_total[5m])
    → how often concurrent writers for the same (user, course) collide;
      a sustained rise means two tabs (or two workers) are fighting
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
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Engine metrics
# ---------------------------------------------------------------------------

EVENTS_APPLIED = Counter(
    "progress_events_applied_total",
    "Activity events processed by the engine",
    ["result"],  # applied|duplicate|rejected|failed
)

APPLY_DURATION = Histogram(
    "progress_apply_duration_seconds",
    "Wall time of one full apply cycle (ingest through achievements)",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

VERSION_CONFLICTS = Counter(
    "progress_version_conflicts_total",
    "Compare-and-swap failures that triggered a retry",
    ["document"],
)

ACHIEVEMENTS_UNLOCKED = Counter(
    "achievements_unlocked_total",
    "Unlock events emitted by the achievement evaluator",
    ["kind"],  # achievement|step
)

NOTIFICATIONS_FAILED = Counter(
    "notifications_failed_total",
    "Notifications that could not be handed to the queue",
)

ATTEMPTS_GRADED = Counter(
    "assessment_attempts_graded_total",
    "Mock test attempts graded",
    ["passed"],  # "true" or "false"
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache operations by kind",
    ["operation"],  # hit|miss|set|invalidate
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
