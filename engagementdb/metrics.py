"""Prometheus metrics collection and export.

This module provides Prometheus instrumentation for the reaction and
engagement core: gateway round trips, reaction toggles, optimistic cache
rollbacks and lead views.

Metric Types:
    Counters (always increase):
        - gateway_requests_total: Gateway calls by backend, operation, status
        - reaction_toggles_total: Reaction writes by target type and outcome
        - cache_rollbacks_total: Optimistic updates reverted after a failed write
        - lead_views_total: Lead view recordings by status
        - errors_total: Errors by type and component

    Gauges (can go up or down):
        - cache_entries: Targets currently held in optimistic caches
        - pending_mutations: Reaction writes currently in flight

    Histograms (track distributions):
        - gateway_request_duration_seconds: Gateway call latency

Usage:
    ```python
    from engagementdb.metrics import reaction_toggles_total

    reaction_toggles_total.labels(target_type="post", outcome="inserted").inc()
    ```

    Exposing metrics:

    ```python
    from engagementdb.metrics import generate_metrics_output

    body = generate_metrics_output()
    ```

References:
    - Prometheus Python Client: https://github.com/prometheus/client_python
    - Metric Types: https://prometheus.io/docs/tutorials/understanding_metric_types/
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Custom registry so only EngagementDB metrics are exported
registry = CollectorRegistry()

# Latency buckets tuned for single-row gateway round trips (seconds)
GATEWAY_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)


# ========== COUNTER METRICS (always increase) ==========

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total number of persistence gateway calls",
    labelnames=["backend", "operation", "status"],
    registry=registry,
)
"""Counter for gateway calls.

Labels:
    backend: Gateway implementation ("sqlite", "rest")
    operation: Gateway method (e.g., "fetch_reaction", "adjust_reaction_count")
    status: "success", "not_found" or "error"
"""

reaction_toggles_total = Counter(
    "reaction_toggles_total",
    "Total number of reaction writes",
    labelnames=["target_type", "outcome"],
    registry=registry,
)
"""Counter for reaction writes.

Labels:
    target_type: "post" or "comment"
    outcome: "inserted", "changed", "removed" or "failed"
"""

cache_rollbacks_total = Counter(
    "cache_rollbacks_total",
    "Total number of optimistic updates rolled back",
    registry=registry,
)

lead_views_total = Counter(
    "lead_views_total",
    "Total number of lead view recordings",
    labelnames=["status"],
    registry=registry,
)
"""Counter for lead views.

Labels:
    status: "recorded", "duplicate" or "failed"
"""

errors_total = Counter(
    "errors_total",
    "Total number of errors encountered",
    labelnames=["error_type", "component"],
    registry=registry,
)
"""Counter for tracking errors by type and component.

Labels:
    error_type: Exception class name (e.g., "TransientGatewayError")
    component: Component where error occurred (e.g., "database", "rest", "cache")
"""


# ========== GAUGE METRICS (can go up or down) ==========

cache_entries = Gauge(
    "cache_entries",
    "Number of targets held in optimistic caches",
    registry=registry,
)

pending_mutations = Gauge(
    "pending_mutations",
    "Number of optimistic reaction writes in flight",
    registry=registry,
)


# ========== HISTOGRAM METRICS (track distributions) ==========

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Persistence gateway call latency in seconds",
    labelnames=["backend", "operation"],
    buckets=GATEWAY_LATENCY_BUCKETS,
    registry=registry,
)


# ========== HELPER FUNCTIONS ==========


def generate_metrics_output() -> bytes:
    """Generate Prometheus metrics output in text exposition format.

    Returns:
        Metrics output as bytes (suitable for an HTTP response body)
    """
    return generate_latest(registry)


__all__ = [
    "registry",
    "gateway_requests_total",
    "reaction_toggles_total",
    "cache_rollbacks_total",
    "lead_views_total",
    "errors_total",
    "cache_entries",
    "pending_mutations",
    "gateway_request_duration_seconds",
    "generate_metrics_output",
    "GATEWAY_LATENCY_BUCKETS",
]
