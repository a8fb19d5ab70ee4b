"""Prometheus metrics.

Counters and histograms for the HTTP surface, the provisioning workflow and
the cleanup reaper. Exposed in text format at ``/metrics``.

Usage::

    from deploy_claim.app.observability.metrics import PROVISION_STEPS_TOTAL

    PROVISION_STEPS_TOTAL.labels(step="creating_project", outcome="ok").inc()
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

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "deploy_claim_http_requests_total",
    "API requests by method, normalised path and response status.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "deploy_claim_http_request_duration_seconds",
    "API request latency in seconds, to the first byte for streamed responses.",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 60.0, 300.0),
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "deploy_claim_http_requests_in_flight",
    "API requests currently being handled.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Provisioning metrics
# ---------------------------------------------------------------------------

PROVISION_STEPS_TOTAL = Counter(
    "deploy_claim_provision_steps_total",
    "Provisioning workflow step outcomes.",
    labelnames=["step", "outcome"],
    registry=REGISTRY,
)

DEPLOYMENT_WAITS_TOTAL = Counter(
    "deploy_claim_deployment_waits_total",
    "Deployment waits by final outcome (ready, failed, canceled, timed_out).",
    labelnames=["outcome"],
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Cleanup metrics
# ---------------------------------------------------------------------------

CLEANUP_DELETIONS_TOTAL = Counter(
    "deploy_claim_cleanup_deletions_total",
    "Reaper deletions by resource kind and outcome.",
    labelnames=["kind", "outcome"],
    registry=REGISTRY,
)

CLEANUP_RUNS_TOTAL = Counter(
    "deploy_claim_cleanup_runs_total",
    "Reaper runs by resource kind and outcome (ok, error).",
    labelnames=["kind", "outcome"],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Return the current registry rendering and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
