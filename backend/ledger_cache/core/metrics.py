"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "ldgc_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "ldgc_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

HYDRATIONS = Counter(
    "ldgc_hydrations_total",
    "Read-through lookups by key kind and outcome",
    labelnames=("kind", "outcome"),
    registry=REGISTRY,
)

UPSTREAM_FETCHES = Counter(
    "ldgc_upstream_fetches_total",
    "Calls made to the upstream ledger API",
    labelnames=("kind", "outcome"),
    registry=REGISTRY,
)

LEDGER_COMMITS = Counter(
    "ldgc_ledger_commits_total",
    "Ledgers handled by the stream adapter",
    labelnames=("outcome",),
    registry=REGISTRY,
)

BACKFILL_RUNS = Counter(
    "ldgc_backfill_runs_total",
    "Backfill walks by terminal state",
    labelnames=("state",),
    registry=REGISTRY,
)

SINGLEFLIGHT_JOINS = Counter(
    "ldgc_singleflight_joins_total",
    "Callers that joined an in-flight hydration instead of fetching",
    labelnames=("kind",),
    registry=REGISTRY,
)

LATEST_LEDGER = Gauge(
    "ldgc_latest_ledger",
    "Latest fully committed ledger sequence",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "HYDRATIONS",
    "UPSTREAM_FETCHES",
    "LEDGER_COMMITS",
    "BACKFILL_RUNS",
    "SINGLEFLIGHT_JOINS",
    "LATEST_LEDGER",
    "metrics_response",
]
