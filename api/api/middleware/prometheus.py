"""Prometheus metrics middleware for HTTP request instrumentation.

Exposes standard RED metrics (Rate, Errors, Duration) as Prometheus
counters and histograms, plus counters for quota rejections, rollup
failures and detected anomalies.

Path normalisation collapses path parameters (e.g. ``/tenants/salon-42``
-> ``/tenants/{id}``) to prevent unbounded label cardinality.
"""

from __future__ import annotations

import logging
import re
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

HTTP_REQUESTS_TOTAL = Counter(
    "salonmeter_http_requests_total",
    "Total HTTP requests by method, path, and status code",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "salonmeter_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

QUOTA_REJECTIONS_TOTAL = Counter(
    "salonmeter_quota_rejections_total",
    "Metered actions rejected because they would exceed the plan limit",
    ["event_type"],
)

AGGREGATION_FAILURES_TOTAL = Counter(
    "salonmeter_aggregation_failures_total",
    "Tenants whose usage rollup failed during a scheduled aggregation",
)

ANOMALIES_DETECTED_TOTAL = Counter(
    "salonmeter_anomalies_detected_total",
    "Anomaly alerts raised by the scheduled sweep",
    ["severity"],
)


# ---------------------------------------------------------------------------
# Path normalisation: collapse UUIDs, hex IDs, and numeric segments
# ---------------------------------------------------------------------------

_PATH_PARAM_PATTERNS = [
    # UUIDs (8-4-4-4-12 hex format)
    (re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"), "/{id}"),
    # Generated ids (evt-1a2b3c4d5e6f, met-...)
    (re.compile(r"/[a-z]+-[0-9a-f]{8,}"), "/{id}"),
    # Long hex strings
    (re.compile(r"/[0-9a-f]{12,64}"), "/{id}"),
    # Pure numeric segments
    (re.compile(r"/\d+"), "/{id}"),
]


def normalise_path(path: str) -> str:
    """Collapse path parameters to prevent cardinality explosion."""
    for pattern, replacement in _PATH_PARAM_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


# Paths excluded from metrics recording.
_SKIP_PATHS: frozenset[str] = frozenset({"/metrics", "/docs", "/redoc", "/openapi.json", "/favicon.ico"})


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record HTTP request rate, error rate, and latency as Prometheus metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in _SKIP_PATHS:
            return await call_next(request)

        method = request.method
        normalised = normalise_path(path)

        start = time.monotonic()
        response = await call_next(request)
        duration = time.monotonic() - start

        HTTP_REQUESTS_TOTAL.labels(
            method=method,
            path=normalised,
            status_code=str(response.status_code),
        ).inc()

        HTTP_REQUEST_DURATION.labels(
            method=method,
            path=normalised,
        ).observe(duration)

        return response
