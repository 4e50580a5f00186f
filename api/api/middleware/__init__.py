"""Middleware components for the metering API."""

from __future__ import annotations

from api.middleware.instrumentation import InstrumentationMiddleware
from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.prometheus import PrometheusMiddleware
from api.middleware.tenant import TenantContextMiddleware

__all__ = [
    "InstrumentationMiddleware",
    "PrometheusMiddleware",
    "RequestLoggingMiddleware",
    "TenantContextMiddleware",
]
