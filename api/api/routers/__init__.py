"""API router modules for the metering service."""

from __future__ import annotations

from api.routers import health, metrics, observability, usage

__all__ = [
    "health",
    "metrics",
    "observability",
    "usage",
]
