"""Shared Pydantic request and response models for API endpoints.

These schemas ensure that endpoint responses are validated and documented
in the OpenAPI specification.  Routers and services import from here to
avoid duplication.  The observability summary models live with the pure
summary builder in :mod:`meter_engine.observability.summary`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from meter_engine.observability.anomaly import ObservabilityAlert
from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Quota schemas
# ---------------------------------------------------------------------------


class QuotaState(BaseModel):
    """Current-period consumption against one quota definition."""

    event_type: str
    label: str
    period: str
    measurement: str
    used: float
    limit: float | None = None
    remaining: float | None = None
    period_start: datetime


class UsageMetricView(BaseModel):
    """A raw usage metric row with its key decoded."""

    id: str
    metric: str
    name: str
    dimension: str | None = None
    value: float
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime


class UsageOverview(BaseModel):
    """Per-tenant quota-vs-consumption report for the dashboard."""

    tenant_id: str
    tier: str
    quotas: list[QuotaState] = Field(default_factory=list)
    recent_metrics: list[UsageMetricView] = Field(default_factory=list)


class QuotaCheckRequest(BaseModel):
    event_type: str = Field(..., min_length=1, max_length=64)
    amount: float = Field(default=1, description="Units the caller is about to consume.")


class QuotaCheckResponse(BaseModel):
    allowed: bool = True
    quota: QuotaState | None = None


# ---------------------------------------------------------------------------
# Usage event schemas
# ---------------------------------------------------------------------------


class RecordUsageRequest(BaseModel):
    event_type: str = Field(..., min_length=1, max_length=64)
    quantity: Any = 1
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime | None = None


class UsageEventResponse(BaseModel):
    event_id: str
    tenant_id: str
    event_type: str
    quantity: float
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime


# ---------------------------------------------------------------------------
# Observability schemas
# ---------------------------------------------------------------------------


class AlertsResponse(BaseModel):
    tenant_id: str
    alerts: list[ObservabilityAlert] = Field(default_factory=list)
