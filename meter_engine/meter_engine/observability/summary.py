"""Observability summary assembled from decoded metric points.

Everything here is pure.  The API service loads the window's per-day
totals and its newest latency samples from the store and hands both to
:func:`build_observability_summary`.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from pydantic import BaseModel, Field

from meter_engine.observability.anomaly import ObservabilityAlert, detect_error_rate_spike, detect_spike
from meter_engine.observability.series import (
    DailyMetric,
    MetricPoint,
    bucket_points,
    bucket_values,
    combine_daily_series,
    daily_series,
    name_series,
    percentile,
)

# ---------------------------------------------------------------------------
# Metric names written by request instrumentation and the messaging layer
# ---------------------------------------------------------------------------

REQUEST_COUNT_METRIC = "api.request.count"
REQUEST_ERROR_METRIC = "api.request.error_count"
REQUEST_DURATION_METRIC = "api.request.duration_ms"
MESSAGING_SUCCESS_METRIC = "messaging.outbound.success"
MESSAGING_FAILURE_METRIC = "messaging.outbound.failure"

LATENCY_ALERT_METRIC = "api.request.latency"
LATENCY_ALERT_TITLE = "Latency regression"
MESSAGING_ALERT_TITLE = "Messaging failures increased"


class Timeframe(BaseModel):
    start: datetime
    end: datetime


class RequestVolumePoint(BaseModel):
    date: str
    count: float


class ErrorRatePoint(BaseModel):
    date: str
    errors: float
    requests: float
    rate: float


class LatencySample(BaseModel):
    occurred_at: datetime
    value: float
    route: str | None = None


class DailyAveragePoint(BaseModel):
    date: str
    value: float


class LatencySummary(BaseModel):
    p50: float = 0.0
    p95: float = 0.0
    average: float = 0.0
    samples: list[LatencySample] = Field(default_factory=list)
    daily_average: list[DailyAveragePoint] = Field(default_factory=list)


class MessagingPoint(BaseModel):
    date: str
    success: float
    failure: float


class MessagingFailurePoint(BaseModel):
    date: str
    value: float


class MessagingSummary(BaseModel):
    success: float = 0.0
    failure: float = 0.0
    failure_rate: float = 0.0
    timeline: list[MessagingPoint] = Field(default_factory=list)


class ObservabilitySummary(BaseModel):
    """Per-tenant dashboard view of the trailing observability window."""

    tenant_id: str
    timeframe: Timeframe
    requests: list[RequestVolumePoint] = Field(default_factory=list)
    error_rate: list[ErrorRatePoint] = Field(default_factory=list)
    latency: LatencySummary = Field(default_factory=LatencySummary)
    messaging: MessagingSummary = Field(default_factory=MessagingSummary)
    alerts: list[ObservabilityAlert] = Field(default_factory=list)


def build_request_series(daily: Sequence[DailyMetric]) -> list[RequestVolumePoint]:
    return [RequestVolumePoint(date=b.date, count=b.value) for b in daily_series(daily, REQUEST_COUNT_METRIC)]


def build_error_rate_series(daily: Sequence[DailyMetric]) -> list[ErrorRatePoint]:
    """Combine daily errors and requests into a rate (0 when no requests)."""
    requests = daily_series(daily, REQUEST_COUNT_METRIC)
    errors = daily_series(daily, REQUEST_ERROR_METRIC)
    request_totals = bucket_values(requests)
    error_totals = bucket_values(errors)

    series: list[ErrorRatePoint] = []
    for day in combine_daily_series(requests, errors):
        day_requests = request_totals.get(day, 0.0)
        day_errors = error_totals.get(day, 0.0)
        rate = day_errors / day_requests if day_requests > 0 else 0.0
        series.append(ErrorRatePoint(date=day, errors=day_errors, requests=day_requests, rate=rate))
    return series


def build_latency_summary(
    points: Sequence[MetricPoint],
    daily: Sequence[DailyMetric] | None = None,
) -> LatencySummary:
    """Reduce duration samples to p50/p95/mean plus a daily average.

    Percentiles use the undimensioned samples in *points*; the per-route
    rows supply the route-labelled sample list.  The mean and the daily
    average come from *daily* when given, so they cover the whole window
    even if *points* holds only the newest samples.
    """
    if daily is None:
        daily = bucket_points(points)
    totals = sorted(
        (p for p in points if p.name == REQUEST_DURATION_METRIC and p.dimension is None),
        key=lambda p: p.occurred_at,
    )
    routed = sorted(
        (p for p in points if p.name == REQUEST_DURATION_METRIC and p.dimension is not None),
        key=lambda p: p.occurred_at,
    )
    values = [p.value for p in totals]
    samples = [LatencySample(occurred_at=p.occurred_at, value=p.value, route=p.dimension) for p in routed]
    if not samples:
        samples = [LatencySample(occurred_at=p.occurred_at, value=p.value) for p in totals]

    by_day = daily_series(daily, REQUEST_DURATION_METRIC)
    sample_count = sum(b.samples for b in by_day)
    return LatencySummary(
        p50=percentile(values, 50),
        p95=percentile(values, 95),
        average=sum(b.value for b in by_day) / sample_count if sample_count else 0.0,
        samples=samples,
        daily_average=[DailyAveragePoint(date=b.date, value=b.average) for b in by_day],
    )


def build_messaging_summary(daily: Sequence[DailyMetric]) -> MessagingSummary:
    """Outbound messaging outcomes, summed over channels when no totals are recorded."""
    successes = name_series(daily, MESSAGING_SUCCESS_METRIC)
    failures = name_series(daily, MESSAGING_FAILURE_METRIC)
    success_totals = bucket_values(successes)
    failure_totals = bucket_values(failures)

    timeline = [
        MessagingPoint(date=day, success=success_totals.get(day, 0.0), failure=failure_totals.get(day, 0.0))
        for day in combine_daily_series(successes, failures)
    ]
    success = sum(success_totals.values())
    failure = sum(failure_totals.values())
    attempts = success + failure
    return MessagingSummary(
        success=success,
        failure=failure,
        failure_rate=failure / attempts if attempts > 0 else 0.0,
        timeline=timeline,
    )


def detect_alerts(
    error_rate: Sequence[ErrorRatePoint],
    latency: LatencySummary,
    messaging: MessagingSummary,
) -> list[ObservabilityAlert]:
    """Run every detector and keep the alerts that fired."""
    failure_series = [MessagingFailurePoint(date=p.date, value=p.failure) for p in messaging.timeline]
    candidates = (
        detect_error_rate_spike(error_rate),
        detect_spike(latency.daily_average, LATENCY_ALERT_METRIC, LATENCY_ALERT_TITLE, unit="ms"),
        detect_spike(failure_series, MESSAGING_FAILURE_METRIC, MESSAGING_ALERT_TITLE),
    )
    return [alert for alert in candidates if alert is not None]


def build_observability_summary(
    tenant_id: str,
    points: Sequence[MetricPoint],
    start: datetime,
    end: datetime,
    *,
    daily: Sequence[DailyMetric] | None = None,
) -> ObservabilitySummary:
    """Assemble the full summary for the ``[start, end]`` window.

    *daily* carries the window's per-day totals when the caller has them
    pre-aggregated; *points* then only needs the latency samples.  Without
    it the totals are bucketed from *points*.
    """
    in_window = [p for p in points if start <= p.occurred_at <= end]
    if daily is None:
        daily = bucket_points(in_window)
    error_rate = build_error_rate_series(daily)
    latency = build_latency_summary(in_window, daily)
    messaging = build_messaging_summary(daily)

    return ObservabilitySummary(
        tenant_id=tenant_id,
        timeframe=Timeframe(start=start, end=end),
        requests=build_request_series(daily),
        error_rate=error_rate,
        latency=latency,
        messaging=messaging,
        alerts=detect_alerts(error_rate, latency, messaging),
    )
