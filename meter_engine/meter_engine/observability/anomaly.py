"""Baseline-ratio anomaly detection over daily series.

Two detectors share one baseline construction: order the daily points by
date, take the last one as *latest*, and average every earlier point into
the *baseline*.  Fewer than four points never produce an alert.

Ratio spike (counts, latency)::

    ratio <= 1.5        no alert
    1.5 < ratio < 2.0   warning
    ratio >= 2.0        critical

Error rate (already-computed daily rates)::

    latest <= 1%        no alert, whatever the baseline
    baseline == 0       critical when latest > 2%, otherwise no alert
    ratio <= 1.75       no alert
    1.75 < ratio < 2.5  warning
    ratio >= 2.5        critical

Both detectors are pure and stateless.  Alert ids are derived from the
metric and the latest date so repeated sweeps over the same day produce
the same id.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, Field

MIN_HISTORY_POINTS = 4

SPIKE_WARNING_RATIO = 1.5
SPIKE_CRITICAL_RATIO = 2.0

ERROR_RATE_FLOOR = 0.01
ERROR_RATE_NO_BASELINE_CRITICAL = 0.02
ERROR_RATE_WARNING_RATIO = 1.75
ERROR_RATE_CRITICAL_RATIO = 2.5

ERROR_RATE_METRIC = "api.error_rate"
ERROR_RATE_TITLE = "Error rate spike"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ObservabilityAlert(BaseModel):
    """A graded anomaly on one metric's latest daily value."""

    id: str = Field(..., description="Deterministic id: metric plus latest bucket date.")
    metric: str = Field(..., description="Metric the alert was raised on.")
    observed: float = Field(..., description="Latest daily value.")
    baseline: float | None = Field(default=None, description="Mean of the preceding days.")
    severity: AlertSeverity = Field(..., description="Severity: 'info', 'warning', or 'critical'.")
    title: str
    description: str


class DailyValue(Protocol):
    @property
    def date(self) -> str: ...

    @property
    def value(self) -> float: ...


class DailyRate(Protocol):
    @property
    def date(self) -> str: ...

    @property
    def rate(self) -> float: ...


def _format_value(value: float, unit: str = "") -> str:
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {unit}" if unit else text


def _format_rate(rate: float) -> str:
    return f"{rate * 100:.1f}%"


def _spike_severity(ratio: float) -> AlertSeverity | None:
    if ratio <= SPIKE_WARNING_RATIO:
        return None
    if ratio < SPIKE_CRITICAL_RATIO:
        return AlertSeverity.WARNING
    return AlertSeverity.CRITICAL


def _error_rate_severity(ratio: float) -> AlertSeverity | None:
    if ratio <= ERROR_RATE_WARNING_RATIO:
        return None
    if ratio < ERROR_RATE_CRITICAL_RATIO:
        return AlertSeverity.WARNING
    return AlertSeverity.CRITICAL


def detect_spike(
    series: Sequence[DailyValue],
    metric: str,
    title: str,
    unit: str = "",
) -> ObservabilityAlert | None:
    """Compare the latest daily value of *series* against its baseline.

    Returns ``None`` when history is too short or the ratio is within
    bounds.
    """
    if len(series) < MIN_HISTORY_POINTS:
        return None

    ordered = sorted(series, key=lambda point: point.date)
    latest = ordered[-1]
    history = [point.value for point in ordered[:-1]]
    baseline = sum(history) / len(history)

    if latest.value <= 0 and baseline <= 0:
        return None

    alert_id = f"{metric}-spike-{latest.date}"
    if baseline == 0:
        return ObservabilityAlert(
            id=alert_id,
            metric=metric,
            observed=latest.value,
            baseline=0.0,
            severity=AlertSeverity.CRITICAL,
            title=title,
            description=f"Observed {_format_value(latest.value, unit)} with no historical baseline.",
        )

    severity = _spike_severity(latest.value / baseline)
    if severity is None:
        return None
    return ObservabilityAlert(
        id=alert_id,
        metric=metric,
        observed=latest.value,
        baseline=baseline,
        severity=severity,
        title=title,
        description=(
            f"Latest value {_format_value(latest.value, unit)} exceeds baseline {_format_value(baseline, unit)}."
        ),
    )


def detect_error_rate_spike(series: Sequence[DailyRate]) -> ObservabilityAlert | None:
    """Grade the latest daily error rate against its baseline."""
    if len(series) < MIN_HISTORY_POINTS:
        return None

    ordered = sorted(series, key=lambda point: point.date)
    latest = ordered[-1]
    history = [point.rate for point in ordered[:-1]]
    baseline = sum(history) / len(history)

    if latest.rate <= ERROR_RATE_FLOOR:
        return None

    alert_id = f"error-rate-{latest.date}"
    if baseline == 0:
        if latest.rate <= ERROR_RATE_NO_BASELINE_CRITICAL:
            return None
        return ObservabilityAlert(
            id=alert_id,
            metric=ERROR_RATE_METRIC,
            observed=latest.rate,
            baseline=0.0,
            severity=AlertSeverity.CRITICAL,
            title=ERROR_RATE_TITLE,
            description=f"Error rate {_format_rate(latest.rate)} with no historical baseline.",
        )

    severity = _error_rate_severity(latest.rate / baseline)
    if severity is None:
        return None
    return ObservabilityAlert(
        id=alert_id,
        metric=ERROR_RATE_METRIC,
        observed=latest.rate,
        baseline=baseline,
        severity=severity,
        title=ERROR_RATE_TITLE,
        description=(
            f"Latest error rate {_format_rate(latest.rate)} exceeds baseline {_format_rate(baseline)}."
        ),
    )
