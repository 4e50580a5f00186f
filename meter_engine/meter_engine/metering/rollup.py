"""Roll raw usage events into monthly and daily totals.

Pure computation; the scheduled aggregator loads events, calls
:func:`rollup_usage`, and upserts the result.  Totals are keyed as::

    usage.month::<event_type>   occurred_at = month start
    usage.day::<event_type>     occurred_at = day start

so re-running for the same period overwrites the same rows.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from meter_engine.metering.events import UsageEvent
from meter_engine.metering.measurement import measured_quantity
from meter_engine.metering.quotas import QuotaDefinition, QuotaPeriod, TenantTier, limits_for
from meter_engine.observability.codec import MetricKey

MONTHLY_USAGE_METRIC = "usage.month"
DAILY_USAGE_METRIC = "usage.day"

_PERIOD_METRICS: dict[str, str] = {
    "month": MONTHLY_USAGE_METRIC,
    "day": DAILY_USAGE_METRIC,
}


@dataclass(frozen=True)
class RollupMetric:
    """One aggregated value ready to be upserted."""

    key: MetricKey
    value: float
    occurred_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


def rollup_usage(
    events: Iterable[UsageEvent],
    tier: TenantTier | str | None,
    month_start: datetime,
    day_start: datetime,
) -> list[RollupMetric]:
    """Sum *events* into per-event-type monthly and since-today totals.

    Every event type in the tier's policy gets a row, zero if unused, plus
    any other event type present in *events*.  Events before *month_start*
    are ignored.  Token-measured types use the token derivation rule.
    """
    resolved = TenantTier.parse(tier)
    limits = limits_for(resolved)
    monthly: dict[str, float] = defaultdict(float)
    daily: dict[str, float] = defaultdict(float)

    for definition in limits.values():
        monthly[definition.event_type] += 0.0
        daily[definition.event_type] += 0.0

    for event in events:
        occurred = event.occurred_at
        if occurred.tzinfo is None:
            occurred = occurred.replace(tzinfo=UTC)
        if occurred < month_start:
            continue
        definition = limits.get(event.event_type)
        measurement = definition.measurement if definition else "events"
        amount = measured_quantity(event.quantity, event.metadata, measurement)
        monthly[event.event_type] += amount
        if occurred >= day_start:
            daily[event.event_type] += amount
        else:
            daily[event.event_type] += 0.0

    results: list[RollupMetric] = []
    for period, totals, start in (("month", monthly, month_start), ("day", daily, day_start)):
        for event_type in sorted(totals):
            definition = limits.get(event_type)
            results.append(
                RollupMetric(
                    key=MetricKey(_PERIOD_METRICS[period], event_type),
                    value=totals[event_type],
                    occurred_at=start,
                    metadata=_rollup_metadata(resolved, event_type, period, start, definition),
                )
            )
    return results


def _rollup_metadata(
    tier: TenantTier,
    event_type: str,
    period: QuotaPeriod | str,
    start: datetime,
    definition: QuotaDefinition | None,
) -> dict[str, Any]:
    return {
        "tier": tier.value,
        "event_type": event_type,
        "period": period,
        "period_start": start.isoformat(),
        "limit": definition.limit if definition is not None else None,
        "measurement": definition.measurement if definition is not None else "events",
    }
