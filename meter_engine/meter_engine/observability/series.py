"""Daily time-series reconstruction from stored metric points.

Observations are reduced to :class:`DailyMetric` rows, one per metric key
and UTC date, either in memory by :func:`bucket_points` or by the store's
grouped query.  Series are then read from those rows:

* :func:`daily_series` matches ``(name, dimension)`` exactly, so
  ``dimension=None`` reads only the undimensioned totals and per-route rows
  written next to them are never counted twice.
* :func:`name_series` is for metrics recorded per channel without a total:
  it uses the undimensioned rows when the window holds any and otherwise
  sums every dimension of the name.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from meter_engine.observability.codec import MetricKey


@dataclass(frozen=True)
class MetricPoint:
    """One decoded metric observation."""

    key: MetricKey
    value: float
    occurred_at: datetime

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def dimension(self) -> str | None:
        return self.key.dimension


@dataclass(frozen=True)
class DailyMetric:
    """Sum and sample count of one metric key on one UTC calendar date."""

    key: MetricKey
    date: str
    value: float
    samples: int


@dataclass(frozen=True)
class DailyBucket:
    """Sum and sample count of one series on one UTC calendar date."""

    date: str
    value: float
    samples: int

    @property
    def average(self) -> float:
        return self.value / self.samples if self.samples else 0.0


def utc_date(moment: datetime) -> str:
    """Return the ``YYYY-MM-DD`` UTC calendar date of *moment*."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).date().isoformat()


def bucket_points(points: Iterable[MetricPoint]) -> list[DailyMetric]:
    """Group *points* by key and UTC date, ordered by date then key."""
    totals: dict[tuple[str, MetricKey], float] = {}
    samples: dict[tuple[str, MetricKey], int] = {}
    for point in points:
        slot = (utc_date(point.occurred_at), point.key)
        totals[slot] = totals.get(slot, 0.0) + point.value
        samples[slot] = samples.get(slot, 0) + 1
    ordered = sorted(totals, key=lambda slot: (slot[0], slot[1].encode()))
    return [DailyMetric(key, day, totals[(day, key)], samples[(day, key)]) for day, key in ordered]


def _merge(rows: Iterable[DailyMetric]) -> list[DailyBucket]:
    totals: dict[str, float] = {}
    samples: dict[str, int] = {}
    for row in rows:
        totals[row.date] = totals.get(row.date, 0.0) + row.value
        samples[row.date] = samples.get(row.date, 0) + row.samples
    return [DailyBucket(day, totals[day], samples[day]) for day in sorted(totals)]


def daily_series(
    daily: Iterable[DailyMetric],
    name: str,
    dimension: str | None = None,
) -> list[DailyBucket]:
    """Return the date-ordered series of rows keyed exactly ``(name, dimension)``."""
    return _merge(row for row in daily if row.key.name == name and row.key.dimension == dimension)


def name_series(daily: Sequence[DailyMetric], name: str) -> list[DailyBucket]:
    """Return undimensioned totals for *name*, or the sum over its dimensions when none exist."""
    totals = daily_series(daily, name)
    if totals:
        return totals
    return _merge(row for row in daily if row.key.name == name)


def combine_daily_series(*series: Sequence[DailyBucket]) -> list[str]:
    """Return the sorted union of dates present in any of *series*."""
    dates: set[str] = set()
    for buckets in series:
        dates.update(b.date for b in buckets)
    return sorted(dates)


def bucket_values(buckets: Sequence[DailyBucket]) -> dict[str, float]:
    return {b.date: b.value for b in buckets}


def percentile(values: Sequence[float], p: float) -> float:
    """Linear-interpolation percentile of *values* for ``0 <= p <= 100``.

    Returns 0.0 for an empty sequence.  *values* need not be sorted.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    n = len(ordered)
    k = (max(0.0, min(p, 100.0)) / 100.0) * (n - 1)
    floor_k = int(math.floor(k))
    ceil_k = min(floor_k + 1, n - 1)
    frac = k - floor_k
    return ordered[floor_k] + frac * (ordered[ceil_k] - ordered[floor_k])
