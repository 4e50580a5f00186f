"""Quota period boundaries in a fixed reference timezone.

Boundaries are computed on the local wall clock of the reference timezone
and returned as UTC-aware datetimes so they compare directly against
stored ``occurred_at`` values.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from meter_engine.metering.quotas import QuotaPeriod


def _zone(timezone: str | ZoneInfo) -> ZoneInfo:
    return timezone if isinstance(timezone, ZoneInfo) else ZoneInfo(timezone)


def _as_local(reference_time: datetime, timezone: str | ZoneInfo) -> datetime:
    if reference_time.tzinfo is None:
        reference_time = reference_time.replace(tzinfo=UTC)
    return reference_time.astimezone(_zone(timezone))


def period_start(
    period: QuotaPeriod,
    reference_time: datetime,
    timezone: str | ZoneInfo = "UTC",
) -> datetime:
    """Return the start of the day or month containing *reference_time*."""
    local = _as_local(reference_time, timezone)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "month":
        start = start.replace(day=1)
    return start.astimezone(UTC)


def period_end(
    period: QuotaPeriod,
    reference_time: datetime,
    timezone: str | ZoneInfo = "UTC",
) -> datetime:
    """Return the exclusive end of the period containing *reference_time*."""
    local = _as_local(reference_time, timezone)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "month":
        start = start.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
    else:
        # Add a day on the calendar, not 24 hours, so DST days stay whole.
        nxt = (start + timedelta(days=1)).date()
        end = start.replace(year=nxt.year, month=nxt.month, day=nxt.day)
    return end.astimezone(UTC)


def period_bounds(
    period: QuotaPeriod,
    reference_time: datetime,
    timezone: str | ZoneInfo = "UTC",
) -> tuple[datetime, datetime]:
    """Return ``(start, end)`` of the period containing *reference_time*."""
    return (
        period_start(period, reference_time, timezone),
        period_end(period, reference_time, timezone),
    )
