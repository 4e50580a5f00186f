"""Scheduled usage rollup.

For every tenant in the directory, loads the month's usage events, sums
them into monthly and since-today totals (see
:func:`meter_engine.metering.rollup.rollup_usage`) and upserts one metric
per tracked event type per granularity.  Rows are keyed on
``(tenant_id, metric, occurred_at)`` so re-running for the same period
overwrites instead of adding.

Each tenant is processed in its own session; a failure for one tenant is
logged, counted and recorded in the report, and the sweep moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from meter_engine.metering.errors import StoreUnavailableError
from meter_engine.metering.periods import period_end, period_start
from meter_engine.metering.rollup import rollup_usage
from meter_engine.metering.tier_cache import TierCache
from meter_engine.state.database import session_scope
from meter_engine.state.repository import TenantRepository, UsageEventRepository, UsageMetricRepository
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.middleware.prometheus import AGGREGATION_FAILURES_TOTAL

logger = logging.getLogger(__name__)


@dataclass
class AggregationReport:
    """Outcome of one aggregation sweep."""

    started_at: datetime
    tenants_processed: int = 0
    metrics_written: int = 0
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class UsageAggregator:
    """Roll every tenant's raw usage events into period metrics.

    Parameters
    ----------
    session_factory:
        Factory for the per-tenant sessions (and the directory listing).
    reference_timezone:
        Timezone whose midnight starts the day and month buckets.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        reference_timezone: str = "UTC",
    ) -> None:
        self._session_factory = session_factory
        self._timezone = reference_timezone

    async def run(self, reference_time: datetime | None = None) -> AggregationReport:
        now = reference_time or datetime.now(UTC)
        report = AggregationReport(started_at=now)
        tier_cache = TierCache()

        try:
            async with session_scope(self._session_factory) as session:
                tenants = [(t.tenant_id, t.tier) for t in await TenantRepository(session).list_tenants()]
        except DBAPIError as exc:
            raise StoreUnavailableError("tenant listing") from exc

        for tenant_id, raw_tier in tenants:
            tier_cache.set(tenant_id, raw_tier)
            try:
                written = await self.aggregate_tenant(tenant_id, tier_cache, now)
            except Exception as exc:
                AGGREGATION_FAILURES_TOTAL.inc()
                report.failures[tenant_id] = str(exc) or type(exc).__name__
                logger.error(
                    "Usage aggregation failed tenant=%s: %s",
                    tenant_id,
                    exc,
                    exc_info=True,
                    extra={"tenant_id": tenant_id, "job": "usage_aggregation"},
                )
                continue
            report.tenants_processed += 1
            report.metrics_written += written

        logger.info(
            "Usage aggregation complete: tenants=%d metrics=%d failures=%d",
            report.tenants_processed,
            report.metrics_written,
            len(report.failures),
        )
        return report

    async def aggregate_tenant(
        self,
        tenant_id: str,
        tier_cache: TierCache,
        reference_time: datetime,
    ) -> int:
        """Upsert one tenant's rollup metrics.  Returns the number written."""
        month_start = period_start("month", reference_time, self._timezone)
        month_end = period_end("month", reference_time, self._timezone)
        day_start = period_start("day", reference_time, self._timezone)
        tier = tier_cache.get(tenant_id)

        async with session_scope(self._session_factory) as session:
            events = await UsageEventRepository(session, tenant_id).list_between(month_start, month_end)
            rollups = rollup_usage(events, tier, month_start, day_start)
            metrics = UsageMetricRepository(session, tenant_id)
            for rollup in rollups:
                await metrics.upsert_rollup(rollup)

        logger.debug("Aggregated tenant=%s events=%d metrics=%d", tenant_id, len(events), len(rollups))
        return len(rollups)
