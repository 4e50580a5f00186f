"""Observability summaries and the scheduled anomaly sweep.

``summarize`` loads the trailing window for one tenant as per-day totals
grouped in the store, plus the newest ``row_limit`` latency samples for the
percentiles, and hands both to the pure summary builder, which also runs
the anomaly detectors.  ``run_anomaly_sweep`` repeats the evaluation for
every tenant and logs each alert.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from meter_engine.observability.anomaly import ObservabilityAlert
from meter_engine.observability.summary import (
    REQUEST_DURATION_METRIC,
    ObservabilitySummary,
    build_observability_summary,
)
from meter_engine.state.database import session_scope
from meter_engine.state.repository import TenantRepository, UsageMetricRepository
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.middleware.prometheus import ANOMALIES_DETECTED_TOTAL
from api.services.usage_ledger import store_operation

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 14
DEFAULT_ROW_LIMIT = 5000


class ObservabilityService:
    """Read-only observability queries for one session."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        window_days: int = DEFAULT_WINDOW_DAYS,
        row_limit: int = DEFAULT_ROW_LIMIT,
    ) -> None:
        self._session = session
        self._window = timedelta(days=window_days)
        self._row_limit = row_limit

    async def summarize(self, tenant_id: str, now: datetime | None = None) -> ObservabilitySummary:
        end = now or datetime.now(UTC)
        start = end - self._window
        repo = UsageMetricRepository(self._session, tenant_id)
        with store_operation("observability summary", tenant_id):
            daily = await repo.daily_totals(start, end)
            samples = await repo.window_points(
                start,
                end,
                limit=self._row_limit,
                names=(REQUEST_DURATION_METRIC,),
            )
        return build_observability_summary(tenant_id, samples, start, end, daily=daily)

    async def evaluate_tenant_alerts(self, tenant_id: str, now: datetime | None = None) -> list[ObservabilityAlert]:
        """Return the tenant's current alerts, or ``[]`` if evaluation fails."""
        try:
            summary = await self.summarize(tenant_id, now)
        except Exception:
            logger.error(
                "Failed to evaluate observability alerts tenant=%s",
                tenant_id,
                exc_info=True,
                extra={"tenant_id": tenant_id, "job": "anomaly_sweep"},
            )
            return []
        return summary.alerts


async def run_anomaly_sweep(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    window_days: int = DEFAULT_WINDOW_DAYS,
    row_limit: int = DEFAULT_ROW_LIMIT,
    now: datetime | None = None,
) -> dict[str, list[ObservabilityAlert]]:
    """Evaluate every tenant and log each alert at WARNING.

    Returns alerts keyed by tenant id (tenants without alerts omitted).
    If the tenant directory cannot be listed the sweep logs and returns
    an empty mapping.
    """
    try:
        async with session_scope(session_factory) as session:
            tenant_ids = [t.tenant_id for t in await TenantRepository(session).list_tenants()]
    except SQLAlchemyError:
        logger.error("Anomaly sweep could not list tenants", exc_info=True, extra={"job": "anomaly_sweep"})
        return {}

    results: dict[str, list[ObservabilityAlert]] = {}
    for tenant_id in tenant_ids:
        async with session_factory() as session:
            service = ObservabilityService(session, window_days=window_days, row_limit=row_limit)
            alerts = await service.evaluate_tenant_alerts(tenant_id, now)
        for alert in alerts:
            ANOMALIES_DETECTED_TOTAL.labels(severity=alert.severity.value).inc()
            logger.warning(
                "Anomaly detected tenant=%s metric=%s severity=%s: %s",
                tenant_id,
                alert.metric,
                alert.severity.value,
                alert.description,
                extra={"tenant_id": tenant_id, "job": "anomaly_sweep", "alert": alert.model_dump(mode="json")},
            )
        if alerts:
            results[tenant_id] = alerts

    logger.info("Anomaly sweep complete: tenants=%d alerting=%d", len(tenant_ids), len(results))
    return results
