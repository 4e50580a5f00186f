"""Per-tenant usage overview for the dashboard.

Read-only composition: the tenant's quota states (computed exactly as the
ledger's admission check computes ``used``) plus the most recent raw
usage metric rows for trend display.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from meter_engine.metering.quotas import limits_for
from meter_engine.metering.tier_cache import TierCache
from meter_engine.observability.codec import decode_metric_key
from meter_engine.state.repository import UsageMetricRepository
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas import QuotaState, UsageMetricView, UsageOverview
from api.services.usage_ledger import UsageLedger, store_operation

logger = logging.getLogger(__name__)


class UsageOverviewBuilder:
    """Assemble a :class:`UsageOverview` for one tenant."""

    def __init__(
        self,
        session: AsyncSession,
        tier_cache: TierCache | None = None,
        *,
        reference_timezone: str = "UTC",
        recent_limit: int = 100,
    ) -> None:
        self._session = session
        self._ledger = UsageLedger(session, tier_cache, reference_timezone=reference_timezone)
        self._recent_limit = recent_limit

    async def build(self, tenant_id: str, reference_time: datetime | None = None) -> UsageOverview:
        now = reference_time or datetime.now(UTC)
        tier = await self._ledger.resolve_tier(tenant_id)

        quotas: list[QuotaState] = []
        for definition in limits_for(tier).values():
            used, start = await self._ledger.calculate_usage(tenant_id, definition, now)
            remaining = None if definition.limit is None else max(definition.limit - used, 0.0)
            quotas.append(
                QuotaState(
                    event_type=definition.event_type,
                    label=definition.label,
                    period=definition.period,
                    measurement=definition.measurement,
                    used=used,
                    limit=definition.limit,
                    remaining=remaining,
                    period_start=start,
                )
            )

        with store_operation("recent metrics", tenant_id):
            rows = await UsageMetricRepository(self._session, tenant_id).recent(self._recent_limit)

        recent: list[UsageMetricView] = []
        for row in rows:
            key = decode_metric_key(row.metric)
            recent.append(
                UsageMetricView(
                    id=row.id,
                    metric=row.metric,
                    name=key.name,
                    dimension=key.dimension,
                    value=float(row.value),
                    metadata=row.metadata_json or {},
                    occurred_at=row.occurred_at,
                )
            )

        return UsageOverview(tenant_id=tenant_id, tier=tier.value, quotas=quotas, recent_metrics=recent)
