"""Usage metering API endpoints.

Dashboard overview of quota consumption, an admission check for callers
about to perform a metered action, and usage event recording once that
action has completed.  A rejected check surfaces as HTTP 429 through the
``QuotaExceededError`` handler in :mod:`api.main`.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, status

from api.dependencies import SessionDep, SettingsDep, TenantDep, TierCacheDep
from api.schemas import (
    QuotaCheckRequest,
    QuotaCheckResponse,
    RecordUsageRequest,
    UsageEventResponse,
    UsageOverview,
)
from api.services.usage_ledger import UsageLedger
from api.services.usage_overview import UsageOverviewBuilder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/overview", response_model=UsageOverview)
async def get_usage_overview(
    session: SessionDep,
    tenant_id: TenantDep,
    tier_cache: TierCacheDep,
    settings: SettingsDep,
) -> UsageOverview:
    """Return quota consumption for the current period plus recent metrics."""
    builder = UsageOverviewBuilder(
        session,
        tier_cache,
        reference_timezone=settings.reference_timezone,
        recent_limit=settings.recent_metrics_limit,
    )
    return await builder.build(tenant_id)


@router.post("/check", response_model=QuotaCheckResponse)
async def check_usage_quota(
    body: QuotaCheckRequest,
    session: SessionDep,
    tenant_id: TenantDep,
    tier_cache: TierCacheDep,
    settings: SettingsDep,
) -> QuotaCheckResponse:
    """Admission check before a metered action.  Returns 429 when over quota."""
    ledger = UsageLedger(session, tier_cache, reference_timezone=settings.reference_timezone)
    state = await ledger.check_quota(tenant_id, body.event_type, body.amount)
    return QuotaCheckResponse(allowed=True, quota=state)


@router.post("/events", response_model=UsageEventResponse, status_code=status.HTTP_201_CREATED)
async def record_usage_event(
    body: RecordUsageRequest,
    session: SessionDep,
    tenant_id: TenantDep,
    settings: SettingsDep,
) -> UsageEventResponse:
    """Record one completed metered action."""
    ledger = UsageLedger(session, reference_timezone=settings.reference_timezone)
    event = await ledger.record_event(
        tenant_id,
        body.event_type,
        quantity=body.quantity,
        metadata=body.metadata,
        occurred_at=body.occurred_at,
    )
    return UsageEventResponse(**event.model_dump())
