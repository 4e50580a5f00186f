"""Observability dashboard endpoints.

``/summary`` returns the trailing-window request, error-rate, latency and
messaging series with any alerts; ``/alerts`` returns only the alerts.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from meter_engine.observability.summary import ObservabilitySummary

from api.dependencies import SessionDep, SettingsDep, TenantDep
from api.schemas import AlertsResponse
from api.services.observability_service import ObservabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/observability", tags=["observability"])


def _service(session: SessionDep, settings: SettingsDep) -> ObservabilityService:
    return ObservabilityService(
        session,
        window_days=settings.observability_window_days,
        row_limit=settings.observability_row_limit,
    )


@router.get("/summary", response_model=ObservabilitySummary)
async def get_observability_summary(
    session: SessionDep,
    tenant_id: TenantDep,
    settings: SettingsDep,
) -> ObservabilitySummary:
    return await _service(session, settings).summarize(tenant_id)


@router.get("/alerts", response_model=AlertsResponse)
async def get_observability_alerts(
    session: SessionDep,
    tenant_id: TenantDep,
    settings: SettingsDep,
) -> AlertsResponse:
    summary = await _service(session, settings).summarize(tenant_id)
    return AlertsResponse(tenant_id=tenant_id, alerts=summary.alerts)
