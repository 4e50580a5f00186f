"""Request instrumentation -- persists ``api.request.*`` metrics per tenant.

Every non-skipped request gets a :class:`MetricBuffer` on
``request.state.metrics``.  Handlers may add their own samples (e.g. the
messaging layer records ``messaging.outbound.success``).  When the
response is ready the middleware appends::

    api.request.count        1             total and "METHOD /path"
    api.request.duration_ms  elapsed ms    total and "METHOD /path"
    api.request.error_count  1 (>= 400)    total and "METHOD /path"

and writes the buffer in a fresh session once the body has been sent.
Persistence failures are logged and never change the response.
"""

from __future__ import annotations

import logging
import time

from meter_engine.observability.metrics import MetricBuffer
from meter_engine.observability.summary import (
    REQUEST_COUNT_METRIC,
    REQUEST_DURATION_METRIC,
    REQUEST_ERROR_METRIC,
)
from meter_engine.state.database import session_scope
from meter_engine.state.repository import UsageMetricRepository
from sqlalchemy.exc import SQLAlchemyError
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from api.middleware.prometheus import normalise_path

logger = logging.getLogger(__name__)

# Paths that should NOT generate request metrics (probes, docs, metrics).
_SKIP_PATHS: frozenset[str] = frozenset(
    {
        "/docs",
        "/redoc",
        "/openapi.json",
        "/favicon.ico",
        "/ready",
        "/metrics",
        "/api/v1/health",
    }
)


def record_request_metrics(buffer: MetricBuffer, method: str, path: str, status_code: int, duration_ms: float) -> None:
    """Append the per-request counters to *buffer*."""
    route = f"{method} {normalise_path(path)}"
    buffer.record_with_total(REQUEST_COUNT_METRIC, 1, route)
    buffer.record_with_total(REQUEST_DURATION_METRIC, duration_ms, route)
    if status_code >= 400:
        buffer.record_with_total(REQUEST_ERROR_METRIC, 1, route)


class InstrumentationMiddleware(BaseHTTPMiddleware):
    """Buffer request metrics and persist them for the request's tenant.

    The session factory is resolved lazily at request time because
    middleware instances are constructed in ``create_app()`` before the
    lifespan initialises the engine.
    """

    def __init__(self, app: ASGIApp, enabled: bool = True) -> None:
        super().__init__(app)
        self._enabled = enabled

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path.rstrip("/") or "/"
        buffer = MetricBuffer()
        request.state.metrics = buffer

        if not self._enabled or path in _SKIP_PATHS:
            return await call_next(request)

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            self._finish(request, buffer, path, 500, start)
            tenant_id = getattr(request.state, "tenant_id", None)
            if tenant_id:
                await self._persist(tenant_id, buffer)
            raise

        self._finish(request, buffer, path, response.status_code, start)
        tenant_id = getattr(request.state, "tenant_id", None)
        if tenant_id:
            # Written after the body is sent so the handler's session has committed.
            response.background = BackgroundTask(self._persist, tenant_id, buffer)
        return response

    @staticmethod
    def _finish(request: Request, buffer: MetricBuffer, path: str, status_code: int, start: float) -> None:
        duration_ms = round((time.monotonic() - start) * 1000, 2)
        record_request_metrics(buffer, request.method, path, status_code, duration_ms)

    async def _persist(self, tenant_id: str, buffer: MetricBuffer) -> None:
        try:
            from api.dependencies import get_session_factory

            factory = get_session_factory()
        except RuntimeError:
            # Engine not initialised yet (startup) or already disposed.
            return

        samples = buffer.drain()
        try:
            async with session_scope(factory) as session:
                await UsageMetricRepository(session, tenant_id).record_samples(samples)
        except SQLAlchemyError:
            logger.warning(
                "Failed to persist %d request metric(s) tenant=%s",
                len(samples),
                tenant_id,
                exc_info=True,
                extra={"tenant_id": tenant_id},
            )
