"""Access logging for the metering API.

One ``api.access`` record per request, carrying the resolved tenant, the
normalised route and a correlation id.  Quota rejections (429) are logged
as their own event at INFO; they are expected traffic, not client errors.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from api.middleware.prometheus import normalise_path

logger = logging.getLogger("api.access")

_MASKED_HEADERS: frozenset[str] = frozenset({"authorization", "x-api-key", "cookie"})
_MASK = "***"

CORRELATION_HEADER = "X-Correlation-ID"


def _log_level(status_code: int) -> tuple[int, str]:
    if status_code == 429:
        return logging.INFO, "quota rejected"
    if status_code >= 500:
        return logging.ERROR, "request failed"
    if status_code >= 400:
        return logging.WARNING, "request rejected"
    return logging.INFO, "request completed"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, route, status, duration and tenant for every request.

    The correlation id comes from ``X-Correlation-ID`` or is a fresh UUID-4;
    it is stored on ``request.state`` and echoed back on the response.  The
    payload travels as ``extra={"request": ...}`` so the JSON formatter can
    emit it as a nested object.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        start = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            payload: dict[str, Any] = {
                "method": request.method,
                "path": request.url.path,
                "route": normalise_path(request.url.path),
                "status_code": status_code,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
                "client": request.client.host if request.client else None,
                "correlation_id": correlation_id,
                "tenant_id": getattr(request.state, "tenant_id", None) or "anonymous",
                "headers": {
                    key: _MASK if key.lower() in _MASKED_HEADERS else value for key, value in request.headers.items()
                },
            }
            level, message = _log_level(status_code)
            logger.log(level, message, extra={"request": payload})
