"""Tenant context middleware.

Tenant identity is established upstream (the edge gateway authenticates
the caller) and forwarded in the ``X-Tenant-ID`` header.  This middleware
validates it and exposes it as ``request.state.tenant_id``; a request
without the header simply has no tenant context.
"""

from __future__ import annotations

import logging
import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"

# Alphanumeric, hyphens, underscores, 1-128 chars.
TENANT_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{1,128}$")


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Populate ``request.state.tenant_id`` from the tenant header."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        raw = request.headers.get(TENANT_HEADER)
        request.state.tenant_id = None

        if raw is not None:
            tenant_id = raw.strip()
            if not TENANT_ID_RE.match(tenant_id):
                logger.warning("Rejected malformed tenant header on %s", request.url.path)
                return JSONResponse(status_code=400, content={"detail": "Invalid tenant identifier"})
            request.state.tenant_id = tenant_id

        return await call_next(request)
