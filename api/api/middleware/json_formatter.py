"""JSON log formatter.

Emits each log record as a single-line JSON object so log aggregators
can index fields without regex parsing.

Activate by setting ``API_STRUCTURED_LOGGING=true`` (API) or
``METER_STRUCTURED_LOGGING=true`` (CLI jobs).

Output schema per line::

    {
        "timestamp": "2026-05-15T12:34:56.789012+00:00",
        "level": "WARNING",
        "logger": "api.services.observability_service",
        "message": "Anomaly detected tenant=salon-1 ...",
        "tenant_id": "salon-1",       // present when passed via extra
        "alert": { ... },             // present on anomaly-sweep warnings
        "request": { ... },           // present when emitted by RequestLoggingMiddleware
        "exc_info": "Traceback ..."   // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# ``extra`` attributes copied into the JSON payload when present.
_EXTRA_FIELDS: tuple[str, ...] = ("tenant_id", "job", "alert", "request")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_json_logging(level: int = logging.INFO) -> None:
    """Replace the root handlers with a single JSON ``StreamHandler``."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
