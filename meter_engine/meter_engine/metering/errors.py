"""Exceptions raised by the metering layer."""

from __future__ import annotations

from typing import Any


class QuotaExceededError(Exception):
    """Raised when a metered action would push a tenant past its plan limit."""

    def __init__(
        self,
        event_type: str,
        label: str,
        limit: float,
        used: float,
        attempted: float,
        tenant_id: str | None = None,
    ) -> None:
        self.event_type = event_type
        self.label = label
        self.limit = limit
        self.used = used
        self.attempted = attempted
        self.tenant_id = tenant_id
        super().__init__(f"{label} quota exceeded")

    def to_dict(self) -> dict[str, Any]:
        return {
            "detail": str(self),
            "code": "quota_exceeded",
            "event_type": self.event_type,
            "limit": self.limit,
            "used": self.used,
            "attempted": self.attempted,
        }


class StoreUnavailableError(Exception):
    """Raised when the usage store cannot be read or written.

    Always chained to the driver error that caused it.
    """

    def __init__(self, operation: str, tenant_id: str | None = None) -> None:
        self.operation = operation
        self.tenant_id = tenant_id
        target = f" for tenant '{tenant_id}'" if tenant_id else ""
        super().__init__(f"Usage store unavailable during {operation}{target}")
