"""Usage event definitions for the metering pipeline.

Each event represents one metered action a tenant completed.  Events are
appended to the ``usage_events`` table once the action succeeds and are
read back only for quota calculations and the periodic rollup.
"""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class UsageEventType(str, Enum):
    """Well-known metered event types.

    Event types are open string keys; these are the ones the platform emits.
    """

    BOOKING_CREATED = "booking.created"
    MESSAGE_SENT = "message.sent"
    AI_REQUEST = "ai.request"
    API_CALL = "api.call"
    REMINDER_QUEUED = "reminder.queued"


class UsageEvent(BaseModel):
    """A single usage event for metering.

    Attributes
    ----------
    event_id:
        Unique identifier for this event.
    tenant_id:
        The tenant that generated this event.
    event_type:
        String key of the metered action (see :class:`UsageEventType`).
    quantity:
        Units consumed.  Missing, non-numeric or negative values become 1.
    metadata:
        Additional context.  Token-measured events carry ``tokens`` here.
    occurred_at:
        When the action happened (UTC).
    """

    event_id: str = Field(default_factory=lambda: f"evt-{uuid.uuid4().hex[:12]}")
    tenant_id: str = Field(..., min_length=1, max_length=128)
    event_type: str = Field(..., min_length=1, max_length=64)
    quantity: float = 1.0
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("event_type", mode="before")
    @classmethod
    def coerce_event_type(cls, v: Any) -> Any:
        if isinstance(v, UsageEventType):
            return v.value
        return v

    @field_validator("quantity", mode="before")
    @classmethod
    def coerce_quantity(cls, v: Any) -> float:
        if v is None or isinstance(v, bool):
            return 1.0
        if isinstance(v, (int, float, Decimal)):
            value = float(v)
        elif isinstance(v, str):
            try:
                value = float(v)
            except ValueError:
                return 1.0
        else:
            return 1.0
        if not math.isfinite(value) or value < 0:
            return 1.0
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def coerce_metadata(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("occurred_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)
