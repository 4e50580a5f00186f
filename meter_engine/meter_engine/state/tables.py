"""SQLAlchemy 2.0 ORM table definitions for the usage store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for ``create_all`` in local mode and
for the repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Cross-dialect JSON type: uses JSONB on PostgreSQL for GIN indexing and
# query operators, falls back to plain JSON (stored as TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


class _UTCDateTime(TypeDecorator):
    """Timestamp column that always binds UTC and always returns UTC-aware.

    SQLite stores naive text, so values are normalised to UTC before the
    offset is dropped and re-attached on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all usage-store tables."""


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


class TenantTable(Base):
    """Tenant directory with the subscribed service tier.

    Owned by tenant management; the metering engine only reads it.
    """

    __tablename__ = "tenants"

    tenant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    tier: Mapped[str | None] = mapped_column(String(32), nullable=True, default="starter")
    created_at: Mapped[datetime] = mapped_column(_UTCDateTime(), default=_utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Usage metering
# ---------------------------------------------------------------------------


class UsageEventTable(Base):
    """Append-only metered usage events.

    Each row captures one completed metered action (booking created,
    message sent, AI request, API call) with its quantity and metadata.
    """

    __tablename__ = "usage_events"

    event_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[float] = mapped_column(Numeric(18, 4, asdecimal=False), default=1, nullable=False)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(_UTCDateTime(), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_usage_events_tenant_type_occurred", "tenant_id", "event_type", "occurred_at"),
        Index("ix_usage_events_tenant_occurred", "tenant_id", "occurred_at"),
    )


class UsageMetricTable(Base):
    """Time-stamped numeric observations keyed by a flattened metric key.

    Written per request by instrumentation and per period by the usage
    rollup.  Rollup rows are upserted on ``(tenant_id, metric, occurred_at)``.
    """

    __tablename__ = "usage_metrics"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    metric: Mapped[str] = mapped_column(String(512), nullable=False)
    value: Mapped[float] = mapped_column(Numeric(20, 6, asdecimal=False), nullable=False, default=0)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(_UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        _UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "metric", "occurred_at", name="uq_usage_metrics_tenant_metric_occurred"),
        Index("ix_usage_metrics_tenant_occurred", "tenant_id", "occurred_at"),
    )
