"""Repository classes providing access to the usage store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``session_scope`` context manager).

Metric keys cross this boundary flattened: writes encode a
:class:`~meter_engine.observability.codec.MetricKey` and reads decode it.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Date, cast, func, literal_column, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from meter_engine.metering.events import UsageEvent
from meter_engine.metering.measurement import measured_quantity
from meter_engine.metering.quotas import QuotaMeasurement
from meter_engine.metering.rollup import RollupMetric
from meter_engine.observability.codec import MetricKey, decode_metric_key
from meter_engine.observability.metrics import MetricSample
from meter_engine.observability.series import DailyMetric, MetricPoint
from meter_engine.state.tables import TenantTable, UsageEventTable, UsageMetricTable

logger = logging.getLogger(__name__)


def _metric_id() -> str:
    return f"met-{uuid.uuid4().hex[:12]}"


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str],
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names to update when a conflict occurs.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: values[col] for col in update_columns},
        )
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# TenantRepository
# ---------------------------------------------------------------------------


class TenantRepository:
    """Read access to the tenant directory (and writes for provisioning tools)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_tenants(self) -> list[TenantTable]:
        """Return every known tenant ordered by id."""
        stmt = select(TenantTable).order_by(TenantTable.tenant_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get(self, tenant_id: str) -> TenantTable | None:
        result = await self._session.execute(select(TenantTable).where(TenantTable.tenant_id == tenant_id))
        return result.scalar_one_or_none()

    async def get_tier(self, tenant_id: str) -> str | None:
        """Return the raw stored tier, or ``None`` for an unknown tenant."""
        stmt = select(TenantTable.tier).where(TenantTable.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, tenant_id: str, tier: str, name: str = "") -> None:
        await _dialect_upsert(
            self._session,
            TenantTable,
            values={
                "tenant_id": tenant_id,
                "name": name,
                "tier": tier,
                "created_at": datetime.now(UTC),
            },
            index_elements=["tenant_id"],
            update_columns=["name", "tier"],
        )
        await self._session.flush()


# ---------------------------------------------------------------------------
# UsageEventRepository (tenant-scoped)
# ---------------------------------------------------------------------------


class UsageEventRepository:
    """Append-only writes and range reads on ``usage_events``."""

    def __init__(self, session: AsyncSession, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def record(self, event: UsageEvent) -> UsageEventTable:
        """Persist *event*; the event's tenant must match the repository's."""
        if event.tenant_id != self._tenant_id:
            raise ValueError(f"Event tenant {event.tenant_id!r} does not match repository tenant {self._tenant_id!r}")
        row = UsageEventTable(
            event_id=event.event_id,
            tenant_id=self._tenant_id,
            event_type=event.event_type,
            quantity=event.quantity,
            metadata_json=event.metadata or None,
            occurred_at=event.occurred_at,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_between(
        self,
        start: datetime,
        end: datetime | None = None,
        event_type: str | None = None,
    ) -> list[UsageEvent]:
        """Return events with ``start <= occurred_at < end``, oldest first."""
        stmt = select(UsageEventTable).where(
            UsageEventTable.tenant_id == self._tenant_id,
            UsageEventTable.occurred_at >= start,
        )
        if end is not None:
            stmt = stmt.where(UsageEventTable.occurred_at < end)
        if event_type is not None:
            stmt = stmt.where(UsageEventTable.event_type == event_type)
        stmt = stmt.order_by(UsageEventTable.occurred_at)
        result = await self._session.execute(stmt)
        return [_event_from_row(row) for row in result.scalars().all()]

    async def sum_measured(
        self,
        event_type: str,
        start: datetime,
        end: datetime,
        measurement: QuotaMeasurement = "events",
    ) -> float:
        """Sum the measured quantity of *event_type* events in ``[start, end)``.

        Summed row by row so the token and minimum-of-one rules match the
        rollup exactly.
        """
        stmt = select(UsageEventTable.quantity, UsageEventTable.metadata_json).where(
            UsageEventTable.tenant_id == self._tenant_id,
            UsageEventTable.event_type == event_type,
            UsageEventTable.occurred_at >= start,
            UsageEventTable.occurred_at < end,
        )
        result = await self._session.execute(stmt)
        return sum(
            (measured_quantity(row.quantity, row.metadata_json, measurement) for row in result.all()),
            0.0,
        )

    async def count(self, event_type: str | None = None) -> int:
        stmt = select(func.count()).select_from(UsageEventTable).where(UsageEventTable.tenant_id == self._tenant_id)
        if event_type is not None:
            stmt = stmt.where(UsageEventTable.event_type == event_type)
        result = await self._session.execute(stmt)
        return int(result.scalar_one() or 0)


def _event_from_row(row: UsageEventTable) -> UsageEvent:
    return UsageEvent(
        event_id=row.event_id,
        tenant_id=row.tenant_id,
        event_type=row.event_type,
        quantity=row.quantity,
        metadata=row.metadata_json or {},
        occurred_at=row.occurred_at,
    )


# ---------------------------------------------------------------------------
# UsageMetricRepository (tenant-scoped)
# ---------------------------------------------------------------------------


class UsageMetricRepository:
    """Writes and windowed reads on ``usage_metrics``."""

    def __init__(self, session: AsyncSession, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def record_samples(self, samples: Iterable[MetricSample]) -> int:
        """Insert one row per instrumentation sample.  Returns the row count."""
        rows = [
            UsageMetricTable(
                id=_metric_id(),
                tenant_id=self._tenant_id,
                metric=sample.key.encode(),
                value=sample.value,
                occurred_at=sample.occurred_at,
            )
            for sample in samples
        ]
        if not rows:
            return 0
        self._session.add_all(rows)
        await self._session.flush()
        return len(rows)

    async def upsert_rollup(self, rollup: RollupMetric) -> None:
        """Write *rollup*, overwriting any row with the same key and bucket start."""
        now = datetime.now(UTC)
        await _dialect_upsert(
            self._session,
            UsageMetricTable,
            values={
                "id": _metric_id(),
                "tenant_id": self._tenant_id,
                "metric": rollup.key.encode(),
                "value": rollup.value,
                "metadata_json": rollup.metadata,
                "occurred_at": rollup.occurred_at,
                "updated_at": now,
            },
            index_elements=["tenant_id", "metric", "occurred_at"],
            update_columns=["value", "metadata_json", "updated_at"],
        )

    async def get_value(self, key: MetricKey, occurred_at: datetime) -> float | None:
        stmt = select(UsageMetricTable.value).where(
            UsageMetricTable.tenant_id == self._tenant_id,
            UsageMetricTable.metric == key.encode(),
            UsageMetricTable.occurred_at == occurred_at,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def recent(self, limit: int = 100) -> list[UsageMetricTable]:
        """Return the most recent rows, newest first."""
        stmt = (
            select(UsageMetricTable)
            .where(UsageMetricTable.tenant_id == self._tenant_id)
            .order_by(UsageMetricTable.occurred_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    def _utc_day(self) -> Any:
        """SQL expression for the UTC calendar date of ``occurred_at``."""
        bind = self._session.get_bind()
        dialect_name = getattr(getattr(bind, "dialect", None), "name", "")
        if "postgresql" in str(dialect_name):
            return cast(func.timezone(literal_column("'UTC'"), UsageMetricTable.occurred_at), Date)
        # SQLite stores naive UTC text.
        return func.date(UsageMetricTable.occurred_at)

    async def daily_totals(self, start: datetime, end: datetime) -> list[DailyMetric]:
        """Return per-key, per-UTC-day sums and row counts for ``[start, end]``."""
        day = self._utc_day().label("day")
        stmt = (
            select(
                UsageMetricTable.metric,
                day,
                func.sum(UsageMetricTable.value).label("total"),
                func.count().label("samples"),
            )
            .where(
                UsageMetricTable.tenant_id == self._tenant_id,
                UsageMetricTable.occurred_at >= start,
                UsageMetricTable.occurred_at <= end,
            )
            .group_by(UsageMetricTable.metric, "day")
            .order_by("day", UsageMetricTable.metric)
        )
        result = await self._session.execute(stmt)
        return [
            DailyMetric(
                key=decode_metric_key(row.metric),
                date=row.day if isinstance(row.day, str) else row.day.isoformat(),
                value=float(row.total or 0.0),
                samples=int(row.samples),
            )
            for row in result.all()
        ]

    async def window_points(
        self,
        start: datetime,
        end: datetime,
        limit: int = 5000,
        *,
        names: Iterable[str] | None = None,
    ) -> list[MetricPoint]:
        """Return decoded points in ``[start, end]``, oldest first.

        *names* restricts the rows to those metric names, with or without a
        dimension.  The newest *limit* rows are kept when the window holds more.
        """
        stmt = select(UsageMetricTable.metric, UsageMetricTable.value, UsageMetricTable.occurred_at).where(
            UsageMetricTable.tenant_id == self._tenant_id,
            UsageMetricTable.occurred_at >= start,
            UsageMetricTable.occurred_at <= end,
        )
        if names is not None:
            stmt = stmt.where(
                or_(
                    *(
                        or_(
                            UsageMetricTable.metric == name,
                            UsageMetricTable.metric.startswith(MetricKey(name, "").encode(), autoescape=True),
                        )
                        for name in names
                    )
                )
            )
        stmt = stmt.order_by(UsageMetricTable.occurred_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        points = [
            MetricPoint(key=decode_metric_key(row.metric), value=float(row.value), occurred_at=row.occurred_at)
            for row in result.all()
        ]
        points.reverse()
        if len(points) == limit:
            logger.debug("Observability window truncated to %d rows for tenant=%s", limit, self._tenant_id)
        return points
