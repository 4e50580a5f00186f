"""Tests for the scheduled usage rollup."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from meter_engine.metering.errors import StoreUnavailableError
from meter_engine.observability.codec import MetricKey
from meter_engine.state.repository import TenantRepository, UsageEventRepository, UsageMetricRepository
from meter_engine.state.tables import UsageMetricTable
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from api.services.usage_aggregator import UsageAggregator

REF = datetime(2026, 6, 15, 12, 0, tzinfo=UTC)
MONTH_START = datetime(2026, 6, 1, tzinfo=UTC)
DAY_START = datetime(2026, 6, 15, tzinfo=UTC)


async def _value(factory, tenant_id: str, key: MetricKey, occurred_at: datetime) -> float | None:
    async with factory() as s:
        return await UsageMetricRepository(s, tenant_id).get_value(key, occurred_at)


async def _row_count(factory) -> int:
    async with factory() as s:
        return await s.scalar(select(func.count()).select_from(UsageMetricTable))


class TestUsageAggregator:
    @pytest.mark.asyncio
    async def test_rolls_up_month_and_day(self, session_factory, seed) -> None:
        await seed.tenant("salon-1", "growth")
        await seed.events("salon-1", "booking.created", 3, MONTH_START + timedelta(days=2))
        await seed.events("salon-1", "booking.created", 2, REF - timedelta(hours=2))
        await seed.events("salon-1", "ai.request", 1, REF - timedelta(hours=2), metadata={"tokens": 900})

        report = await UsageAggregator(session_factory).run(REF)

        assert report.ok
        assert report.tenants_processed == 1
        assert report.metrics_written == 8
        key = MetricKey("usage.month", "booking.created")
        assert await _value(session_factory, "salon-1", key, MONTH_START) == 5
        assert await _value(session_factory, "salon-1", MetricKey("usage.day", "booking.created"), DAY_START) == 2
        assert await _value(session_factory, "salon-1", MetricKey("usage.month", "ai.request"), MONTH_START) == 900

    @pytest.mark.asyncio
    async def test_rerun_overwrites(self, session_factory, seed) -> None:
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-1", "message.sent", 4, REF - timedelta(hours=1))
        aggregator = UsageAggregator(session_factory)

        await aggregator.run(REF)
        rows_after_first = await _row_count(session_factory)
        await seed.events("salon-1", "message.sent", 1, REF - timedelta(minutes=5))
        await aggregator.run(REF)

        assert await _row_count(session_factory) == rows_after_first
        key = MetricKey("usage.month", "message.sent")
        assert await _value(session_factory, "salon-1", key, MONTH_START) == 5

    @pytest.mark.asyncio
    async def test_rollup_metadata(self, session_factory, seed) -> None:
        await seed.tenant("salon-1", "scale")
        await UsageAggregator(session_factory).run(REF)
        async with session_factory() as s:
            rows = await UsageMetricRepository(s, "salon-1").recent()
        month_bookings = next(r for r in rows if r.metric == "usage.month::booking.created")
        assert month_bookings.metadata_json["tier"] == "scale"
        assert month_bookings.metadata_json["limit"] is None
        assert month_bookings.value == 0

    @pytest.mark.asyncio
    async def test_failure_for_one_tenant_does_not_stop_sweep(self, session_factory, seed, monkeypatch) -> None:
        await seed.tenant("salon-bad", "starter")
        await seed.tenant("salon-good", "starter")
        await seed.events("salon-good", "booking.created", 2, REF - timedelta(hours=1))

        original = UsageEventRepository.list_between

        async def flaky(self, *args, **kwargs):
            if self._tenant_id == "salon-bad":
                raise RuntimeError("corrupt event row")
            return await original(self, *args, **kwargs)

        monkeypatch.setattr(UsageEventRepository, "list_between", flaky)
        report = await UsageAggregator(session_factory).run(REF)

        assert not report.ok
        assert report.failures == {"salon-bad": "corrupt event row"}
        assert report.tenants_processed == 1
        key = MetricKey("usage.month", "booking.created")
        assert await _value(session_factory, "salon-good", key, MONTH_START) == 2
        assert await _value(session_factory, "salon-bad", key, MONTH_START) is None

    @pytest.mark.asyncio
    async def test_directory_unreachable(self, session_factory, monkeypatch) -> None:
        async def down(self):
            raise OperationalError("SELECT", {}, ConnectionRefusedError("refused"))

        monkeypatch.setattr(TenantRepository, "list_tenants", down)
        with pytest.raises(StoreUnavailableError, match="tenant listing"):
            await UsageAggregator(session_factory).run(REF)

    @pytest.mark.asyncio
    async def test_no_tenants(self, session_factory) -> None:
        report = await UsageAggregator(session_factory).run(REF)
        assert report.ok
        assert report.tenants_processed == 0
        assert report.metrics_written == 0
