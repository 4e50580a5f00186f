"""Shared fixtures for salon metering API tests.

Every test gets its own SQLite file so request sessions and the
instrumentation writer use separate connections, as they do in
production.  The FastAPI app is wired to it by pointing the dependency
module's session factory at the test engine.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from meter_engine.metering.events import UsageEvent
from meter_engine.observability.metrics import MetricBuffer, MetricSample
from meter_engine.state.database import session_scope
from meter_engine.state.repository import TenantRepository, UsageEventRepository, UsageMetricRepository
from meter_engine.state.sqlite_adapter import create_local_tables, get_local_engine
from meter_engine.state.tables import TenantTable
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from api import dependencies
from api.config import APISettings
from api.dependencies import get_settings
from api.main import create_app
from api.middleware.instrumentation import record_request_metrics

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    eng = get_local_engine(tmp_path / "state.db")
    await create_local_tables(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as s:
        yield s


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------


class Seeder:
    """Writes tenants, usage events and metric rows in committed sessions."""

    def __init__(self, factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = factory

    async def tenant(self, tenant_id: str, tier: str | None = "starter") -> None:
        async with session_scope(self._factory) as s:
            await TenantRepository(s).upsert(tenant_id, tier or "starter", name=tenant_id.title())
            if tier is None:
                await s.execute(update(TenantTable).where(TenantTable.tenant_id == tenant_id).values(tier=None))

    async def events(
        self,
        tenant_id: str,
        event_type: str,
        count: int,
        occurred_at: datetime,
        *,
        quantity: float = 1,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        async with session_scope(self._factory) as s:
            repo = UsageEventRepository(s, tenant_id)
            for _ in range(count):
                await repo.record(
                    UsageEvent(
                        tenant_id=tenant_id,
                        event_type=event_type,
                        quantity=quantity,
                        metadata=metadata or {},
                        occurred_at=occurred_at,
                    )
                )

    async def degraded_metrics(self, tenant_id: str, end: datetime) -> None:
        """Four days of request metrics whose error rate and latency jump on the last day."""
        buffer = MetricBuffer()
        for days_ago in range(3, -1, -1):
            moment = end - timedelta(days=days_ago, hours=1)
            buffer.record("api.request.count", 100, occurred_at=moment)
            buffer.record("api.request.error_count", 10 if days_ago == 0 else 1, occurred_at=moment)
            buffer.record("api.request.duration_ms", 300 if days_ago == 0 else 100, occurred_at=moment)
        async with session_scope(self._factory) as s:
            await UsageMetricRepository(s, tenant_id).record_samples(buffer.drain())

    async def request_traffic(
        self,
        tenant_id: str,
        end: datetime,
        *,
        requests_per_day: int,
        last_day_error_share: float,
        days: int = 4,
    ) -> None:
        """Per-request rows as the instrumentation writes them, one second apart."""
        samples: list[MetricSample] = []
        for days_ago in range(days - 1, -1, -1):
            moment = end - timedelta(days=days_ago, hours=1)
            failing = int(requests_per_day * last_day_error_share) if days_ago == 0 else 0
            for i in range(requests_per_day):
                buffer = MetricBuffer()
                record_request_metrics(buffer, "GET", "/api/v1/usage/overview", 500 if i < failing else 200, 120.0)
                at = moment + timedelta(seconds=i)
                samples.extend(replace(sample, occurred_at=at) for sample in buffer.drain())
        async with session_scope(self._factory) as s:
            await UsageMetricRepository(s, tenant_id).record_samples(samples)

    async def channel_messaging(self, tenant_id: str, end: datetime, failures: list[int], channel: str = "sms") -> None:
        """Daily outbound messaging outcomes recorded only with a channel dimension."""
        buffer = MetricBuffer()
        for days_ago, failed in zip(range(len(failures) - 1, -1, -1), failures, strict=True):
            moment = end - timedelta(days=days_ago, hours=1)
            buffer.record("messaging.outbound.success", 10, channel, occurred_at=moment)
            buffer.record("messaging.outbound.failure", failed, channel, occurred_at=moment)
        async with session_scope(self._factory) as s:
            await UsageMetricRepository(s, tenant_id).record_samples(buffer.drain())


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def now() -> datetime:
    """Current time truncated to the hour, for data the API reads relative to now."""
    return datetime.now(UTC).replace(minute=0, second=0, microsecond=0)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path) -> APISettings:
    """Return a settings object suitable for testing."""
    return APISettings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'state.db'}",
        cors_origins=["http://localhost:3000"],
    )


@pytest_asyncio.fixture
async def app(session_factory, test_settings: APISettings, monkeypatch):
    """FastAPI app bound to the per-test database."""
    monkeypatch.setattr(dependencies, "_session_factory", session_factory)
    application = create_app()
    application.dependency_overrides[get_settings] = lambda: test_settings
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
