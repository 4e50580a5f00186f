"""Shared fixtures for CLI tests.

Each test points the CLI at its own SQLite file through ``--database-url``
and seeds it directly through the repositories.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest
from meter_engine.metering.events import UsageEvent
from meter_engine.state.database import session_scope
from meter_engine.state.repository import TenantRepository, UsageEventRepository
from meter_engine.state.sqlite_adapter import create_local_tables, get_local_engine
from sqlalchemy.ext.asyncio import async_sessionmaker


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "state.db"


@pytest.fixture
def db_url(db_path) -> str:
    return f"sqlite+aiosqlite:///{db_path}"


@pytest.fixture
def seed_store(db_path):
    """Return a function that creates tables, tenants and current-period events."""

    def _seed(tenants: dict[str, str], events: dict[str, dict[str, int]] | None = None) -> None:
        async def _main() -> None:
            engine = get_local_engine(db_path)
            try:
                await create_local_tables(engine)
                factory = async_sessionmaker(engine, expire_on_commit=False)
                async with session_scope(factory) as session:
                    for tenant_id, tier in tenants.items():
                        await TenantRepository(session).upsert(tenant_id, tier)
                    now = datetime.now(UTC)
                    for tenant_id, counts in (events or {}).items():
                        repo = UsageEventRepository(session, tenant_id)
                        for event_type, count in counts.items():
                            for _ in range(count):
                                await repo.record(UsageEvent(tenant_id=tenant_id, event_type=event_type, occurred_at=now))
            finally:
                await engine.dispose()

        asyncio.run(_main())

    return _seed
