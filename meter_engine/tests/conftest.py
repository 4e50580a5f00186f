"""Shared fixtures for meter_engine tests."""

from __future__ import annotations

import pytest_asyncio
from meter_engine.state.database import get_session_factory
from meter_engine.state.sqlite_adapter import create_local_tables, get_local_engine


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with all tables created."""
    eng = get_local_engine(":memory:")
    await create_local_tables(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return get_session_factory(engine)


@pytest_asyncio.fixture
async def async_session(session_factory):
    """Provide an async session backed by the in-memory database."""
    async with session_factory() as session:
        yield session
