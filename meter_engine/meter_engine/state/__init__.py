"""Usage store persistence layer (PostgreSQL or SQLite)."""

from meter_engine.state.database import get_engine, get_session_factory, session_scope
from meter_engine.state.repository import TenantRepository, UsageEventRepository, UsageMetricRepository

__all__ = [
    "TenantRepository",
    "UsageEventRepository",
    "UsageMetricRepository",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
