"""Usage metering: event model, quota policy and the shared measurement rules.

Separate from observability (request and messaging health metrics).
"""

from meter_engine.metering.errors import QuotaExceededError, StoreUnavailableError
from meter_engine.metering.events import UsageEvent, UsageEventType
from meter_engine.metering.quotas import QuotaDefinition, TenantTier, limits_for
from meter_engine.metering.tier_cache import TierCache

__all__ = [
    "QuotaDefinition",
    "QuotaExceededError",
    "StoreUnavailableError",
    "TenantTier",
    "TierCache",
    "UsageEvent",
    "UsageEventType",
    "limits_for",
]
