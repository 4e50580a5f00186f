"""Static quota policy table keyed by tenant tier.

Each tier maps a metered event type to exactly one :class:`QuotaDefinition`.
An event type absent from a tier's map is unmetered for that tier, which is
treated the same as an explicit ``limit=None`` (never rejected).

Tier defaults::

    starter:  bookings=100/mo,   messages=250/mo,    ai tokens=50_000/mo,    api=1_000/day
    growth:   bookings=1_000/mo, messages=2_000/mo,  ai tokens=500_000/mo,   api=10_000/day
    scale:    bookings=unlimited, messages=20_000/mo, ai tokens=5_000_000/mo, api=unlimited

An unknown or missing tier resolves to ``starter``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Literal

QuotaPeriod = Literal["day", "month"]
QuotaMeasurement = Literal["events", "tokens"]


class TenantTier(str, Enum):
    """Service levels a tenant can subscribe to."""

    STARTER = "starter"
    GROWTH = "growth"
    SCALE = "scale"

    @classmethod
    def parse(cls, value: object) -> TenantTier:
        """Resolve *value* to a tier, falling back to the most restrictive one."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return MOST_RESTRICTIVE_TIER


MOST_RESTRICTIVE_TIER = TenantTier.STARTER


@dataclass(frozen=True)
class QuotaDefinition:
    """A numeric cap on one event type within a day or month."""

    event_type: str
    label: str
    period: QuotaPeriod
    measurement: QuotaMeasurement = "events"
    limit: float | None = None

    @property
    def unbounded(self) -> bool:
        return self.limit is None


def _policy(
    bookings: float | None,
    messages: float | None,
    ai_tokens: float | None,
    api_calls: float | None,
) -> Mapping[str, QuotaDefinition]:
    definitions = (
        QuotaDefinition("booking.created", "Bookings", "month", "events", bookings),
        QuotaDefinition("message.sent", "Messages", "month", "events", messages),
        QuotaDefinition("ai.request", "AI tokens", "month", "tokens", ai_tokens),
        QuotaDefinition("api.call", "API calls", "day", "events", api_calls),
    )
    return MappingProxyType({d.event_type: d for d in definitions})


# ---------------------------------------------------------------------------
# Tier defaults
# ---------------------------------------------------------------------------

_TIER_LIMITS: Mapping[TenantTier, Mapping[str, QuotaDefinition]] = MappingProxyType(
    {
        TenantTier.STARTER: _policy(100, 250, 50_000, 1_000),
        TenantTier.GROWTH: _policy(1_000, 2_000, 500_000, 10_000),
        TenantTier.SCALE: _policy(None, 20_000, 5_000_000, None),
    }
)

TRACKED_EVENT_TYPES: frozenset[str] = frozenset(
    event_type for limits in _TIER_LIMITS.values() for event_type in limits
)


def limits_for(tier: TenantTier | str | None) -> Mapping[str, QuotaDefinition]:
    """Return the quota definitions for *tier*.

    Unknown tiers fall back to the most restrictive configured tier so that
    a bad tenant record never fails open.
    """
    return _TIER_LIMITS[TenantTier.parse(tier)]


def definition_for(tier: TenantTier | str | None, event_type: str) -> QuotaDefinition | None:
    """Return the definition for *event_type* under *tier*, or ``None`` if unmetered."""
    return limits_for(tier).get(event_type)
