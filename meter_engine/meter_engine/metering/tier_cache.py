"""Scoped cache of resolved tenant tiers.

A :class:`TierCache` lives for one request or one scheduled sweep and is
passed explicitly to whatever needs tier lookups.  Nothing here is
module-level, so a long-running worker never serves a stale tier.
"""

from __future__ import annotations

from meter_engine.metering.quotas import TenantTier


class TierCache:
    """Maps tenant id to its resolved tier for the lifetime of one cycle."""

    def __init__(self) -> None:
        self._tiers: dict[str, TenantTier] = {}

    def get(self, tenant_id: str) -> TenantTier | None:
        return self._tiers.get(tenant_id)

    def set(self, tenant_id: str, tier: TenantTier | str | None) -> TenantTier:
        resolved = TenantTier.parse(tier)
        self._tiers[tenant_id] = resolved
        return resolved

    def clear(self) -> None:
        self._tiers.clear()

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._tiers

    def __len__(self) -> int:
        return len(self._tiers)
