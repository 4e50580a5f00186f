"""Usage ledger: pre-action quota checks and usage event recording.

Metered actions follow check -> act -> record::

    ledger = UsageLedger(session, tier_cache)
    await ledger.check_quota(tenant_id, "booking.created")   # raises QuotaExceededError
    booking = await create_booking(...)
    await ledger.record_event(tenant_id, "booking.created")

or, equivalently, ``async with ledger.admit(tenant_id, "booking.created"):``.

The check is advisory-before-action, not transactional.  Two concurrent
requests can both read a ``used`` value under the limit and both proceed,
overshooting by at most the smaller requested amount.  This is accepted;
no locking is taken.
"""

from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import UTC, datetime
from typing import Any

from meter_engine.metering.errors import QuotaExceededError, StoreUnavailableError
from meter_engine.metering.events import UsageEvent
from meter_engine.metering.measurement import normalize_number
from meter_engine.metering.periods import period_bounds
from meter_engine.metering.quotas import QuotaDefinition, TenantTier, definition_for
from meter_engine.metering.tier_cache import TierCache
from meter_engine.state.repository import TenantRepository, UsageEventRepository
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from api.middleware.prometheus import QUOTA_REJECTIONS_TOTAL
from api.schemas import QuotaState

logger = logging.getLogger(__name__)


@contextmanager
def store_operation(operation: str, tenant_id: str | None = None) -> Iterator[None]:
    """Re-raise driver connectivity failures as :class:`StoreUnavailableError`."""
    try:
        yield
    except DBAPIError as exc:
        raise StoreUnavailableError(operation, tenant_id) from exc


class UsageLedger:
    """Records usage events and gates metered actions on the tenant's quota.

    Parameters
    ----------
    session:
        Session used for tier lookups, usage sums and event writes.
    tier_cache:
        Request- or sweep-scoped tier cache.  A private one is created
        when omitted.
    reference_timezone:
        Timezone whose midnight starts a quota day or month.
    """

    def __init__(
        self,
        session: AsyncSession,
        tier_cache: TierCache | None = None,
        *,
        reference_timezone: str = "UTC",
    ) -> None:
        self._session = session
        self._tier_cache = tier_cache if tier_cache is not None else TierCache()
        self._timezone = reference_timezone

    async def resolve_tier(self, tenant_id: str) -> TenantTier:
        """Return the tenant's tier, reading the tenant directory on a cache miss."""
        cached = self._tier_cache.get(tenant_id)
        if cached is not None:
            return cached
        with store_operation("tier lookup", tenant_id):
            raw = await TenantRepository(self._session).get_tier(tenant_id)
        tier = self._tier_cache.set(tenant_id, raw)
        if raw is None or raw != tier.value:
            logger.debug("Tenant %s has tier %r; using %s", tenant_id, raw, tier.value)
        return tier

    async def calculate_usage(
        self,
        tenant_id: str,
        definition: QuotaDefinition,
        reference_time: datetime | None = None,
    ) -> tuple[float, datetime]:
        """Return ``(used, period_start)`` for *definition*'s current period."""
        start, end = period_bounds(definition.period, reference_time or datetime.now(UTC), self._timezone)
        with store_operation("usage calculation", tenant_id):
            used = await UsageEventRepository(self._session, tenant_id).sum_measured(
                definition.event_type,
                start,
                end,
                definition.measurement,
            )
        return used, start

    async def check_quota(
        self,
        tenant_id: str,
        event_type: str,
        requested_amount: Any = 1,
        reference_time: datetime | None = None,
    ) -> QuotaState | None:
        """Raise :class:`QuotaExceededError` if *requested_amount* would exceed the limit.

        Returns the evaluated :class:`QuotaState`, or ``None`` when nothing
        was checked: the event type is unmetered for the tenant's tier, the
        limit is unbounded, or the amount is not a positive finite number.
        """
        amount = normalize_number(requested_amount, math.nan)
        if not math.isfinite(amount) or amount <= 0:
            return None

        tier = await self.resolve_tier(tenant_id)
        definition = definition_for(tier, event_type)
        if definition is None or definition.limit is None:
            return None

        used, start = await self.calculate_usage(tenant_id, definition, reference_time)
        limit = definition.limit
        if used + amount > limit:
            QUOTA_REJECTIONS_TOTAL.labels(event_type=event_type).inc()
            logger.warning(
                "Quota exceeded: tenant=%s %s=%s/%s attempted=%s",
                tenant_id,
                event_type,
                used,
                limit,
                amount,
            )
            raise QuotaExceededError(
                event_type=event_type,
                label=definition.label,
                limit=limit,
                used=used,
                attempted=amount,
                tenant_id=tenant_id,
            )

        return QuotaState(
            event_type=event_type,
            label=definition.label,
            period=definition.period,
            measurement=definition.measurement,
            used=used,
            limit=limit,
            remaining=max(limit - used, 0.0),
            period_start=start,
        )

    async def record_event(
        self,
        tenant_id: str,
        event_type: str,
        quantity: Any = 1,
        metadata: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> UsageEvent:
        """Append one usage event.

        Raises
        ------
        StoreUnavailableError
            If the store cannot be written.  The metered action has already
            happened, so callers log this rather than roll the action back.
        """
        event = UsageEvent(
            tenant_id=tenant_id,
            event_type=event_type,
            quantity=quantity,
            metadata=metadata or {},
            **({"occurred_at": occurred_at} if occurred_at is not None else {}),
        )
        with store_operation("event recording", tenant_id):
            await UsageEventRepository(self._session, tenant_id).record(event)
        logger.debug("Recorded usage event %s tenant=%s type=%s", event.event_id, tenant_id, event_type)
        return event

    @asynccontextmanager
    async def admit(
        self,
        tenant_id: str,
        event_type: str,
        amount: Any = 1,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> AsyncIterator[QuotaState | None]:
        """Check the quota, run the block, then record the event.

        Nothing is recorded when the block raises.  A store failure while
        recording is logged and swallowed because the action completed.
        """
        state = await self.check_quota(tenant_id, event_type, amount)
        yield state
        try:
            await self.record_event(tenant_id, event_type, amount, metadata)
        except StoreUnavailableError:
            logger.error(
                "Failed to record usage event tenant=%s type=%s after the action completed",
                tenant_id,
                event_type,
                exc_info=True,
                extra={"tenant_id": tenant_id},
            )
