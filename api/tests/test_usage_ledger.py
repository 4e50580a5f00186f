"""Tests for api/api/services/usage_ledger.py

Covers:
- Admission at and around the limit (used + amount > limit rejects)
- Unbounded, unmetered, and non-positive requests never reject
- Token-measured quotas
- Daily vs monthly periods and the reference timezone
- Tier resolution and the scoped tier cache
- admit() check -> act -> record sequencing
- Store failures surfacing as StoreUnavailableError
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from meter_engine.metering.errors import QuotaExceededError, StoreUnavailableError
from meter_engine.metering.quotas import TenantTier
from meter_engine.metering.tier_cache import TierCache
from meter_engine.state.repository import UsageEventRepository
from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError

from api.services.usage_ledger import UsageLedger

REF = datetime(2026, 6, 15, 12, 0, tzinfo=UTC)
EARLIER = REF - timedelta(hours=1)


def _rejections(event_type: str) -> float:
    return REGISTRY.get_sample_value("salonmeter_quota_rejections_total", {"event_type": event_type}) or 0.0


def _store_down(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------


class TestCheckQuota:
    @pytest.mark.asyncio
    async def test_under_limit_returns_state(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-1", "booking.created", 40, EARLIER)
        state = await UsageLedger(session).check_quota("salon-1", "booking.created", 1, REF)
        assert state is not None
        assert state.used == 40
        assert state.limit == 100
        assert state.remaining == 60
        assert state.period == "month"
        assert state.period_start == datetime(2026, 6, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_last_unit_admitted(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-1", "booking.created", 99, EARLIER)
        ledger = UsageLedger(session)
        state = await ledger.check_quota("salon-1", "booking.created", 1, REF)
        assert state.remaining == 1

        with pytest.raises(QuotaExceededError) as exc_info:
            await ledger.check_quota("salon-1", "booking.created", 2, REF)
        assert exc_info.value.used == 99
        assert exc_info.value.attempted == 2
        assert exc_info.value.limit == 100

    @pytest.mark.asyncio
    async def test_at_limit_rejected(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-1", "booking.created", 100, EARLIER)
        before = _rejections("booking.created")

        with pytest.raises(QuotaExceededError) as exc_info:
            await UsageLedger(session).check_quota("salon-1", "booking.created", 1, REF)

        err = exc_info.value
        assert str(err) == "Bookings quota exceeded"
        assert err.used == 100
        assert err.limit == 100
        assert err.attempted == 1
        assert err.tenant_id == "salon-1"
        assert _rejections("booking.created") == before + 1

    @pytest.mark.asyncio
    async def test_large_request_rejected_on_empty_period(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        with pytest.raises(QuotaExceededError):
            await UsageLedger(session).check_quota("salon-1", "booking.created", 101, REF)

    @pytest.mark.asyncio
    async def test_unbounded_never_rejects(self, session, seed) -> None:
        await seed.tenant("salon-1", "scale")
        await seed.events("salon-1", "booking.created", 5, EARLIER, quantity=1_000_000)
        assert await UsageLedger(session).check_quota("salon-1", "booking.created", 10**9, REF) is None

    @pytest.mark.asyncio
    async def test_unmetered_event_type(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        assert await UsageLedger(session).check_quota("salon-1", "reminder.queued", 10**6, REF) is None

    @pytest.mark.parametrize("amount", [0, -5, "lots", None, float("nan")])
    @pytest.mark.asyncio
    async def test_non_positive_amount_is_noop(self, session, seed, amount) -> None:
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-1", "booking.created", 100, EARLIER)
        assert await UsageLedger(session).check_quota("salon-1", "booking.created", amount, REF) is None

    @pytest.mark.asyncio
    async def test_other_tenants_usage_ignored(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-2", "booking.created", 100, EARLIER)
        state = await UsageLedger(session).check_quota("salon-1", "booking.created", 1, REF)
        assert state.used == 0


# ---------------------------------------------------------------------------
# Measurement and periods
# ---------------------------------------------------------------------------


class TestMeasurementAndPeriods:
    @pytest.mark.asyncio
    async def test_tokens_counted_for_ai_requests(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-1", "ai.request", 1, EARLIER, metadata={"tokens": 49_500})
        ledger = UsageLedger(session)

        state = await ledger.check_quota("salon-1", "ai.request", 500, REF)
        assert state.used == 49_500
        assert state.remaining == 500

        with pytest.raises(QuotaExceededError) as exc_info:
            await ledger.check_quota("salon-1", "ai.request", 501, REF)
        assert exc_info.value.label == "AI tokens"

    @pytest.mark.asyncio
    async def test_daily_quota_ignores_yesterday(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-1", "api.call", 1, REF - timedelta(days=1), quantity=1_000)
        await seed.events("salon-1", "api.call", 1, EARLIER, quantity=10)
        state = await UsageLedger(session).check_quota("salon-1", "api.call", 1, REF)
        assert state.used == 10
        assert state.period == "day"

    @pytest.mark.asyncio
    async def test_previous_month_ignored(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-1", "booking.created", 100, datetime(2026, 5, 31, 23, tzinfo=UTC))
        state = await UsageLedger(session).check_quota("salon-1", "booking.created", 1, REF)
        assert state.used == 0

    @pytest.mark.asyncio
    async def test_reference_timezone_moves_month_boundary(self, session, seed) -> None:
        # 23:30 UTC on 31 May is already June in London.
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-1", "booking.created", 3, datetime(2026, 5, 31, 23, 30, tzinfo=UTC))
        ledger = UsageLedger(session, reference_timezone="Europe/London")
        state = await ledger.check_quota("salon-1", "booking.created", 1, REF)
        assert state.used == 3


# ---------------------------------------------------------------------------
# Tier resolution
# ---------------------------------------------------------------------------


class TestResolveTier:
    @pytest.mark.asyncio
    async def test_unknown_tenant_gets_starter(self, session) -> None:
        assert await UsageLedger(session).resolve_tier("nobody") is TenantTier.STARTER

    @pytest.mark.asyncio
    async def test_null_tier_gets_starter(self, session, seed) -> None:
        await seed.tenant("salon-1", None)
        assert await UsageLedger(session).resolve_tier("salon-1") is TenantTier.STARTER

    @pytest.mark.asyncio
    async def test_unrecognised_tier_gets_starter(self, session, seed) -> None:
        await seed.tenant("salon-1", "platinum")
        assert await UsageLedger(session).resolve_tier("salon-1") is TenantTier.STARTER

    @pytest.mark.asyncio
    async def test_cache_hit_skips_lookup(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        cache = TierCache()
        cache.set("salon-1", "scale")
        assert await UsageLedger(session, cache).resolve_tier("salon-1") is TenantTier.SCALE

    @pytest.mark.asyncio
    async def test_lookup_populates_cache(self, session, seed) -> None:
        await seed.tenant("salon-1", "growth")
        cache = TierCache()
        await UsageLedger(session, cache).resolve_tier("salon-1")
        assert cache.get("salon-1") is TenantTier.GROWTH


# ---------------------------------------------------------------------------
# Recording and admit()
# ---------------------------------------------------------------------------


class TestRecordAndAdmit:
    @pytest.mark.asyncio
    async def test_record_event_persists(self, session) -> None:
        event = await UsageLedger(session).record_event(
            "salon-1", "ai.request", quantity=None, metadata={"tokens": 12}, occurred_at=EARLIER
        )
        assert event.quantity == 1.0
        assert await UsageEventRepository(session, "salon-1").count("ai.request") == 1

    @pytest.mark.asyncio
    async def test_admit_records_after_block(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        ledger = UsageLedger(session)
        async with ledger.admit("salon-1", "message.sent") as state:
            assert state.used == 0
            assert await UsageEventRepository(session, "salon-1").count() == 0
        assert await UsageEventRepository(session, "salon-1").count("message.sent") == 1

    @pytest.mark.asyncio
    async def test_admit_records_nothing_when_block_fails(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        ledger = UsageLedger(session)
        with pytest.raises(RuntimeError):
            async with ledger.admit("salon-1", "message.sent"):
                raise RuntimeError("provider rejected the message")
        assert await UsageEventRepository(session, "salon-1").count() == 0

    @pytest.mark.asyncio
    async def test_admit_rejects_before_block(self, session, seed) -> None:
        await seed.tenant("salon-1", "starter")
        await seed.events("salon-1", "message.sent", 250, datetime.now(UTC))
        ran = False
        with pytest.raises(QuotaExceededError):
            async with UsageLedger(session).admit("salon-1", "message.sent"):
                ran = True
        assert ran is False

    @pytest.mark.asyncio
    async def test_admit_swallows_recording_failure(self, session, seed, monkeypatch, caplog) -> None:
        await seed.tenant("salon-1", "starter")
        monkeypatch.setattr(UsageEventRepository, "record", _store_down)
        async with UsageLedger(session).admit("salon-1", "booking.created"):
            pass
        assert "Failed to record usage event" in caplog.text


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_usage_read_failure(self, session, seed, monkeypatch) -> None:
        await seed.tenant("salon-1", "starter")
        monkeypatch.setattr(UsageEventRepository, "sum_measured", _store_down)
        with pytest.raises(StoreUnavailableError) as exc_info:
            await UsageLedger(session).check_quota("salon-1", "booking.created", 1, REF)
        assert exc_info.value.tenant_id == "salon-1"
        assert isinstance(exc_info.value.__cause__, OperationalError)

    @pytest.mark.asyncio
    async def test_record_failure(self, session, monkeypatch) -> None:
        monkeypatch.setattr(UsageEventRepository, "record", _store_down)
        with pytest.raises(StoreUnavailableError, match="event recording"):
            await UsageLedger(session).record_event("salon-1", "booking.created")
