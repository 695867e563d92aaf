"""
Unit tests for the quota gate and its stores.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from gateway.errors import QuotaStoreError
from gateway.identity import CallerIdentity
from gateway.quota import MemoryQuotaStore, QuotaGate, usage_key

FREE = CallerIdentity(key=None, tier_elevated=False, rate_key="203.0.113.7")
PRO = CallerIdentity(key="k-123", tier_elevated=True, rate_key="key:k-123")


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestMemoryQuotaStore:
    @pytest.mark.asyncio
    async def test_roundtrip_and_expiry(self):
        t = [1000.0]
        store = MemoryQuotaStore(clock=lambda: t[0])
        await store.set("a", "3", 10)
        assert await store.get("a") == "3"
        t[0] = 1010.0
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_missing_key(self, memory_store):
        assert await memory_store.get("nope") is None

    @pytest.mark.asyncio
    async def test_expired_day_keys_are_swept(self):
        t = [1000.0]
        store = MemoryQuotaStore(clock=lambda: t[0], sweep_interval=300)
        for i in range(1000):
            await store.set(f"usage:10.0.0.{i}:2024-05-01", "1", 86400)
        assert store.size() == 1000

        t[0] += 10 * 86400
        await store.set("usage:10.0.0.1:2024-05-11", "1", 86400)
        assert store.size() == 1

    @pytest.mark.asyncio
    async def test_sweep_keeps_live_entries(self):
        t = [1000.0]
        store = MemoryQuotaStore(clock=lambda: t[0], sweep_interval=0)
        await store.set("old", "5", 10)
        await store.set("live", "7", 3600)
        t[0] += 60
        await store.set("new", "1", 3600)
        assert store.size() == 2
        assert await store.get("live") == "7"


class TestQuotaGate:
    @pytest.fixture
    def clock(self):
        return FakeClock(datetime(2024, 5, 1, 23, 59, tzinfo=timezone.utc))

    @pytest.fixture
    def gate(self, memory_store, clock):
        return QuotaGate(memory_store, standard_limit=3, elevated_limit=10, clock=clock)

    @pytest.mark.asyncio
    async def test_limit_plus_one_is_denied(self, gate):
        for expected_usage in range(3):
            decision = await gate.admit(FREE)
            assert decision.admitted
            assert decision.usage == expected_usage
            await gate.record_consumption(FREE, decision)

        denied = await gate.admit(FREE)
        assert not denied.admitted
        assert denied.usage == denied.limit == 3
        assert denied.remaining == 0

    @pytest.mark.asyncio
    async def test_denial_does_not_write(self, gate, memory_store):
        await memory_store.set(usage_key(FREE.rate_key, "2024-05-01"), "3", 60)
        decision = await gate.admit(FREE)
        await gate.record_consumption(FREE, decision)
        assert await memory_store.get(usage_key(FREE.rate_key, "2024-05-01")) == "3"

    @pytest.mark.asyncio
    async def test_counter_resets_on_new_utc_day(self, gate, clock):
        for _ in range(3):
            await gate.record_consumption(FREE, await gate.admit(FREE))
        assert not (await gate.admit(FREE)).admitted

        clock.now = clock.now + timedelta(minutes=2)  # 2024-05-02 00:01 UTC
        decision = await gate.admit(FREE)
        assert decision.admitted
        assert decision.usage == 0

    @pytest.mark.asyncio
    async def test_day_is_computed_in_utc(self, memory_store):
        # 20:00 at UTC-05:00 is already the next day in UTC
        local = datetime(2024, 5, 1, 20, 0, tzinfo=timezone(timedelta(hours=-5)))
        gate = QuotaGate(memory_store, standard_limit=3, elevated_limit=10, clock=lambda: local)
        await gate.record_consumption(FREE, await gate.admit(FREE))
        assert await memory_store.get(usage_key(FREE.rate_key, "2024-05-02")) == "1"

    @pytest.mark.asyncio
    async def test_elevated_limit_and_key(self, gate, memory_store):
        decision = await gate.admit(PRO)
        assert decision.limit == 10
        await gate.record_consumption(PRO, decision)
        assert await memory_store.get("usage:key:k-123:2024-05-01") == "1"

    @pytest.mark.asyncio
    async def test_peek_never_writes(self, gate, memory_store):
        for _ in range(5):
            assert await gate.peek(FREE) == 0
        assert await memory_store.get(usage_key(FREE.rate_key, "2024-05-01")) is None

    @pytest.mark.asyncio
    async def test_corrupt_record_reads_as_zero(self, gate, memory_store):
        await memory_store.set(usage_key(FREE.rate_key, "2024-05-01"), "not-a-number", 60)
        assert await gate.peek(FREE) == 0

    @pytest.mark.asyncio
    async def test_fails_open_when_store_unreachable(self, clock):
        store = AsyncMock()
        store.get.side_effect = QuotaStoreError("connection refused")
        store.set.side_effect = QuotaStoreError("connection refused")
        gate = QuotaGate(store, standard_limit=3, elevated_limit=10, clock=clock)

        decision = await gate.admit(FREE)
        assert decision.admitted
        assert (decision.usage, decision.limit, decision.remaining) == (0, 3, 3)
        assert not decision.counted
        await gate.record_consumption(FREE, decision)
        store.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self, clock):
        store = AsyncMock()
        store.get.return_value = "1"
        store.set.side_effect = QuotaStoreError("connection reset")
        gate = QuotaGate(store, standard_limit=3, elevated_limit=10, clock=clock)
        decision = await gate.admit(FREE)
        await gate.record_consumption(FREE, decision)
        store.set.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_read_keeps_existing_count(self, clock):
        key = usage_key(FREE.rate_key, "2024-05-01")
        store = MemoryQuotaStore()
        await store.set(key, "2", 3600)
        real_get = store.get
        store.get = AsyncMock(side_effect=[QuotaStoreError("timeout"), "2"])
        gate = QuotaGate(store, standard_limit=3, elevated_limit=10, clock=clock)

        blip = await gate.admit(FREE)
        assert blip.admitted and blip.usage == 0
        await gate.record_consumption(FREE, blip)

        assert await real_get(key) == "2"

        after = await gate.admit(FREE)
        assert after.usage == 2
        await gate.record_consumption(FREE, after)
        assert await real_get(key) == "3"

        store.get = real_get
        assert not (await gate.admit(FREE)).admitted

    @pytest.mark.asyncio
    async def test_consumption_lands_on_admission_day(self, gate, memory_store, clock):
        # admitted at 23:59, dispatched after midnight
        await memory_store.set(usage_key(FREE.rate_key, "2024-05-01"), "1", 3600)
        decision = await gate.admit(FREE)
        clock.now = clock.now + timedelta(minutes=2)
        await gate.record_consumption(FREE, decision)
        assert await memory_store.get(usage_key(FREE.rate_key, "2024-05-01")) == "2"
        assert await memory_store.get(usage_key(FREE.rate_key, "2024-05-02")) is None

    @pytest.mark.asyncio
    async def test_concurrent_admits_can_overshoot(self, gate, memory_store):
        # read-then-write: two requests in flight at limit-1 both pass
        await memory_store.set(usage_key(FREE.rate_key, "2024-05-01"), "2", 3600)
        first = await gate.admit(FREE)
        second = await gate.admit(FREE)
        assert first.admitted and second.admitted
        await gate.record_consumption(FREE, first)
        await gate.record_consumption(FREE, second)
        assert await memory_store.get(usage_key(FREE.rate_key, "2024-05-01")) == "3"
        assert not (await gate.admit(FREE)).admitted

    @pytest.mark.asyncio
    async def test_write_sets_ttl(self, clock):
        store = AsyncMock()
        store.get.return_value = "4"
        gate = QuotaGate(store, standard_limit=20, elevated_limit=100, ttl_seconds=86400, clock=clock)
        decision = await gate.admit(FREE)
        await gate.record_consumption(FREE, decision)
        store.set.assert_awaited_once_with(usage_key(FREE.rate_key, "2024-05-01"), "5", 86400)
