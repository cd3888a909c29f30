"""
Unit Tests for MemoryStateStore

TTL handling, atomic updates and the all-or-nothing window check.
"""

import asyncio

import pytest

from inference_gateway.core.interfaces.state_store import WindowSpec
from inference_gateway.infrastructure.state.memory_store import MemoryStateStore


def window(key: str, limit: int, start: int = 0, seconds: int = 60) -> WindowSpec:
    return WindowSpec(key=key, limit=limit, window_start=start, window_seconds=seconds)


@pytest.mark.unit
class TestKeyValue:
    @pytest.mark.asyncio
    async def test_set_get_delete(self, memory_store):
        await memory_store.set("k", "v")
        assert await memory_store.get("k") == "v"
        await memory_store.delete("k")
        assert await memory_store.get("k") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, memory_store, clock):
        await memory_store.set("k", "v", ttl=10)
        clock.advance(9.9)
        assert await memory_store.get("k") == "v"
        clock.advance(0.1)
        assert await memory_store.get("k") is None

    @pytest.mark.asyncio
    async def test_nx_only_sets_missing_key(self, memory_store, clock):
        assert await memory_store.set("k", "first", ttl=5, nx=True) is True
        assert await memory_store.set("k", "second", nx=True) is False
        assert await memory_store.get("k") == "first"

        clock.advance(5)
        assert await memory_store.set("k", "third", nx=True) is True

    @pytest.mark.asyncio
    async def test_incr_keeps_original_expiry(self, memory_store, clock):
        assert await memory_store.incr("counter", ttl=10) == 1
        clock.advance(6)
        assert await memory_store.incr("counter", ttl=10) == 2
        clock.advance(4)
        assert await memory_store.get("counter") is None


@pytest.mark.unit
class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_returns_result_and_stores_value(self, memory_store):
        result = await memory_store.update("k", lambda raw: ("1", "created" if raw is None else "seen"))
        assert result == "created"
        assert await memory_store.get("k") == "1"

    @pytest.mark.asyncio
    async def test_update_none_deletes(self, memory_store):
        await memory_store.set("k", "v")
        await memory_store.update("k", lambda raw: (None, raw))
        assert await memory_store.get("k") is None

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_not_lost(self, memory_store):
        async def add_one():
            def fn(raw):
                value = int(raw or 0) + 1
                return str(value), value
            await asyncio.sleep(0)
            return await memory_store.update("total", fn)

        await asyncio.gather(*(add_one() for _ in range(50)))
        assert await memory_store.get("total") == "50"


@pytest.mark.unit
class TestHitWindows:
    @pytest.mark.asyncio
    async def test_rejection_increments_nothing(self, memory_store):
        windows = [window("a", limit=5), window("b", limit=1)]
        assert await memory_store.hit_windows(windows) is None
        assert await memory_store.hit_windows(windows) == 1

        assert await memory_store.window_count(windows[0]) == 1
        assert await memory_store.window_count(windows[1]) == 1

    @pytest.mark.asyncio
    async def test_first_full_window_reported(self, memory_store):
        windows = [window("a", limit=0), window("b", limit=0)]
        assert await memory_store.hit_windows(windows) == 0

    @pytest.mark.asyncio
    async def test_new_window_starts_from_zero(self, memory_store):
        await memory_store.hit_windows([window("a", limit=1, start=0)])
        assert await memory_store.hit_windows([window("a", limit=1, start=0)]) == 0
        assert await memory_store.hit_windows([window("a", limit=1, start=60)]) is None

    @pytest.mark.asyncio
    async def test_late_hit_for_previous_window_does_not_reset_current(self, memory_store):
        current = window("a", limit=1, start=60)
        assert await memory_store.hit_windows([current]) is None

        # A request that read the clock just before the boundary
        assert await memory_store.hit_windows([window("a", limit=1, start=0)]) is None

        assert await memory_store.hit_windows([current]) == 0
        assert await memory_store.window_count(current) == 1

    @pytest.mark.asyncio
    async def test_concurrent_hits_never_exceed_limit(self, memory_store):
        spec = [window("shared", limit=10)]
        results = await asyncio.gather(*(memory_store.hit_windows(spec) for _ in range(25)))
        assert results.count(None) == 10
        assert await memory_store.window_count(spec[0]) == 10


@pytest.mark.unit
class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_drops_expired_entries_and_windows(self, memory_store, clock):
        await memory_store.set("short", "v", ttl=1)
        await memory_store.set("long", "v", ttl=100)
        await memory_store.hit_windows([window("w", limit=5, start=int(clock()), seconds=60)])

        clock.advance(61)
        assert memory_store.sweep() == 2
        assert await memory_store.get("long") == "v"

    @pytest.mark.asyncio
    async def test_sweep_runs_after_write_interval(self, clock):
        store = MemoryStateStore(clock=clock, sweep_interval=3)
        await store.set("old", "v", ttl=1)
        clock.advance(2)
        await store.set("a", "v")
        await store.set("b", "v")

        assert "old" not in store._entries

    @pytest.mark.asyncio
    async def test_sweep_keeps_lock_while_a_waiter_is_queued(self, memory_store):
        holder = memory_store._locked("k")
        await holder.__aenter__()
        waiter = asyncio.create_task(memory_store.set("k", "v"))
        await asyncio.sleep(0)

        await holder.__aexit__(None, None, None)
        # The waiter is woken but has not run yet
        memory_store.sweep()
        assert "k" in memory_store._locks

        await waiter
        assert await memory_store.get("k") == "v"

    @pytest.mark.asyncio
    async def test_sweep_drops_unused_locks(self, memory_store):
        await memory_store.set("k", "v")
        await memory_store.delete("k")
        memory_store.sweep()
        assert "k" not in memory_store._locks

    @pytest.mark.asyncio
    async def test_ping(self, memory_store):
        assert await memory_store.ping() is True
