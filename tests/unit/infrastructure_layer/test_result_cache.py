"""
Unit Tests for ResultCache and IdempotencyCache

Fingerprinting, TTL on read, write policy for failures and the
cross-instance claim/wait handshake.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from inference_gateway.core.exceptions import (
    InvalidInputError,
    ProviderTerminalError,
    ProviderTransportError,
    StoreError,
)
from inference_gateway.infrastructure.cache.result_cache import (
    IdempotencyCache,
    ResultCache,
    fingerprint,
)
from tests.test_fixtures.provider_factory import make_result


@pytest.fixture
def result_cache(memory_store, clock):
    return ResultCache(memory_store, ttl_seconds=7 * 86400, clock=clock)


@pytest.fixture
def idempotency_cache(memory_store, clock):
    return IdempotencyCache(memory_store, ttl_seconds=86400, pending_ttl_seconds=60, poll_interval=0.01, clock=clock)


@pytest.mark.unit
class TestFingerprint:
    def test_deterministic(self):
        assert fingerprint(b"img", "prompt") == fingerprint(b"img", "prompt")

    def test_image_and_prompt_both_matter(self):
        base = fingerprint(b"img", "prompt")
        assert fingerprint(b"img2", "prompt") != base
        assert fingerprint(b"img", "prompt2") != base

    def test_boundary_between_image_and_prompt(self):
        assert fingerprint(b"ab", "c") != fingerprint(b"a", "bc")


@pytest.mark.unit
class TestResultCache:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self, result_cache):
        fp = fingerprint(b"img", "prompt")
        assert await result_cache.get(fp) is None

        await result_cache.put(fp, make_result())
        cached = await result_cache.get(fp)

        assert cached.text == make_result().text
        assert cached.provenance.provider == "gemini"
        assert result_cache.stats() == {"hits": 1, "misses": 1, "writes": 1, "hit_rate": 0.5}

    @pytest.mark.asyncio
    async def test_entry_expires(self, result_cache, clock):
        fp = fingerprint(b"img", "prompt")
        await result_cache.put(fp, make_result())
        clock.advance(7 * 86400)
        assert await result_cache.get(fp) is None

    @pytest.mark.asyncio
    async def test_disabled_cache_is_noop(self, memory_store, clock):
        cache = ResultCache(memory_store, ttl_seconds=60, enabled=False, clock=clock)
        fp = fingerprint(b"img", "prompt")
        await cache.put(fp, make_result())
        assert await cache.get(fp) is None
        assert await memory_store.get(ResultCache.key(fp)) is None

    @pytest.mark.asyncio
    async def test_invalidate(self, result_cache):
        fp = fingerprint(b"img", "prompt")
        await result_cache.put(fp, make_result())
        await result_cache.invalidate(fp)
        assert await result_cache.get(fp) is None

    @pytest.mark.asyncio
    async def test_stored_cached_flag_is_false(self, result_cache, memory_store):
        fp = fingerprint(b"img", "prompt")
        await result_cache.put(fp, make_result().model_copy(update={"cached": True}))
        assert (await result_cache.get(fp)).cached is False

    @pytest.mark.asyncio
    async def test_store_failure_is_a_miss(self, clock):
        store = AsyncMock()
        store.get.side_effect = StoreError("down")
        store.set.side_effect = StoreError("down")
        cache = ResultCache(store, ttl_seconds=60, clock=clock)
        fp = fingerprint(b"img", "prompt")

        await cache.put(fp, make_result())
        assert await cache.get(fp) is None
        assert cache.stats()["writes"] == 0


@pytest.mark.unit
class TestIdempotencyCache:
    @pytest.mark.asyncio
    async def test_result_replay_scoped_to_caller(self, idempotency_cache):
        await idempotency_cache.put_result("user-1", "token-1", make_result())

        outcome = await idempotency_cache.get("user-1", "token-1")
        assert outcome.unwrap().text == make_result().text
        assert await idempotency_cache.get("user-2", "token-1") is None

    def test_key_is_unambiguous_for_callers_with_colons(self):
        assert IdempotencyCache.key("alice", "x:y") != IdempotencyCache.key("alice:x", "y")

    @pytest.mark.asyncio
    async def test_colon_in_caller_id_does_not_reach_other_caller(self, idempotency_cache):
        await idempotency_cache.put_result("alice", "x:y", make_result())
        assert await idempotency_cache.get("alice:x", "y") is None

    @pytest.mark.asyncio
    async def test_input_rejection_is_replayed(self, idempotency_cache):
        failure = InvalidInputError("Gemini rejected the input", details={"provider": "gemini"})
        await idempotency_cache.put_failure("user-1", "token-1", failure)

        outcome = await idempotency_cache.get("user-1", "token-1")
        with pytest.raises(InvalidInputError) as exc_info:
            outcome.unwrap()
        assert exc_info.value.message == "Gemini rejected the input"
        assert exc_info.value.provider == "gemini"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure",
        [ProviderTransportError("503"), ProviderTerminalError("empty response")],
    )
    async def test_provider_failures_not_stored(self, idempotency_cache, failure):
        await idempotency_cache.put_failure("user-1", "token-1", failure)
        assert await idempotency_cache.get("user-1", "token-1") is None

    @pytest.mark.asyncio
    async def test_claim_is_exclusive_until_released(self, idempotency_cache):
        assert await idempotency_cache.claim("user-1", "token-1") is True
        assert await idempotency_cache.claim("user-1", "token-1") is False
        await idempotency_cache.release("user-1", "token-1")
        assert await idempotency_cache.claim("user-1", "token-1") is True

    @pytest.mark.asyncio
    async def test_claim_fails_open(self, clock):
        store = AsyncMock()
        store.set.side_effect = StoreError("down")
        cache = IdempotencyCache(store, ttl_seconds=60, clock=clock)
        assert await cache.claim("user-1", "token-1") is True

    @pytest.mark.asyncio
    async def test_wait_for_returns_outcome_of_other_instance(self, idempotency_cache):
        await idempotency_cache.claim("user-1", "token-1")

        async def finish_elsewhere():
            await asyncio.sleep(0.03)
            await idempotency_cache.put_result("user-1", "token-1", make_result())
            await idempotency_cache.release("user-1", "token-1")

        task = asyncio.create_task(finish_elsewhere())
        outcome = await idempotency_cache.wait_for("user-1", "token-1", timeout=1.0)
        await task

        assert outcome.result.text == make_result().text

    @pytest.mark.asyncio
    async def test_wait_for_returns_none_when_claim_released_without_outcome(self, idempotency_cache):
        await idempotency_cache.claim("user-1", "token-1")
        await idempotency_cache.release("user-1", "token-1")
        assert await idempotency_cache.wait_for("user-1", "token-1", timeout=1.0) is None

    @pytest.mark.asyncio
    async def test_wait_for_times_out(self, idempotency_cache):
        await idempotency_cache.claim("user-1", "token-1")
        assert await idempotency_cache.wait_for("user-1", "token-1", timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_wait_for_polls_do_not_count_as_misses(self, idempotency_cache):
        await idempotency_cache.claim("user-1", "token-1")
        await idempotency_cache.wait_for("user-1", "token-1", timeout=0.05)
        assert idempotency_cache.stats()["misses"] == 0
