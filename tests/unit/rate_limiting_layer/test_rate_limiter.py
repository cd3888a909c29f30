"""
Unit Tests for RateLimiter

Tier quotas, window ordering, reset times and fail-open behaviour.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from inference_gateway.analysis.models.analysis import CallerIdentity
from inference_gateway.core.config.constants import Tier
from inference_gateway.core.exceptions import RateLimitExceededError, StoreError
from inference_gateway.rate_limiting.rate_limiter import RateLimiter, window_start
from tests.test_fixtures.settings_factory import make_settings

NEXT_UTC_MIDNIGHT = 1773187200
SOURCE = "203.0.113.7"


def limiter_for(store, clock, **overrides) -> RateLimiter:
    return RateLimiter(store, make_settings(**overrides).rate_limit, clock)


@pytest.mark.unit
def test_window_start_aligns_to_epoch():
    assert window_start(125.5, 60) == 120
    assert window_start(NEXT_UTC_MIDNIGHT - 1, 86400) == NEXT_UTC_MIDNIGHT - 86400


@pytest.mark.unit
class TestCallerQuotas:
    @pytest.mark.asyncio
    async def test_free_tier_fourth_request_rejected(self, memory_store, clock, caller):
        limiter = limiter_for(memory_store, clock)
        statuses = [await limiter.check(caller, SOURCE) for _ in range(3)]
        assert [status.remaining for status in statuses] == [2, 1, 0]

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.check(caller, SOURCE)

        error = exc_info.value
        assert error.limit_kind == "caller_daily"
        assert error.reset_at == NEXT_UTC_MIDNIGHT
        assert error.retry_after == 12 * 3600
        assert error.details["limit"] == 3

    @pytest.mark.asyncio
    async def test_daily_quota_resets_at_midnight(self, memory_store, clock, caller):
        limiter = limiter_for(memory_store, clock)
        for _ in range(3):
            await limiter.check(caller, SOURCE)

        clock.now = NEXT_UTC_MIDNIGHT
        status = await limiter.check(caller, SOURCE)
        assert status.remaining == 2

    @pytest.mark.asyncio
    async def test_rejected_requests_consume_nothing(self, memory_store, clock, caller):
        limiter = limiter_for(memory_store, clock)
        for _ in range(3):
            await limiter.check(caller, SOURCE)
        for _ in range(3):
            with pytest.raises(RateLimitExceededError):
                await limiter.check(caller, SOURCE)

        usage = await limiter.usage(caller)
        assert usage["caller_daily"]["used"] == 3
        assert usage["caller_minute"]["used"] == 3

    @pytest.mark.asyncio
    async def test_premium_minute_window(self, memory_store, clock, premium_caller):
        limiter = limiter_for(memory_store, clock)
        for _ in range(5):
            await limiter.check(premium_caller, SOURCE)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.check(premium_caller, SOURCE)
        assert exc_info.value.limit_kind == "caller_minute"
        assert exc_info.value.details["tier"] == "premium"

        clock.advance(60)
        status = await limiter.check(premium_caller, SOURCE)
        assert status.limit == 20
        assert status.remaining == 14

    @pytest.mark.asyncio
    async def test_callers_are_independent(self, memory_store, clock, caller):
        limiter = limiter_for(memory_store, clock)
        for _ in range(3):
            await limiter.check(caller, SOURCE)
        other = CallerIdentity(caller_id="user-2", tier=Tier.FREE)
        assert (await limiter.check(other, SOURCE)).remaining == 2


@pytest.mark.unit
class TestSharedWindows:
    @pytest.mark.asyncio
    async def test_source_address_limit(self, memory_store, clock):
        limiter = limiter_for(memory_store, clock, RATE_LIMIT_IP_PER_HOUR=2)
        for index in range(2):
            await limiter.check(CallerIdentity(caller_id=f"user-{index}"), SOURCE)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.check(CallerIdentity(caller_id="user-9"), SOURCE)
        assert exc_info.value.limit_kind == "source_hour"

        await limiter.check(CallerIdentity(caller_id="user-9"), "198.51.100.1")

    @pytest.mark.asyncio
    async def test_global_limit_checked_first(self, memory_store, clock, caller):
        limiter = limiter_for(memory_store, clock, RATE_LIMIT_GLOBAL_RPM=1, RATE_LIMIT_FREE_DAILY=1)
        await limiter.check(caller, SOURCE)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.check(caller, SOURCE)
        assert exc_info.value.limit_kind == "global_minute"

    @pytest.mark.asyncio
    async def test_concurrent_requests_never_exceed_quota(self, memory_store, clock, caller):
        limiter = limiter_for(memory_store, clock)
        results = await asyncio.gather(
            *(limiter.check(caller, SOURCE) for _ in range(10)), return_exceptions=True
        )
        admitted = [r for r in results if not isinstance(r, Exception)]
        assert len(admitted) == 3
        assert all(isinstance(r, RateLimitExceededError) for r in results if r not in admitted)


@pytest.mark.unit
class TestStoreFailure:
    @pytest.mark.asyncio
    async def test_check_fails_open(self, clock, caller):
        store = AsyncMock()
        store.hit_windows.side_effect = StoreError("down")
        limiter = limiter_for(store, clock)
        assert await limiter.check(caller, SOURCE) is None

    @pytest.mark.asyncio
    async def test_usage_reports_zero_when_store_down(self, clock, caller):
        store = AsyncMock()
        store.window_count.side_effect = StoreError("down")
        limiter = limiter_for(store, clock)
        usage = await limiter.usage(caller)
        assert usage["caller_daily"] == {
            "limit": 3,
            "used": 0,
            "remaining": 3,
            "reset_at": NEXT_UTC_MIDNIGHT,
        }
