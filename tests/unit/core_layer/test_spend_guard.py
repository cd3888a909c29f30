"""
Unit Tests for SpendGuard

Daily spend accounting for the fallback provider and the hard ceiling.
"""

from unittest.mock import AsyncMock

import pytest

from inference_gateway.core.exceptions import FallbackBudgetExceededError, StoreError
from inference_gateway.core.resilience.spend_guard import SpendGuard, token_cost


@pytest.mark.unit
def test_token_cost_uses_per_thousand_prices():
    cost = token_cost(2000, 1000, input_cost_per_1k=0.005, output_cost_per_1k=0.015)
    assert cost == pytest.approx(0.025)


@pytest.mark.unit
def test_token_cost_handles_missing_counts():
    assert token_cost(None, None, 0.005, 0.015) == 0.0


@pytest.mark.unit
class TestSpendGuard:
    @pytest.mark.asyncio
    async def test_records_accumulate(self, memory_store, clock):
        guard = SpendGuard(memory_store, "openai", max_per_day=1.0, clock=clock)
        await guard.record(0.25)
        total = await guard.record(0.5)
        assert total == pytest.approx(0.75)
        assert await guard.spent_today() == pytest.approx(0.75)

    @pytest.mark.asyncio
    async def test_ceiling_blocks_until_next_day(self, memory_store, clock):
        guard = SpendGuard(memory_store, "openai", max_per_day=1.0, clock=clock)
        await guard.record(1.0)

        with pytest.raises(FallbackBudgetExceededError) as exc_info:
            await guard.ensure_available()
        # Fixture clock is at 12:00 UTC
        assert exc_info.value.retry_after == 12 * 3600

        clock.advance(12 * 3600)
        await guard.ensure_available()
        assert await guard.spent_today() == 0.0

    @pytest.mark.asyncio
    async def test_below_ceiling_is_available(self, memory_store, clock):
        guard = SpendGuard(memory_store, "openai", max_per_day=1.0, clock=clock)
        await guard.record(0.99)
        await guard.ensure_available()

    @pytest.mark.asyncio
    async def test_store_failure_does_not_block(self, clock):
        store = AsyncMock()
        store.get.side_effect = StoreError("down")
        guard = SpendGuard(store, "openai", max_per_day=1.0, clock=clock)
        await guard.ensure_available()
