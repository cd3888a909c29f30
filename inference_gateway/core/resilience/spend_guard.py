"""
Daily Spend Guard for the fallback provider.

The fallback provider is billed per token. Spend is accumulated per UTC day
in the StateStore and the provider is skipped once the configured ceiling is
reached: the ceiling is a hard gate, not an advisory number.
"""

import time
from datetime import datetime, timezone
from typing import Any

from inference_gateway.core.config.constants import SECONDS_PER_DAY, SPEND_KEY_PREFIX
from inference_gateway.core.exceptions import FallbackBudgetExceededError, StoreError
from inference_gateway.core.interfaces.state_store import Clock, StateStore
from inference_gateway.core.logging.logger import get_logger

logger = get_logger(__name__)


def token_cost(
    prompt_tokens: int | None,
    completion_tokens: int | None,
    input_cost_per_1k: float,
    output_cost_per_1k: float,
) -> float:
    """USD cost of one call from its token usage."""
    return ((prompt_tokens or 0) / 1000) * input_cost_per_1k + (
        (completion_tokens or 0) / 1000
    ) * output_cost_per_1k


class SpendGuard:
    """Tracks and enforces a provider's daily USD ceiling."""

    def __init__(
        self,
        store: StateStore,
        provider: str,
        max_per_day: float,
        clock: Clock = time.time,
    ):
        self._store = store
        self.provider = provider
        self.max_per_day = max_per_day
        self._clock = clock

    def _day_key(self) -> tuple[str, float]:
        now = self._clock()
        day = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d")
        seconds_left = SECONDS_PER_DAY - (now % SECONDS_PER_DAY)
        return f"{SPEND_KEY_PREFIX}:{self.provider}:{day}", seconds_left

    async def spent_today(self) -> float:
        key, _ = self._day_key()
        return float(await self._store.get(key) or 0.0)

    async def ensure_available(self) -> None:
        """
        STAGE-SPEND.1: Budget check

        Raises:
            FallbackBudgetExceededError: Once today's spend reaches the ceiling
        """
        try:
            spent = await self.spent_today()
        except StoreError as e:
            logger.warning("Spend state unavailable", stage="SPEND.1", provider=self.provider, error=str(e))
            return

        if spent >= self.max_per_day:
            _, seconds_left = self._day_key()
            logger.warning(
                "Daily spend ceiling reached",
                stage="SPEND.1",
                provider=self.provider,
                spent=round(spent, 4),
                ceiling=self.max_per_day,
            )
            raise FallbackBudgetExceededError(
                f"Daily spend ceiling reached for {self.provider}",
                details={
                    "provider": self.provider,
                    "spent": round(spent, 4),
                    "ceiling": self.max_per_day,
                    "retry_after": int(seconds_left),
                },
            )

    async def record(self, amount: float) -> float:
        """
        Add a call's cost to today's total.

        STAGE-SPEND.2: Spend recording

        Returns:
            float: Today's total after the addition
        """
        if amount <= 0:
            return await self.spent_today()

        key, seconds_left = self._day_key()

        def add(raw: str | None) -> tuple[str | None, Any]:
            total = float(raw or 0.0) + amount
            return repr(total), total

        try:
            total = await self._store.update(key, add, ttl=seconds_left)
        except StoreError as e:
            logger.warning("Failed to record spend", stage="SPEND.2", provider=self.provider, error=str(e))
            return amount
        logger.info("Spend recorded", stage="SPEND.2", provider=self.provider, cost=round(amount, 6), spent_today=round(total, 4))
        return total
