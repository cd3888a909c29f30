"""
Rate Limiter

Fixed-window rate limiting for analysis requests. Four windows are enforced,
in order, and the first one that rejects decides the reported limit:

1. global requests per minute (shared by every caller)
2. requests per hour from one source address
3. requests per caller per UTC day (tier dependent)
4. requests per caller per minute (tier dependent)

Architectural Decision: all-or-nothing window check
- All four windows are checked and incremented in a single atomic
  ``StateStore.hit_windows`` call, so two concurrent requests can never both
  take the last slot of a window
- A rejected request consumes nothing, from any window
- Windows are aligned to the epoch (the daily window to UTC midnight), so
  the reset time reported to the caller is the start of the next window

Store failures are logged and the check fails open; losing the shared store
should degrade limiting, not availability.
"""

import time
from dataclasses import dataclass

from inference_gateway.analysis.models.analysis import CallerIdentity
from inference_gateway.core.config.constants import (
    RATE_LIMIT_KEY_PREFIX,
    SECONDS_PER_DAY,
    SECONDS_PER_HOUR,
    SECONDS_PER_MINUTE,
    RateLimitKind,
    Tier,
)
from inference_gateway.core.config.settings import RateLimitSettings
from inference_gateway.core.exceptions import RateLimitExceededError, StoreError
from inference_gateway.core.interfaces.state_store import Clock, StateStore, WindowSpec, window_start
from inference_gateway.core.logging.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitStatus:
    """Outcome of an admitted request, for the X-RateLimit-* headers."""

    limit: int
    remaining: int
    reset_at: int


class RateLimiter:
    """
    Enforces global, per-source and per-caller quotas.

    Usage:
        status = await limiter.check(request.caller, request.source_address)
        # raises RateLimitExceededError when any window is full
    """

    def __init__(self, store: StateStore, limits: RateLimitSettings, clock: Clock = time.time):
        self._store = store
        self._limits = limits
        self._clock = clock

    def _tier_limits(self, tier: Tier) -> tuple[int, int]:
        if tier == Tier.PREMIUM:
            return self._limits.PREMIUM_DAILY, self._limits.PREMIUM_PER_MINUTE
        return self._limits.FREE_DAILY, self._limits.FREE_PER_MINUTE

    def _windows(
        self, caller: CallerIdentity, source_address: str
    ) -> list[tuple[RateLimitKind, WindowSpec]]:
        now = self._clock()
        daily, per_minute = self._tier_limits(caller.tier)
        minute = window_start(now, SECONDS_PER_MINUTE)
        return [
            (
                RateLimitKind.GLOBAL_MINUTE,
                WindowSpec(
                    key=f"{RATE_LIMIT_KEY_PREFIX}:global",
                    limit=self._limits.GLOBAL_RPM,
                    window_start=minute,
                    window_seconds=SECONDS_PER_MINUTE,
                ),
            ),
            (
                RateLimitKind.SOURCE_HOUR,
                WindowSpec(
                    key=f"{RATE_LIMIT_KEY_PREFIX}:ip:{source_address}",
                    limit=self._limits.IP_PER_HOUR,
                    window_start=window_start(now, SECONDS_PER_HOUR),
                    window_seconds=SECONDS_PER_HOUR,
                ),
            ),
            (
                RateLimitKind.CALLER_DAILY,
                WindowSpec(
                    key=f"{RATE_LIMIT_KEY_PREFIX}:daily:{caller.caller_id}",
                    limit=daily,
                    window_start=window_start(now, SECONDS_PER_DAY),
                    window_seconds=SECONDS_PER_DAY,
                ),
            ),
            (
                RateLimitKind.CALLER_MINUTE,
                WindowSpec(
                    key=f"{RATE_LIMIT_KEY_PREFIX}:minute:{caller.caller_id}",
                    limit=per_minute,
                    window_start=minute,
                    window_seconds=SECONDS_PER_MINUTE,
                ),
            ),
        ]

    async def check(self, caller: CallerIdentity, source_address: str) -> RateLimitStatus | None:
        """
        Charge one request against every window.

        STAGE-RL.1: Rate limit check

        Returns:
            RateLimitStatus for the caller's daily window, or None when the
            store was unavailable and the check failed open

        Raises:
            RateLimitExceededError: If any window is full
        """
        windows = self._windows(caller, source_address)
        try:
            rejected = await self._store.hit_windows([spec for _, spec in windows])
        except StoreError as e:
            logger.warning("Rate limit store unavailable, allowing request", stage="RL.1", error=str(e))
            return None

        if rejected is not None:
            kind, spec = windows[rejected]
            retry_after = max(1, int(spec.reset_at - self._clock()))
            logger.info(
                "Rate limit exceeded",
                stage="RL.1",
                limit_kind=kind.value,
                caller_id=caller.caller_id,
                tier=caller.tier.value,
                limit=spec.limit,
                reset_at=spec.reset_at,
            )
            raise RateLimitExceededError(
                f"Rate limit exceeded: {kind.value}",
                details={
                    "limit_kind": kind.value,
                    "limit": spec.limit,
                    "reset_at": spec.reset_at,
                    "retry_after": retry_after,
                    "tier": caller.tier.value,
                },
            )

        _, daily = windows[2]
        used = await self._safe_count(daily)
        return RateLimitStatus(
            limit=daily.limit, remaining=max(0, daily.limit - used), reset_at=daily.reset_at
        )

    async def _safe_count(self, spec: WindowSpec) -> int:
        try:
            return await self._store.window_count(spec)
        except StoreError as e:
            logger.warning("Rate limit store unavailable", stage="RL.2", error=str(e))
            return 0

    async def usage(self, caller: CallerIdentity) -> dict[str, dict[str, int]]:
        """
        Remaining caller quota without consuming any.

        STAGE-RL.2: Usage report
        """
        windows = {kind: spec for kind, spec in self._windows(caller, "-")}
        report = {}
        for kind in (RateLimitKind.CALLER_DAILY, RateLimitKind.CALLER_MINUTE):
            spec = windows[kind]
            used = await self._safe_count(spec)
            report[kind.value] = {
                "limit": spec.limit,
                "used": used,
                "remaining": max(0, spec.limit - used),
                "reset_at": spec.reset_at,
            }
        return report
