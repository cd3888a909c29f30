"""
Circuit Breaker for Inference Providers.

This module implements a store-backed circuit breaker, one per provider.

MECHANISM OF ACTION:
-------------------
1.  **Shared State**:
    The circuit snapshot (state, counters, open-until, probe slots) lives in the
    StateStore. With the Redis store every gateway instance sees the same
    circuit, so once Provider X trips for one instance all instances stop
    calling it.

2.  **State Transitions**:
    - **CLOSED**: Calls pass through.
      - On Failure: consecutive failure counter increments.
      - On Success: failure counter resets to 0.
      - Threshold Reached: failures >= failure_threshold moves to OPEN with
        ``open_until = now + timeout_seconds``.

    - **OPEN**: Calls are rejected with `CircuitBreakerOpenError` without
      contacting the provider until ``now >= open_until``. The first call
      after that moves the circuit to HALF_OPEN and goes through as a probe.

    - **HALF_OPEN**: Up to ``half_open_requests`` concurrent probes.
      - On Success: success counter increments; reaching success_threshold
        moves to CLOSED and clears counters.
      - On Failure: any single failure moves straight back to OPEN with a
        fresh ``open_until``.

3.  **Permits**:
    `acquire()` hands out a `CircuitPermit`. Its outcome must be reported exactly
    once through `record_success`, `record_failure` or `release` (neutral). Probe
    permits carry the half-open generation they were admitted in, so a late
    report from an older cycle never frees a slot of the current one, never
    closes the circuit and never reopens it.

All transitions run through `StateStore.update`, so two racing requests can
never both take the last probe slot or both move the circuit.
"""

import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from inference_gateway.core.config.constants import CIRCUIT_KEY_PREFIX, CircuitState
from inference_gateway.core.config.settings import CircuitBreakerSettings, Settings
from inference_gateway.core.exceptions import (
    CircuitBreakerError,
    CircuitBreakerOpenError,
    StoreError,
)
from inference_gateway.core.interfaces.state_store import Clock, StateStore
from inference_gateway.core.logging.logger import get_logger

logger = get_logger(__name__)


class CircuitSnapshot(BaseModel):
    """Persisted circuit state for one provider."""

    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    successes: int = 0
    open_until: float | None = None
    half_open_in_flight: int = 0
    generation: int = 0


@dataclass(frozen=True)
class BreakerConfig:
    """Thresholds for a single circuit."""

    failure_threshold: int = 5
    success_threshold: int = 3
    timeout_seconds: float = 30
    half_open_requests: int = 3

    @classmethod
    def from_settings(cls, settings: CircuitBreakerSettings) -> "BreakerConfig":
        return cls(
            failure_threshold=settings.FAILURE_THRESHOLD,
            success_threshold=settings.SUCCESS_THRESHOLD,
            timeout_seconds=settings.TIMEOUT_SECONDS,
            half_open_requests=settings.HALF_OPEN_REQUESTS,
        )


@dataclass
class CircuitPermit:
    """Admission ticket for one provider call."""

    provider: str
    probe: bool
    generation: int
    reported: bool = False


class CircuitBreaker:
    """
    Store-backed circuit breaker for a single provider.

    Usage:
        permit = await breaker.acquire()          # raises CircuitBreakerOpenError
        try:
            result = await provider.analyze(...)
        except ProviderTimeoutError:
            await breaker.record_failure(permit)
            raise
        await breaker.record_success(permit)

    Store failures are logged and the breaker fails open: losing the shared
    store must not take the providers down with it.
    """

    def __init__(
        self,
        name: str,
        store: StateStore,
        config: BreakerConfig | None = None,
        clock: Clock = time.time,
    ):
        self.name = name
        self.config = config or BreakerConfig()
        self._store = store
        self._clock = clock
        self._state_key = f"{CIRCUIT_KEY_PREFIX}:{name}:state"

    @staticmethod
    def _load(raw: str | None) -> CircuitSnapshot:
        if raw is None:
            return CircuitSnapshot()
        return CircuitSnapshot.model_validate_json(raw)

    async def snapshot(self) -> CircuitSnapshot:
        """Current persisted state (CLOSED when never written)."""
        return self._load(await self._store.get(self._state_key))

    async def get_state(self) -> CircuitState:
        try:
            return (await self.snapshot()).state
        except StoreError as e:
            logger.warning("Failed to read circuit state", stage="CB.0", provider=self.name, error=str(e))
            return CircuitState.CLOSED

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def acquire(self) -> CircuitPermit:
        """
        Admit one call or reject it.

        STAGE-CB.1: Circuit check

        Raises:
            CircuitBreakerOpenError: If the circuit is open, or half-open with
                every probe slot taken
        """
        try:
            current = await self.snapshot()
            if current.state == CircuitState.CLOSED:
                return CircuitPermit(self.name, probe=False, generation=current.generation)

            permit, snapshot = await self._store.update(self._state_key, self._admit)
        except StoreError as e:
            logger.warning(
                "Circuit store unavailable, allowing request",
                stage="CB.1",
                provider=self.name,
                error=str(e),
            )
            return CircuitPermit(self.name, probe=False, generation=-1)

        if permit is None:
            logger.info(
                "Circuit rejected call",
                stage="CB.1",
                provider=self.name,
                state=snapshot.state.value,
                open_until=snapshot.open_until,
            )
            raise CircuitBreakerOpenError(
                f"Circuit for {self.name} is {snapshot.state.value}",
                details={
                    "provider": self.name,
                    "state": snapshot.state.value,
                    "open_until": snapshot.open_until,
                },
            )
        return permit

    def _admit(self, raw: str | None) -> tuple[str | None, Any]:
        snapshot = self._load(raw)
        now = self._clock()

        if snapshot.state == CircuitState.OPEN:
            if snapshot.open_until is not None and now < snapshot.open_until:
                return raw, (None, snapshot)
            snapshot = snapshot.model_copy(
                update={
                    "state": CircuitState.HALF_OPEN,
                    "failures": 0,
                    "successes": 0,
                    "half_open_in_flight": 0,
                    "generation": snapshot.generation + 1,
                }
            )
            logger.info("Circuit half-open, probing", stage="CB.2", provider=self.name)

        if snapshot.state == CircuitState.HALF_OPEN:
            if snapshot.half_open_in_flight >= self.config.half_open_requests:
                return snapshot.model_dump_json(), (None, snapshot)
            snapshot = snapshot.model_copy(
                update={"half_open_in_flight": snapshot.half_open_in_flight + 1}
            )
            permit = CircuitPermit(self.name, probe=True, generation=snapshot.generation)
            return snapshot.model_dump_json(), (permit, snapshot)

        # Closed between the fast-path read and the transaction
        permit = CircuitPermit(self.name, probe=False, generation=snapshot.generation)
        return raw, (permit, snapshot)

    # ------------------------------------------------------------------
    # Outcome reporting
    # ------------------------------------------------------------------

    def _mark_reported(self, permit: CircuitPermit) -> None:
        if permit.reported:
            raise CircuitBreakerError(
                "Circuit permit already reported", details={"provider": self.name}
            )
        permit.reported = True

    @staticmethod
    def _owns_probe_slot(snapshot: CircuitSnapshot, permit: CircuitPermit) -> bool:
        return (
            permit.probe
            and snapshot.state == CircuitState.HALF_OPEN
            and permit.generation == snapshot.generation
        )

    async def record_success(self, permit: CircuitPermit) -> None:
        """
        Report a successful call.

        STAGE-CB.3: Success recording
        """
        self._mark_reported(permit)

        def apply(raw: str | None) -> tuple[str | None, Any]:
            snapshot = self._load(raw)
            if snapshot.state == CircuitState.CLOSED:
                if snapshot.failures == 0:
                    return raw, False
                return snapshot.model_copy(update={"failures": 0}).model_dump_json(), False

            if not self._owns_probe_slot(snapshot, permit):
                # Late success from an earlier cycle never closes the circuit
                return raw, False

            successes = snapshot.successes + 1
            if successes >= self.config.success_threshold:
                closed = CircuitSnapshot(generation=snapshot.generation)
                return closed.model_dump_json(), True

            updated = snapshot.model_copy(
                update={
                    "successes": successes,
                    "half_open_in_flight": max(0, snapshot.half_open_in_flight - 1),
                }
            )
            return updated.model_dump_json(), False

        if await self._apply(apply, "CB.3"):
            logger.info("Circuit closed after recovery", stage="CB.3", provider=self.name)

    async def record_failure(self, permit: CircuitPermit) -> None:
        """
        Report a failed call (including timeouts and malformed responses).

        STAGE-CB.4: Failure recording
        """
        self._mark_reported(permit)

        def apply(raw: str | None) -> tuple[str | None, Any]:
            snapshot = self._load(raw)
            now = self._clock()

            if snapshot.state == CircuitState.OPEN:
                return raw, None

            if snapshot.state == CircuitState.HALF_OPEN and not self._owns_probe_slot(snapshot, permit):
                # Late failure from an earlier cycle never disturbs the current probes
                return raw, None

            if snapshot.state == CircuitState.CLOSED:
                failures = snapshot.failures + 1
                if failures < self.config.failure_threshold:
                    updated = snapshot.model_copy(update={"failures": failures})
                    return updated.model_dump_json(), updated

            opened = CircuitSnapshot(
                state=CircuitState.OPEN,
                failures=snapshot.failures + 1,
                open_until=now + self.config.timeout_seconds,
                generation=snapshot.generation,
            )
            return opened.model_dump_json(), opened

        snapshot = await self._apply(apply, "CB.4")
        if snapshot is not None and snapshot.state == CircuitState.OPEN:
            logger.warning(
                "Circuit open",
                stage="CB.4",
                provider=self.name,
                failures=snapshot.failures,
                open_until=snapshot.open_until,
            )

    async def release(self, permit: CircuitPermit) -> None:
        """
        Report a neutral outcome: free the probe slot, count nothing.

        Used when the call never reached a verdict about the provider itself,
        e.g. a single credential hit its quota.
        """
        self._mark_reported(permit)
        if not permit.probe:
            return

        def apply(raw: str | None) -> tuple[str | None, Any]:
            snapshot = self._load(raw)
            if not self._owns_probe_slot(snapshot, permit):
                return raw, None
            updated = snapshot.model_copy(
                update={"half_open_in_flight": max(0, snapshot.half_open_in_flight - 1)}
            )
            return updated.model_dump_json(), None

        await self._apply(apply, "CB.5")

    async def _apply(self, fn, stage: str) -> Any:
        try:
            return await self._store.update(self._state_key, fn)
        except StoreError as e:
            logger.warning(
                "Failed to record circuit outcome", stage=stage, provider=self.name, error=str(e)
            )
            return None

    async def reset(self) -> None:
        """Force the circuit closed (admin operation)."""
        await self._store.delete(self._state_key)
        logger.info("Circuit reset", stage="CB.6", provider=self.name)


class CircuitBreakerManager:
    """Factory for managing one circuit breaker per provider."""

    def __init__(self, store: StateStore, settings: Settings, clock: Clock = time.time):
        self._store = store
        self._settings = settings
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get_breaker(self, name: str) -> CircuitBreaker:
        if name not in self._breakers:
            config = BreakerConfig.from_settings(self._settings.circuit_breaker(name))
            self._breakers[name] = CircuitBreaker(name, self._store, config, self._clock)
        return self._breakers[name]

    async def get_all_status(self) -> dict[str, dict[str, Any]]:
        results = {}
        for name, breaker in self._breakers.items():
            try:
                snapshot = await breaker.snapshot()
            except StoreError as e:
                results[name] = {"state": "unknown", "error": str(e)}
                continue
            results[name] = {
                "state": snapshot.state.value,
                "failures": snapshot.failures,
                "successes": snapshot.successes,
                "open_until": snapshot.open_until,
            }
        return results

    async def reset(self, name: str) -> None:
        await self.get_breaker(name).reset()
