"""
Request Orchestrator Service
============================

WHAT IS THE REQUEST ORCHESTRATOR?
---------------------------------
The RequestOrchestrator is the single entry point for image analysis. It
does not talk to a provider's wire format itself; it decides IF and WHERE a
request may be sent, and records what happened so the next request can make
a better decision.

THE COMPLETE REQUEST LIFECYCLE:
-------------------------------

┌─────────────────────────────────────────────────────────────────┐
│ STAGE 0: VALIDATION                                             │
│ - Image present, within the size ceiling, allowed MIME type     │
│ - Prompt present and within the length ceiling                  │
│ - Consumes no quota                                             │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 1: IDEMPOTENCY                                            │
│ - Replay a stored outcome for (caller, token)                   │
│ - Concurrent duplicates join the in-flight request              │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 2: RATE LIMITING                                          │
│ - Global, per-source and per-caller windows, all-or-nothing     │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 3: RESULT CACHE                                           │
│ - Identical image + prompt is served without a provider call    │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 4: PROVIDER LOOP                                          │
│ - Primary first, fallback second (if enabled and configured)    │
│ - Per provider: spend gate, breaker permit, credential, call    │
│ - Outcome reported to breaker and key pool                      │
└─────────────────────────────────────────────────────────────────┘
                            ↓
┌─────────────────────────────────────────────────────────────────┐
│ STAGE 5: RECORDING                                              │
│ - Result cache and idempotency cache written on success         │
│ - AllProvidersExhaustedError with attempts and retry hint       │
└─────────────────────────────────────────────────────────────────┘

CANCELLATION:
-------------
Stages 1-5 run in their own task, awaited through ``asyncio.shield``. If the
caller goes away mid-call, the provider call still completes and its outcome
is still reported to the breaker, the key pool and the caches. The only hard
cancellation is the per-call timeout.

DEPENDENCY INJECTION PATTERN:
-----------------------------
Every collaborator is passed in through the constructor. ``build_orchestrator``
wires the production graph from Settings; tests construct the orchestrator
directly with fakes and a controllable clock.
"""

import asyncio
import math
import time
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any

from inference_gateway.analysis.models.analysis import AnalysisRequest, NormalizedResult
from inference_gateway.core.config.constants import ALLOWED_IMAGE_MIME_TYPES
from inference_gateway.core.config.settings import LimitSettings
from inference_gateway.core.exceptions import (
    AllProvidersExhaustedError,
    CircuitBreakerOpenError,
    CredentialsExhaustedError,
    FallbackBudgetExceededError,
    InvalidInputError,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderQuotaExceededError,
    ProviderTimeoutError,
    StoreError,
)
from inference_gateway.core.interfaces.state_store import Clock
from inference_gateway.core.logging.logger import (
    clear_request_id,
    get_logger,
    log_stage,
    set_request_id,
)
from inference_gateway.core.resilience.circuit_breaker import CircuitBreakerManager
from inference_gateway.core.resilience.key_rotator import KeyRotator
from inference_gateway.core.resilience.spend_guard import SpendGuard
from inference_gateway.infrastructure.cache.result_cache import (
    IdempotencyCache,
    ResultCache,
    fingerprint,
)
from inference_gateway.llm_providers.base_provider import BaseProvider
from inference_gateway.rate_limiting.rate_limiter import RateLimiter

logger = get_logger(__name__)


# ============================================================================
# ROUTING TYPES
# ============================================================================


@dataclass(frozen=True)
class ProviderRoute:
    """A provider in the fallback chain, with its optional spend ceiling."""

    provider: BaseProvider
    spend_guard: SpendGuard | None = None

    @property
    def name(self) -> str:
        return self.provider.name


@dataclass(frozen=True)
class ProviderAttempt:
    """
    What happened with one provider during a request.

    outcome is one of: circuit_open, credentials_exhausted, not_configured,
    budget_exceeded, quota_exceeded, failed.
    """

    provider: str
    outcome: str
    error_code: str | None = None
    message: str | None = None
    key_id: str | None = None
    retry_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# ============================================================================
# REQUEST ORCHESTRATOR CLASS
# ============================================================================


class RequestOrchestrator:
    """
    Coordinates one analysis request across caches, quotas and providers.

    Usage:
        orchestrator = build_orchestrator(settings, store)
        result = await orchestrator.analyze(request)
    """

    def __init__(
        self,
        routes: Sequence[ProviderRoute],
        rate_limiter: RateLimiter,
        key_rotator: KeyRotator,
        breakers: CircuitBreakerManager,
        result_cache: ResultCache,
        idempotency_cache: IdempotencyCache,
        limits: LimitSettings,
        clock: Clock = time.time,
    ):
        if not routes:
            raise ValueError("at least one provider route is required")
        self._routes = list(routes)
        self._rate_limiter = rate_limiter
        self._rotator = key_rotator
        self._breakers = breakers
        self._result_cache = result_cache
        self._idempotency = idempotency_cache
        self._limits = limits
        self._clock = clock

        # Leader task per (caller, token) in this process
        self._inflight: dict[str, asyncio.Task] = {}
        # Strong references; the event loop only keeps weak ones
        self._background: set[asyncio.Task] = set()

        logger.info(
            "Request orchestrator initialized",
            stage="ORCH.0",
            providers=[route.name for route in self._routes],
            request_timeout=limits.REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def result_cache(self) -> ResultCache:
        return self._result_cache

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def analyze(self, request: AnalysisRequest) -> NormalizedResult:
        """
        Run the complete lifecycle for one request.

        Returns:
            NormalizedResult: From the idempotency cache, the result cache or
            exactly one successful provider call

        Raises:
            InvalidInputError: Input rejected locally or by the provider
            RateLimitExceededError: A quota window is full
            AllProvidersExhaustedError: No provider produced a result
        """
        set_request_id(request.request_id)
        started = time.perf_counter()
        log_stage(
            logger,
            "0",
            "Analysis request received",
            caller_id=request.caller.caller_id,
            tier=request.caller.tier.value,
            image_bytes=len(request.image),
            mime_type=request.mime_type,
            idempotent=request.idempotency_token is not None,
        )

        try:
            self.validate(request)

            if request.idempotency_token is None:
                result = await self._run_shielded(self._process(request))
            else:
                result = await self._join_or_lead(request, request.idempotency_token)

            log_stage(
                logger,
                "5.3",
                "Analysis request completed",
                provider=result.provenance.provider,
                cached=result.cached,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            return result
        finally:
            clear_request_id()

    def validate(self, request: AnalysisRequest) -> None:
        """
        STAGE-0: Input validation

        Raises:
            InvalidInputError: First failed check
        """
        if not request.image:
            raise InvalidInputError("Image is empty", details={"field": "image"})

        max_bytes = self._limits.MAX_IMAGE_SIZE_BYTES
        if len(request.image) > max_bytes:
            raise InvalidInputError(
                f"Image exceeds {max_bytes // (1024 * 1024)} MB",
                details={"field": "image", "size": len(request.image), "max_size": max_bytes},
            )

        if request.mime_type.lower() not in ALLOWED_IMAGE_MIME_TYPES:
            raise InvalidInputError(
                f"Unsupported image type: {request.mime_type}",
                details={"field": "mime_type", "allowed": sorted(ALLOWED_IMAGE_MIME_TYPES)},
            )

        if not request.prompt.strip():
            raise InvalidInputError("Prompt is empty", details={"field": "prompt"})

        if len(request.prompt) > self._limits.MAX_PROMPT_LENGTH:
            raise InvalidInputError(
                f"Prompt exceeds {self._limits.MAX_PROMPT_LENGTH} characters",
                details={
                    "field": "prompt",
                    "length": len(request.prompt),
                    "max_length": self._limits.MAX_PROMPT_LENGTH,
                },
            )

    # ------------------------------------------------------------------
    # STAGE 1: Idempotency
    # ------------------------------------------------------------------

    async def _join_or_lead(self, request: AnalysisRequest, token: str) -> NormalizedResult:
        scope = IdempotencyCache.key(request.caller.caller_id, token)

        # No await between lookup and registration: exactly one leader per scope
        leader = self._inflight.get(scope)
        if leader is None:
            leader = self._spawn(self._lead(request, token))
            self._inflight[scope] = leader
            leader.add_done_callback(lambda _: self._inflight.pop(scope, None))
        else:
            log_stage(logger, "1.2", "Joining in-flight request", caller_id=request.caller.caller_id)

        return await asyncio.shield(leader)

    async def _lead(self, request: AnalysisRequest, token: str) -> NormalizedResult:
        caller_id = request.caller.caller_id

        outcome = await self._idempotency.get(caller_id, token)
        if outcome is not None:
            return outcome.unwrap()

        claimed = await self._idempotency.claim(caller_id, token)
        if not claimed:
            log_stage(logger, "1.3", "Token claimed by another instance, waiting", caller_id=caller_id)
            outcome = await self._idempotency.wait_for(
                caller_id, token, timeout=self._limits.REQUEST_TIMEOUT_SECONDS * 2
            )
            if outcome is not None:
                return outcome.unwrap()

        try:
            result = await self._process(request)
        except InvalidInputError as e:
            if e.provider is not None:
                await self._idempotency.put_failure(caller_id, token, e)
            raise
        else:
            await self._idempotency.put_result(caller_id, token, result)
            return result
        finally:
            if claimed:
                await self._idempotency.release(caller_id, token)

    # ------------------------------------------------------------------
    # STAGES 2-5
    # ------------------------------------------------------------------

    async def _process(self, request: AnalysisRequest) -> NormalizedResult:
        await self._rate_limiter.check(request.caller, request.source_address)

        fp = fingerprint(request.image, request.prompt)
        cached = await self._result_cache.get(fp)
        if cached is not None:
            return cached.model_copy(update={"cached": True})

        result = await self._call_providers(request)
        await self._result_cache.put(fp, result)
        return result

    async def _call_providers(self, request: AnalysisRequest) -> NormalizedResult:
        """
        STAGE-4: Provider loop

        Each provider gets at most one call. A provider that cannot be called
        (open circuit, no usable key, spend ceiling) is skipped without a call.
        """
        attempts: list[ProviderAttempt] = []
        timeout = self._limits.REQUEST_TIMEOUT_SECONDS

        for route in self._routes:
            name = route.name

            if route.spend_guard is not None:
                try:
                    await route.spend_guard.ensure_available()
                except FallbackBudgetExceededError as e:
                    attempts.append(self._skipped(name, "budget_exceeded", e, self._retry_at(e)))
                    continue

            breaker = self._breakers.get_breaker(name)
            try:
                permit = await breaker.acquire()
            except CircuitBreakerOpenError as e:
                attempts.append(self._skipped(name, "circuit_open", e, e.open_until))
                continue

            try:
                credential = await self._rotator.select(name)
            except CredentialsExhaustedError as e:
                await breaker.release(permit)
                attempts.append(self._skipped(name, "credentials_exhausted", e, e.details.get("available_at")))
                continue
            except ProviderNotConfiguredError as e:
                await breaker.release(permit)
                attempts.append(self._skipped(name, "not_configured", e))
                continue

            log_stage(logger, "4.1", "Calling provider", provider=name, key_id=credential.key_id, probe=permit.probe)
            try:
                result = await asyncio.wait_for(route.provider.analyze(request, credential), timeout)
            except asyncio.TimeoutError:
                await breaker.record_failure(permit)
                await self._rotator.record_outcome(credential, success=False)
                error = ProviderTimeoutError(
                    f"{name} did not answer within {timeout}s",
                    details={"provider": name, "timeout_seconds": timeout},
                )
                attempts.append(self._failed(name, "failed", error, credential.key_id))
                continue
            except ProviderQuotaExceededError as e:
                # Key problem, not provider health
                await self._rotator.cooldown(credential)
                await breaker.release(permit)
                await self._rotator.record_outcome(credential, success=False)
                attempts.append(self._failed(name, "quota_exceeded", e, credential.key_id))
                continue
            except InvalidInputError:
                await breaker.release(permit)
                raise
            except ProviderError as e:
                await breaker.record_failure(permit)
                await self._rotator.record_outcome(credential, success=False)
                attempts.append(self._failed(name, "failed", e, credential.key_id))
                continue

            await breaker.record_success(permit)
            await self._rotator.record_outcome(credential, success=True)
            log_stage(logger, "4.2", "Provider succeeded", provider=name, key_id=credential.key_id)
            return result

        raise self._exhausted(attempts)

    def _skipped(
        self, provider: str, outcome: str, error: ProviderError | CircuitBreakerOpenError, retry_at: float | None = None
    ) -> ProviderAttempt:
        log_stage(logger, "4.3", "Provider skipped", level="warning", provider=provider, outcome=outcome, retry_at=retry_at)
        return ProviderAttempt(provider=provider, outcome=outcome, error_code=error.code, message=error.message, retry_at=retry_at)

    def _failed(self, provider: str, outcome: str, error: ProviderError, key_id: str) -> ProviderAttempt:
        log_stage(
            logger,
            "4.3",
            "Provider attempt failed",
            level="warning",
            provider=provider,
            key_id=key_id,
            outcome=outcome,
            error_type=type(error).__name__,
        )
        return ProviderAttempt(provider=provider, outcome=outcome, error_code=error.code, message=error.message, key_id=key_id)

    def _retry_at(self, error: ProviderError) -> float | None:
        if error.retry_after is None:
            return None
        return self._clock() + error.retry_after

    def _exhausted(self, attempts: list[ProviderAttempt]) -> AllProvidersExhaustedError:
        """
        STAGE-5.2: Exhaustion

        The retry hint is the earliest known recovery time across providers.
        """
        recoveries = [a.retry_at for a in attempts if a.retry_at is not None]
        details: dict[str, Any] = {"attempts": [a.to_dict() for a in attempts]}
        if recoveries:
            earliest = min(recoveries)
            details["retry_at"] = earliest
            details["retry_after"] = max(1, math.ceil(earliest - self._clock()))

        log_stage(
            logger,
            "5.2",
            "All providers exhausted",
            level="error",
            attempts=[f"{a.provider}:{a.outcome}" for a in attempts],
            retry_after=details.get("retry_after"),
        )
        return AllProvidersExhaustedError("All providers are unavailable", details=details)

    # ------------------------------------------------------------------
    # Task management
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._settle)
        return task

    def _settle(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        # Mark the exception retrieved when every awaiter was cancelled
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Background request finished with error", stage="ORCH.1", error_type=type(task.exception()).__name__)

    async def _run_shielded(self, coro) -> NormalizedResult:
        return await asyncio.shield(self._spawn(coro))

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for requests whose callers already went away."""
        if self._background:
            await asyncio.wait(set(self._background), timeout=timeout)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def provider_status(self) -> dict[str, dict[str, Any]]:
        """
        Breaker state, key pool and spend per provider, for the health route.
        """
        breakers = await self._breakers.get_all_status()
        status = {}
        for route in self._routes:
            entry: dict[str, Any] = {
                "model": route.provider.model,
                "circuit": breakers.get(route.name, {"state": "closed"}),
            }
            try:
                entry["keys"] = await self._rotator.status(route.name)
                if route.spend_guard is not None:
                    entry["spend"] = {
                        "spent_today": round(await route.spend_guard.spent_today(), 4),
                        "ceiling": route.spend_guard.max_per_day,
                    }
            except StoreError as e:
                logger.warning("Provider status unavailable", stage="ORCH.2", provider=route.name, error=str(e))
                entry["error"] = "state store unavailable"
            status[route.name] = entry
        return status

    async def close(self) -> None:
        for route in self._routes:
            await route.provider.close()
