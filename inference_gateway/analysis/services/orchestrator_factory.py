"""
Orchestrator Wiring

Builds the production RequestOrchestrator from Settings and a state store.

Architectural Decision: Centralized provider registration
- Single location for the provider chain and its order
- Conditional registration: the fallback joins the chain only when enabled
  and a key is configured
- Every stateful component shares the one state store, so a Redis backend
  makes breakers, quotas, key cooldowns and caches consistent across
  instances
"""

import time

from inference_gateway.analysis.services.request_orchestrator import (
    ProviderRoute,
    RequestOrchestrator,
)
from inference_gateway.core.config.constants import LLMProvider
from inference_gateway.core.config.settings import Settings
from inference_gateway.core.interfaces.state_store import Clock, StateStore
from inference_gateway.core.logging.logger import get_logger
from inference_gateway.core.resilience.circuit_breaker import CircuitBreakerManager
from inference_gateway.core.resilience.key_rotator import KeyRotator
from inference_gateway.core.resilience.spend_guard import SpendGuard
from inference_gateway.infrastructure.cache.result_cache import IdempotencyCache, ResultCache
from inference_gateway.llm_providers import GeminiProvider, OpenAIProvider
from inference_gateway.rate_limiting.rate_limiter import RateLimiter

logger = get_logger(__name__)


def build_routes(settings: Settings, store: StateStore, clock: Clock = time.time) -> list[ProviderRoute]:
    """
    Provider chain in call order: primary, then fallback.
    """
    timeout = settings.limits.REQUEST_TIMEOUT_SECONDS
    routes = [ProviderRoute(GeminiProvider.from_settings(settings.gemini, timeout))]
    logger.info("Registered Gemini provider", stage="ORCH.0", keys=len(settings.gemini.API_KEYS))

    if not settings.features.ENABLE_OPENAI_FALLBACK:
        logger.info("OpenAI fallback disabled", stage="ORCH.0")
    elif not settings.openai.API_KEY:
        logger.warning("OpenAI fallback enabled but OPENAI_API_KEY is not set", stage="ORCH.0")
    else:
        spend_guard = SpendGuard(store, LLMProvider.OPENAI.value, settings.openai.MAX_COST_PER_DAY, clock)
        routes.append(
            ProviderRoute(OpenAIProvider.from_settings(settings.openai, timeout, spend_guard), spend_guard)
        )
        logger.info("Registered OpenAI fallback provider", stage="ORCH.0", max_cost_per_day=settings.openai.MAX_COST_PER_DAY)

    return routes


def build_orchestrator(settings: Settings, store: StateStore, clock: Clock = time.time) -> RequestOrchestrator:
    """
    Wire every collaborator of the orchestrator onto one state store.

    Args:
        settings: Application settings
        store: Shared state store (memory or Redis)
        clock: Epoch-seconds clock, injectable for tests
    """
    cache_settings = settings.cache
    return RequestOrchestrator(
        routes=build_routes(settings, store, clock),
        rate_limiter=RateLimiter(store, settings.rate_limit, clock),
        key_rotator=KeyRotator.from_settings(store, settings, clock),
        breakers=CircuitBreakerManager(store, settings, clock),
        result_cache=ResultCache(
            store,
            cache_settings.RESULT_TTL_SECONDS,
            enabled=settings.features.ENABLE_IMAGE_CACHING,
            clock=clock,
        ),
        idempotency_cache=IdempotencyCache(
            store,
            cache_settings.IDEMPOTENCY_TTL_SECONDS,
            pending_ttl_seconds=settings.limits.REQUEST_TIMEOUT_SECONDS * 2,
            clock=clock,
        ),
        limits=settings.limits,
        clock=clock,
    )
