"""
Health and Usage Routes
=======================

GET /health
    State store reachability plus, per provider, circuit state, key pool
    availability and fallback spend. Returns 503 when the state store is
    unreachable, so a load balancer stops routing to an instance that can no
    longer enforce quotas consistently.

GET /usage
    The caller's remaining daily and per-minute quota. Consumes none.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from inference_gateway.application.api.dependencies import CallerDep, OrchestratorDep, SettingsDep
from inference_gateway.core.config.constants import CircuitState
from inference_gateway.core.exceptions import StoreError

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str  # "healthy", "degraded" or "unhealthy"
    timestamp: str
    version: str
    state_store: str
    providers: dict | None = None


class UsageResponse(BaseModel):
    caller_id: str
    tier: str
    usage: dict[str, dict[str, int]]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request, response: Response, orchestrator: OrchestratorDep, settings: SettingsDep
) -> HealthResponse:
    """
    Instance and provider health.

    degraded: at least one provider has an open circuit or no usable key
    """
    store = request.app.state.store
    try:
        store_ok = await store.ping()
    except StoreError:
        store_ok = False

    providers = await orchestrator.provider_status() if store_ok else None

    if not store_ok:
        status = "unhealthy"
        response.status_code = 503
    elif any(
        entry.get("circuit", {}).get("state") == CircuitState.OPEN.value
        or entry.get("keys", {}).get("available", 1) == 0
        for entry in providers.values()
    ):
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app.APP_VERSION,
        state_store="ok" if store_ok else "unreachable",
        providers=providers,
    )


@router.get("/usage", response_model=UsageResponse)
async def usage(orchestrator: OrchestratorDep, caller: CallerDep) -> UsageResponse:
    """Remaining quota for the calling user."""
    return UsageResponse(
        caller_id=caller.caller_id,
        tier=caller.tier.value,
        usage=await orchestrator.rate_limiter.usage(caller),
    )
