"""
FastAPI Dependency Injection Module
===================================

Reusable dependencies for route handlers:

- the Settings snapshot and RequestOrchestrator stored on ``app.state``
- the caller identity, taken from headers set by the upstream authenticator
- the optional idempotency token
- the client source address, honouring ``X-Forwarded-For``

Example:
    @router.get("/usage")
    async def usage(orchestrator: OrchestratorDep, caller: CallerDep):
        return await orchestrator.rate_limiter.usage(caller)
"""

from typing import Annotated

from fastapi import Depends, Header, Request

from inference_gateway.analysis.models.analysis import CallerIdentity
from inference_gateway.analysis.services.request_orchestrator import RequestOrchestrator
from inference_gateway.core.config.constants import (
    HEADER_FORWARDED_FOR,
    HEADER_IDEMPOTENCY_KEY,
    HEADER_USER_ID,
    HEADER_USER_TIER,
    MAX_IDENTIFIER_LENGTH,
    Tier,
)
from inference_gateway.core.config.settings import Settings
from inference_gateway.core.exceptions import InvalidInputError

# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def _check_length(header: str, value: str) -> None:
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise InvalidInputError(
            f"{header} header exceeds {MAX_IDENTIFIER_LENGTH} characters",
            details={"field": header, "max_length": MAX_IDENTIFIER_LENGTH},
        )


def get_app_settings(request: Request) -> Settings:
    """Settings snapshot the application was created with."""
    return request.app.state.settings


def get_orchestrator(request: Request) -> RequestOrchestrator:
    """
    Retrieve the RequestOrchestrator singleton from application state.

    It is created once in the lifespan handler and shared by every request.
    """
    return request.app.state.orchestrator


def get_caller(
    user_id: Annotated[str | None, Header(alias=HEADER_USER_ID)] = None,
    user_tier: Annotated[str | None, Header(alias=HEADER_USER_TIER)] = None,
) -> CallerIdentity:
    """
    Caller identity from the authenticator's headers.

    Raises:
        InvalidInputError: If the user id is missing or too long, or the tier is unknown
    """
    if not user_id or not user_id.strip():
        raise InvalidInputError(f"{HEADER_USER_ID} header is required", details={"field": HEADER_USER_ID})
    _check_length(HEADER_USER_ID, user_id.strip())

    tier = Tier.FREE
    if user_tier:
        try:
            tier = Tier(user_tier.strip().lower())
        except ValueError as e:
            raise InvalidInputError(
                f"Unknown tier: {user_tier}",
                details={"field": HEADER_USER_TIER, "allowed": [t.value for t in Tier]},
            ) from e

    return CallerIdentity(caller_id=user_id.strip(), tier=tier)


def get_idempotency_token(
    idempotency_key: Annotated[str | None, Header(alias=HEADER_IDEMPOTENCY_KEY)] = None,
) -> str | None:
    """Optional replay token; blank means none."""
    if not idempotency_key or not idempotency_key.strip():
        return None
    token = idempotency_key.strip()
    _check_length(HEADER_IDEMPOTENCY_KEY, token)
    return token


def get_source_address(request: Request) -> str:
    """
    Client address for per-source limits.

    The first ``X-Forwarded-For`` hop wins; otherwise the socket peer.
    """
    forwarded = request.headers.get(HEADER_FORWARDED_FOR)
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# ============================================================================
# TYPE ALIASES
# ============================================================================

SettingsDep = Annotated[Settings, Depends(get_app_settings)]
OrchestratorDep = Annotated[RequestOrchestrator, Depends(get_orchestrator)]
CallerDep = Annotated[CallerIdentity, Depends(get_caller)]
SourceAddressDep = Annotated[str, Depends(get_source_address)]
IdempotencyTokenDep = Annotated[str | None, Depends(get_idempotency_token)]
