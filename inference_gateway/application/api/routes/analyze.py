"""
Analysis Routes
===============

POST /analyze: the gateway's single inference endpoint.

The route only translates HTTP into an AnalysisRequest and back. Every
decision about quotas, caches, breakers, keys and fallback belongs to the
RequestOrchestrator; failures surface as GatewayError subclasses and are
rendered by the registered exception handlers.

Headers read:
- X-User-ID / X-User-Tier: caller identity from the upstream authenticator
- Idempotency-Key: optional replay token, scoped to the caller
- X-Forwarded-For: client address for per-source limits

Headers written:
- X-Request-ID
- X-RateLimit-Limit / -Remaining / -Reset for the caller's daily window
"""

from fastapi import APIRouter, Request, Response

from inference_gateway.analysis.models.analysis import AnalysisRequest
from inference_gateway.application.api.dependencies import (
    CallerDep,
    IdempotencyTokenDep,
    OrchestratorDep,
    SettingsDep,
    SourceAddressDep,
)
from inference_gateway.application.api.models.analysis import (
    AnalyzeRequestModel,
    AnalyzeResponseModel,
    ErrorResponse,
)
from inference_gateway.core.config.constants import (
    HEADER_RATE_LIMIT_LIMIT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    RateLimitKind,
)
from inference_gateway.core.exceptions import InvalidInputError

router = APIRouter(tags=["Analysis"])

_ERROR_RESPONSES = {
    status: {"model": ErrorResponse}
    for status in (400, 429, 500, 502, 503, 504)
}


@router.post("/analyze", response_model=AnalyzeResponseModel, responses=_ERROR_RESPONSES)
async def analyze(
    body: AnalyzeRequestModel,
    request: Request,
    response: Response,
    orchestrator: OrchestratorDep,
    caller: CallerDep,
    source_address: SourceAddressDep,
    settings: SettingsDep,
    idempotency_token: IdempotencyTokenDep,
) -> AnalyzeResponseModel:
    """
    Analyze one image with the configured providers.

    Returns the parsed JSON result plus the caller's remaining quota. Served
    from the result cache when the same image and prompt were analyzed
    recently (``cached: true``).
    """
    max_request = settings.limits.MAX_REQUEST_SIZE_BYTES
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_request:
        raise InvalidInputError(
            f"Request body exceeds {max_request // (1024 * 1024)} MB",
            details={"field": "body", "size": int(content_length), "max_size": max_request},
        )

    image, mime_type = body.decode()
    analysis_request = AnalysisRequest(
        image=image,
        mime_type=mime_type,
        prompt=body.prompt,
        caller=caller,
        source_address=source_address,
        idempotency_token=idempotency_token,
        request_id=request.state.request_id,
    )

    result = await orchestrator.analyze(analysis_request)

    usage = await orchestrator.rate_limiter.usage(caller)
    daily = usage[RateLimitKind.CALLER_DAILY.value]
    response.headers[HEADER_RATE_LIMIT_LIMIT] = str(daily["limit"])
    response.headers[HEADER_RATE_LIMIT_REMAINING] = str(daily["remaining"])
    response.headers[HEADER_RATE_LIMIT_RESET] = str(daily["reset_at"])

    return AnalyzeResponseModel.from_result(analysis_request.request_id, result, usage)
