"""
Error Handling
==============

Centralized mapping of failures to HTTP responses. Every failure uses the
same envelope, ``{"error": {"code", "message", "request_id", "retryable",
"retry_after", "details"}}``.

FASTAPI ERROR HANDLING:
-----------------------
Two mechanisms are combined:
1. Exception handlers for classified failures: GatewayError subclasses carry
   their own ``http_status``, ``code`` and retry hint, and request body
   validation failures become INVALID_REQUEST
2. ErrorHandlingMiddleware as the last line of defense for anything
   unclassified, which becomes a generic 500 without internal details

Headers:
- ``Retry-After`` whenever the failure carries a retry hint
- ``X-RateLimit-*`` on 429 responses
"""

import traceback
from collections.abc import Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from inference_gateway.application.api.models.analysis import ErrorResponse
from inference_gateway.core.config.constants import (
    HEADER_RATE_LIMIT_LIMIT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    HEADER_REQUEST_ID,
)
from inference_gateway.core.exceptions import GatewayError, InvalidInputError, RateLimitExceededError
from inference_gateway.core.logging.logger import get_logger, get_request_id

logger = get_logger(__name__)


def error_headers(exc: GatewayError, request_id: str | None) -> dict[str, str]:
    headers = {}
    if request_id:
        headers[HEADER_REQUEST_ID] = request_id
    if exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    if isinstance(exc, RateLimitExceededError):
        headers[HEADER_RATE_LIMIT_LIMIT] = str(exc.details.get("limit", ""))
        headers[HEADER_RATE_LIMIT_REMAINING] = "0"
        if exc.reset_at is not None:
            headers[HEADER_RATE_LIMIT_RESET] = str(exc.reset_at)
    return headers


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None) or get_request_id()


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Render a classified failure with its own status and retry hint."""
    request_id = _request_id(request)
    log = logger.warning if exc.http_status < 500 else logger.error
    log(
        "Request failed",
        stage="API.ERR",
        path=request.url.path,
        code=exc.code,
        error_type=type(exc).__name__,
        http_status=exc.http_status,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.http_status,
        content=ErrorResponse.from_error(exc, request_id).model_dump(mode="json", exclude_none=True),
        headers=error_headers(exc, request_id),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body or parameter validation failure, rendered as INVALID_REQUEST."""
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    invalid = InvalidInputError("Request validation failed", details={"errors": errors})
    return await gateway_error_handler(request, invalid)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Catch-all for exceptions no handler classified.

    Internal details stay in the logs; the client gets INTERNAL_ERROR and the
    request id for correlation. Tracebacks are only included in development.
    """

    def __init__(self, app, include_traceback: bool = False):
        super().__init__(app)
        self.include_traceback = include_traceback

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            request_id = _request_id(request)
            logger.error(
                f"Unhandled exception in request: {request.method} {request.url.path}",
                stage="API.ERR",
                method=request.method,
                path=request.url.path,
                error_type=type(e).__name__,
                exc_info=True,
            )

            body = {
                "error": {
                    "code": GatewayError.code,
                    "message": "An unexpected error occurred while processing your request",
                    "request_id": request_id,
                    "retryable": False,
                }
            }
            if self.include_traceback:
                body["error"]["details"] = {"error_type": type(e).__name__, "traceback": traceback.format_exc()}

            headers = {HEADER_REQUEST_ID: request_id} if request_id else None
            return JSONResponse(status_code=500, content=body, headers=headers)
