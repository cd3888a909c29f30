"""
Analysis API Models
===================

Wire models for the HTTP surface. They are deliberately separate from the
domain models in ``analysis.models``: the HTTP body carries base64 text and
caller headers, the domain request carries decoded bytes and a resolved
CallerIdentity.

This module defines:
- AnalyzeRequestModel: POST /analyze body
- AnalyzeResponseModel: successful analysis, with the caller's remaining quota
- ErrorResponse: the single error envelope every failure uses
"""

import base64
import binascii
from typing import Any

from pydantic import BaseModel, Field

from inference_gateway.analysis.models.analysis import NormalizedResult, TokenUsage
from inference_gateway.core.exceptions import GatewayError, InvalidInputError


# ============================================================================
# REQUEST MODELS
# ============================================================================


class AnalyzeRequestModel(BaseModel):
    """
    Request body for POST /analyze.

    ``image`` may be plain base64 or a ``data:<mime>;base64,`` URI; in the
    latter case the URI's MIME type is used when ``mime_type`` is omitted.
    """

    image: str = Field(..., min_length=1, description="Base64-encoded image bytes")
    mime_type: str | None = Field(default=None, description="image/jpeg, image/png, image/webp, image/heic or image/heif")
    prompt: str = Field(..., description="Analysis instructions")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "image": "/9j/4AAQSkZJRgABAQ...",
                    "mime_type": "image/jpeg",
                    "prompt": "Identify the corals and fish in this tank. Respond as JSON.",
                }
            ]
        }
    }

    def decode(self) -> tuple[bytes, str]:
        """
        Decoded image bytes and effective MIME type.

        Raises:
            InvalidInputError: If the image is not valid base64
        """
        data = self.image
        mime_type = self.mime_type
        if data.startswith("data:"):
            header, _, data = data.partition(",")
            if mime_type is None:
                mime_type = header[len("data:"):].split(";", 1)[0] or None

        try:
            image = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidInputError.from_exception(e, message="Image is not valid base64", field="image") from e

        return image, mime_type or "image/jpeg"


# ============================================================================
# RESPONSE MODELS
# ============================================================================


class AnalyzeResponseModel(BaseModel):
    """Successful analysis."""

    request_id: str
    result: Any = Field(default=None, description="Parsed JSON object returned by the model")
    text: str = Field(..., description="Raw model text")
    provider: str
    model: str
    cached: bool
    finish_reason: str | None = None
    tokens: TokenUsage | None = None
    usage: dict[str, dict[str, int]] | None = Field(default=None, description="Remaining caller quota")

    @classmethod
    def from_result(
        cls, request_id: str, result: NormalizedResult, usage: dict[str, dict[str, int]] | None = None
    ) -> "AnalyzeResponseModel":
        return cls(
            request_id=request_id,
            result=result.payload,
            text=result.text,
            provider=result.provenance.provider,
            model=result.provenance.model,
            cached=result.cached,
            finish_reason=result.finish_reason,
            tokens=result.usage,
            usage=usage,
        )


class ErrorBody(BaseModel):
    code: str
    message: str
    request_id: str | None = None
    retryable: bool = False
    retry_after: int | None = None
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Error envelope: ``{"error": {"code": ..., "message": ...}}``."""

    error: ErrorBody

    @classmethod
    def from_error(cls, exc: GatewayError, request_id: str | None = None) -> "ErrorResponse":
        return cls(
            error=ErrorBody(
                code=exc.code,
                message=exc.message,
                request_id=exc.request_id or request_id,
                retryable=exc.retryable,
                retry_after=exc.retry_after,
                details=exc.details or None,
            )
        )
