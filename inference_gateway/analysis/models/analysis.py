"""
Analysis Request and Result Models

Provider-agnostic models that flow through the orchestrator.

- AnalysisRequest: immutable inbound request (image, prompt, caller, source)
- NormalizedResult: provider-agnostic output with usage and provenance
- ProviderCredential: one provider key, owned by the KeyRotator
"""

import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from inference_gateway.core.config.constants import MAX_IDENTIFIER_LENGTH, Tier


class CallerIdentity(BaseModel):
    """Authenticated caller and the tier that selects its quotas."""

    model_config = ConfigDict(frozen=True)

    caller_id: str = Field(..., min_length=1, max_length=MAX_IDENTIFIER_LENGTH)
    tier: Tier = Tier.FREE


class AnalysisRequest(BaseModel):
    """
    Immutable image-analysis request.

    Size, MIME type and prompt limits are configuration-dependent and
    enforced by the orchestrator before any quota is charged.

    Example:
        request = AnalysisRequest(
            image=jpeg_bytes,
            mime_type="image/jpeg",
            prompt="Identify the coral species",
            caller=CallerIdentity(caller_id="user-1", tier=Tier.FREE),
            source_address="203.0.113.7",
        )
    """

    model_config = ConfigDict(frozen=True)

    image: bytes = Field(..., repr=False)
    mime_type: str
    prompt: str
    caller: CallerIdentity
    source_address: str = Field(..., min_length=1)
    idempotency_token: str | None = Field(default=None, max_length=MAX_IDENTIFIER_LENGTH)
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)


class TokenUsage(BaseModel):
    """Token accounting reported by the provider."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class Provenance(BaseModel):
    """Which provider, key slot and model produced a result."""

    model_config = ConfigDict(frozen=True)

    provider: str
    key_index: int
    model: str


class NormalizedResult(BaseModel):
    """
    Provider-agnostic analysis result.

    ``payload`` holds the parsed JSON object when the provider returned JSON
    text, otherwise None. ``cached`` is set when the result was served from
    the result cache instead of a provider call.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    payload: Any = None
    usage: TokenUsage | None = None
    provenance: Provenance
    finish_reason: str | None = None
    cached: bool = False


@dataclass(frozen=True)
class ProviderCredential:
    """A single provider key. The secret never appears in repr or logs."""

    provider: str
    key_id: str
    index: int
    secret: str = field(repr=False)
