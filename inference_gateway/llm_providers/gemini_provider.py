#!/usr/bin/env python3
"""
Gemini Provider Implementation (primary)

Calls the generateContent REST endpoint directly with httpx and the explicit
wire models in ``gemini_models``.

Architectural Decision: REST over the SDK
- The request body must match the provider schema exactly; building it from
  our own models keeps every field under our control
- The key is chosen per request by the KeyRotator; the SDK configures keys
  process-wide, which would race between concurrent requests
- One pooled AsyncClient serves every key

Error mapping (HTTP-equivalent status of the reply):
- 429 / RESOURCE_EXHAUSTED  -> ProviderQuotaExceededError (key cooldown)
- 401 / 403                 -> ProviderAuthenticationError (key cooldown)
- 408 / 5xx                 -> ProviderTransportError (retryable)
- 400 INVALID_ARGUMENT      -> InvalidInputError (the image or prompt itself)
- other 4xx                 -> ProviderTerminalError
- timeouts                  -> ProviderTimeoutError
- connection failures       -> ProviderTransportError
"""

import base64

import httpx
import orjson
from pydantic import ValidationError

from inference_gateway.analysis.models.analysis import (
    AnalysisRequest,
    NormalizedResult,
    Provenance,
    ProviderCredential,
    TokenUsage,
)
from inference_gateway.core.config.constants import LLMProvider
from inference_gateway.core.config.settings import GeminiSettings
from inference_gateway.core.exceptions import (
    GatewayError,
    InvalidInputError,
    ProviderAuthenticationError,
    ProviderQuotaExceededError,
    ProviderTerminalError,
    ProviderTimeoutError,
    ProviderTransportError,
)
from inference_gateway.core.logging import get_logger
from inference_gateway.llm_providers.base_provider import BaseProvider, ProviderConfig
from inference_gateway.llm_providers.gemini_models import (
    DEFAULT_SAFETY_SETTINGS,
    Content,
    ErrorEnvelope,
    GenerateContentRequest,
    GenerateContentResponse,
    GenerationConfig,
    InlineData,
    InlineDataPart,
    TextPart,
)

logger = get_logger(__name__)

_QUOTA_STATUSES = {"RESOURCE_EXHAUSTED"}
_AUTH_STATUSES = {"UNAUTHENTICATED", "PERMISSION_DENIED"}
_TRANSIENT_STATUSES = {"UNAVAILABLE", "INTERNAL", "DEADLINE_EXCEEDED"}
_INPUT_STATUSES = {"INVALID_ARGUMENT"}


def classify_error(http_status: int, envelope: ErrorEnvelope | None) -> GatewayError:
    """
    Map a provider error reply to the gateway failure kind.

    The envelope's own ``code``/``status`` win over the HTTP status line when
    present, since some proxies rewrite the latter.
    """
    code = envelope.code if envelope and envelope.code else http_status
    status = (envelope.status if envelope else None) or ""
    message = (envelope.message if envelope else None) or f"HTTP {http_status}"
    details = {
        "provider": LLMProvider.GEMINI.value,
        "http_status": code,
        "provider_status": status or None,
    }

    if code == 429 or status in _QUOTA_STATUSES:
        return ProviderQuotaExceededError(f"Gemini quota exceeded: {message}", details=details)
    if code in (401, 403) or status in _AUTH_STATUSES:
        return ProviderAuthenticationError(f"Gemini rejected the key: {message}", details=details)
    if code == 408 or code >= 500 or status in _TRANSIENT_STATUSES:
        return ProviderTransportError(f"Gemini unavailable: {message}", details=details)
    if code == 400 and status in _INPUT_STATUSES:
        return InvalidInputError(f"Gemini rejected the input: {message}", details=details)
    return ProviderTerminalError(f"Gemini rejected the request: {message}", details=details)


class GeminiProvider(BaseProvider):
    """
    Primary vision provider.

    STAGE-GEMINI: Gemini provider operations
    """

    def __init__(
        self,
        config: ProviderConfig,
        generation: GenerationConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config)
        self.generation = generation
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout, connect=min(config.timeout, 5.0)),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )

    @classmethod
    def from_settings(cls, settings: GeminiSettings, timeout: float) -> "GeminiProvider":
        config = ProviderConfig(
            name=LLMProvider.GEMINI.value,
            base_url=settings.BASE_URL,
            model=settings.MODEL,
            timeout=timeout,
        )
        generation = GenerationConfig(
            temperature=settings.TEMPERATURE,
            top_p=settings.TOP_P,
            top_k=settings.TOP_K,
            max_output_tokens=settings.MAX_OUTPUT_TOKENS,
            response_mime_type=settings.RESPONSE_MIME_TYPE,
        )
        return cls(config, generation)

    def build_request(self, request: AnalysisRequest) -> GenerateContentRequest:
        """
        Translate an analysis request into the wire body.

        STAGE-GEMINI.1: Request building
        """
        return GenerateContentRequest(
            contents=[
                Content(
                    role="user",
                    parts=[
                        TextPart(text=request.prompt),
                        InlineDataPart(
                            inline_data=InlineData(
                                mime_type=request.mime_type,
                                data=base64.b64encode(request.image).decode("ascii"),
                            )
                        ),
                    ],
                )
            ],
            generation_config=self.generation,
            safety_settings=list(DEFAULT_SAFETY_SETTINGS),
        )

    async def _analyze_internal(
        self, request: AnalysisRequest, credential: ProviderCredential
    ) -> NormalizedResult:
        body = self.build_request(request).to_wire()
        url = f"{self.config.base_url.rstrip('/')}/models/{self.model}:generateContent"

        try:
            response = await self._client.post(
                url,
                content=orjson.dumps(body),
                headers={"Content-Type": "application/json", "x-goog-api-key": credential.secret},
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError.from_exception(
                e, message="Gemini request timed out", provider=self.name
            ) from e
        except httpx.TransportError as e:
            raise ProviderTransportError.from_exception(
                e, message="Gemini transport failure", provider=self.name
            ) from e

        return self.parse_response(response.status_code, response.content, credential)

    def parse_response(
        self, http_status: int, raw: bytes, credential: ProviderCredential
    ) -> NormalizedResult:
        """
        Parse and classify a generateContent reply.

        STAGE-GEMINI.2: Response parsing

        Distinguishes a result with candidates, a well-formed empty reply
        (terminal failure) and an error envelope (classified by status).
        """
        try:
            parsed = GenerateContentResponse.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as e:
            if http_status >= 400:
                raise classify_error(http_status, None) from e
            raise ProviderTerminalError.from_exception(
                e, message="Gemini returned a malformed body", provider=self.name
            ) from e

        if parsed.error is not None or http_status >= 400:
            raise classify_error(http_status, parsed.error)

        if not parsed.candidates:
            block_reason = parsed.prompt_feedback.block_reason if parsed.prompt_feedback else None
            raise ProviderTerminalError(
                "Gemini returned no candidates",
                details={"provider": self.name, "block_reason": block_reason},
            )

        candidate = parsed.candidates[0]
        text = candidate.text
        if not text:
            raise ProviderTerminalError(
                "Gemini candidate has no text",
                details={"provider": self.name, "finish_reason": candidate.finish_reason},
            )

        payload = None
        if self.generation.response_mime_type == "application/json":
            try:
                payload = orjson.loads(text)
            except orjson.JSONDecodeError as e:
                raise ProviderTerminalError.from_exception(
                    e,
                    message="Gemini returned invalid JSON",
                    provider=self.name,
                    finish_reason=candidate.finish_reason,
                ) from e

        usage = None
        if parsed.usage_metadata is not None:
            usage = TokenUsage(
                prompt_tokens=parsed.usage_metadata.prompt_token_count,
                completion_tokens=parsed.usage_metadata.candidates_token_count,
                total_tokens=parsed.usage_metadata.total_token_count,
            )

        return NormalizedResult(
            text=text,
            payload=payload,
            usage=usage,
            provenance=Provenance(provider=self.name, key_index=credential.index, model=self.model),
            finish_reason=candidate.finish_reason,
        )

    async def close(self) -> None:
        await self._client.aclose()
