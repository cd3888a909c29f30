#!/usr/bin/env python3
"""
OpenAI Provider Implementation (fallback)

Implements the fallback provider with the official AsyncOpenAI client. It
translates OpenAI-specific exceptions into the gateway's classified failures
and prices every successful call into the SpendGuard.

Architectural Decision: Use official SDK
- Best compatibility with chat.completions and image inputs
- SDK retries disabled: the orchestrator makes exactly one attempt per provider
- One client per credential, created lazily and reused
"""

import base64

import orjson
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    InternalServerError,
    PermissionDeniedError,
    RateLimitError,
)

from inference_gateway.analysis.models.analysis import (
    AnalysisRequest,
    NormalizedResult,
    Provenance,
    ProviderCredential,
    TokenUsage,
)
from inference_gateway.core.config.constants import LLMProvider
from inference_gateway.core.config.settings import OpenAISettings
from inference_gateway.core.exceptions import (
    ProviderAuthenticationError,
    ProviderQuotaExceededError,
    ProviderTerminalError,
    ProviderTimeoutError,
    ProviderTransportError,
)
from inference_gateway.core.logging import get_logger
from inference_gateway.core.resilience.spend_guard import SpendGuard, token_cost
from inference_gateway.llm_providers.base_provider import BaseProvider, ProviderConfig

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an image analysis assistant. Follow the user's instructions exactly "
    "and respond with a single valid JSON object."
)


class OpenAIProvider(BaseProvider):
    """
    Fallback vision provider.

    STAGE-OPENAI: OpenAI provider operations
    """

    def __init__(
        self,
        config: ProviderConfig,
        settings: OpenAISettings,
        spend_guard: SpendGuard | None = None,
    ):
        super().__init__(config)
        self._settings = settings
        self.spend_guard = spend_guard
        self._clients: dict[str, AsyncOpenAI] = {}

    @classmethod
    def from_settings(
        cls, settings: OpenAISettings, timeout: float, spend_guard: SpendGuard | None = None
    ) -> "OpenAIProvider":
        config = ProviderConfig(
            name=LLMProvider.OPENAI.value,
            base_url=settings.BASE_URL,
            model=settings.MODEL,
            timeout=timeout,
        )
        return cls(config, settings, spend_guard)

    def _client_for(self, credential: ProviderCredential) -> AsyncOpenAI:
        client = self._clients.get(credential.key_id)
        if client is None:
            client = self._clients[credential.key_id] = AsyncOpenAI(
                api_key=credential.secret,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                max_retries=0,  # One attempt per provider; fallback is the orchestrator's job
            )
        return client

    def build_messages(self, request: AnalysisRequest) -> list[dict]:
        """
        STAGE-OPENAI.1: Request building
        """
        data_uri = f"data:{request.mime_type};base64,{base64.b64encode(request.image).decode('ascii')}"
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": request.prompt},
                    {"type": "image_url", "image_url": {"url": data_uri, "detail": "high"}},
                ],
            },
        ]

    async def _analyze_internal(
        self, request: AnalysisRequest, credential: ProviderCredential
    ) -> NormalizedResult:
        client = self._client_for(credential)
        details = {"provider": self.name, "key_id": credential.key_id}

        try:
            completion = await client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(request),
                max_tokens=self._settings.MAX_TOKENS,
                temperature=self._settings.TEMPERATURE,
                response_format={"type": "json_object"},
            )
        # APITimeoutError subclasses APIConnectionError: keep it first
        except APITimeoutError as e:
            raise ProviderTimeoutError.from_exception(e, message="OpenAI request timed out", **details) from e
        except APIConnectionError as e:
            raise ProviderTransportError.from_exception(e, message="OpenAI transport failure", **details) from e
        except RateLimitError as e:
            raise ProviderQuotaExceededError.from_exception(e, message="OpenAI quota exceeded", **details) from e
        except (AuthenticationError, PermissionDeniedError) as e:
            raise ProviderAuthenticationError.from_exception(e, message="OpenAI rejected the key", **details) from e
        except InternalServerError as e:
            raise ProviderTransportError.from_exception(e, message="OpenAI unavailable", **details) from e
        except APIStatusError as e:
            raise ProviderTerminalError.from_exception(
                e, message="OpenAI rejected the request", http_status=e.status_code, **details
            ) from e

        # Billed as soon as the reply arrives, whether or not its content is usable
        usage = await self._record_usage(completion)

        if not completion.choices:
            raise ProviderTerminalError("OpenAI returned no choices", details=details)

        choice = completion.choices[0]
        text = choice.message.content
        if not text:
            raise ProviderTerminalError(
                "OpenAI returned empty content", details={**details, "finish_reason": choice.finish_reason}
            )

        try:
            payload = orjson.loads(text)
        except orjson.JSONDecodeError as e:
            raise ProviderTerminalError.from_exception(e, message="OpenAI returned invalid JSON", **details) from e

        return NormalizedResult(
            text=text,
            payload=payload,
            usage=usage,
            provenance=Provenance(provider=self.name, key_index=credential.index, model=self.model),
            finish_reason=choice.finish_reason,
        )

    async def _record_usage(self, completion) -> TokenUsage | None:
        if completion.usage is None:
            return None
        usage = TokenUsage(
            prompt_tokens=completion.usage.prompt_tokens,
            completion_tokens=completion.usage.completion_tokens,
            total_tokens=completion.usage.total_tokens,
        )
        if self.spend_guard is not None:
            await self.spend_guard.record(
                token_cost(
                    usage.prompt_tokens,
                    usage.completion_tokens,
                    self._settings.INPUT_COST_PER_1K,
                    self._settings.OUTPUT_COST_PER_1K,
                )
            )
        return usage

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
