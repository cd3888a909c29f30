"""
Unit Tests for OpenAIProvider

The SDK client is replaced per credential with a mock; exercises message
shape, spend recording and exception translation.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from inference_gateway.core.exceptions import (
    ProviderAuthenticationError,
    ProviderQuotaExceededError,
    ProviderTerminalError,
    ProviderTimeoutError,
    ProviderTransportError,
)
from inference_gateway.core.resilience.spend_guard import SpendGuard
from inference_gateway.llm_providers.openai_provider import OpenAIProvider
from tests.test_fixtures.settings_factory import make_settings

COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"


def completion(content='{"species": "Zoanthid"}', prompt_tokens=1000, completion_tokens=200):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason="stop")],
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


def status_error(error_class, status_code):
    request = httpx.Request("POST", COMPLETIONS_URL)
    response = httpx.Response(status_code, request=request)
    return error_class(f"HTTP {status_code}", response=response, body=None)


@pytest.fixture
def spend_guard(memory_store, clock):
    return SpendGuard(memory_store, "openai", max_per_day=100.0, clock=clock)


@pytest.fixture
def provider(spend_guard):
    return OpenAIProvider.from_settings(make_settings().openai, timeout=30, spend_guard=spend_guard)


@pytest.fixture
def sdk_client(provider, openai_credential):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion())
    client.close = AsyncMock()
    provider._clients[openai_credential.key_id] = client
    return client


@pytest.mark.unit
class TestSuccess:
    @pytest.mark.asyncio
    async def test_message_shape(self, provider, sdk_client, analysis_request, openai_credential):
        await provider.analyze(analysis_request, openai_credential)

        kwargs = sdk_client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"] == {"type": "json_object"}
        system, user = kwargs["messages"]
        assert system["role"] == "system"
        assert user["content"][0] == {"type": "text", "text": analysis_request.prompt}
        image_url = user["content"][1]["image_url"]["url"]
        assert image_url.startswith("data:image/jpeg;base64,")

    @pytest.mark.asyncio
    async def test_normalized_result_and_spend(
        self, provider, sdk_client, spend_guard, analysis_request, openai_credential
    ):
        result = await provider.analyze(analysis_request, openai_credential)

        assert result.payload == {"species": "Zoanthid"}
        assert result.provenance.provider == "openai"
        assert result.provenance.key_index == 1
        assert result.usage.total_tokens == 1200
        # 1000 prompt tokens at 0.005/1k plus 200 completion tokens at 0.015/1k
        assert await spend_guard.spent_today() == pytest.approx(0.008)

    @pytest.mark.asyncio
    async def test_client_reused_per_credential(self, openai_credential):
        provider = OpenAIProvider.from_settings(make_settings().openai, timeout=30)
        first = provider._client_for(openai_credential)
        assert provider._client_for(openai_credential) is first
        await provider.close()


@pytest.mark.unit
class TestFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, expected",
        [
            (status_error(openai.RateLimitError, 429), ProviderQuotaExceededError),
            (status_error(openai.AuthenticationError, 401), ProviderAuthenticationError),
            (status_error(openai.PermissionDeniedError, 403), ProviderAuthenticationError),
            (status_error(openai.InternalServerError, 500), ProviderTransportError),
            (status_error(openai.BadRequestError, 400), ProviderTerminalError),
            (openai.APITimeoutError(request=httpx.Request("POST", COMPLETIONS_URL)), ProviderTimeoutError),
            (openai.APIConnectionError(request=httpx.Request("POST", COMPLETIONS_URL)), ProviderTransportError),
        ],
    )
    async def test_sdk_errors_translated(
        self, provider, sdk_client, analysis_request, openai_credential, error, expected
    ):
        sdk_client.chat.completions.create.side_effect = error

        with pytest.raises(expected) as exc_info:
            await provider.analyze(analysis_request, openai_credential)

        assert type(exc_info.value) is expected
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_sdk_error_records_no_spend(
        self, provider, sdk_client, spend_guard, analysis_request, openai_credential
    ):
        sdk_client.chat.completions.create.side_effect = status_error(openai.RateLimitError, 429)
        with pytest.raises(ProviderQuotaExceededError):
            await provider.analyze(analysis_request, openai_credential)
        assert await spend_guard.spent_today() == 0.0

    @pytest.mark.asyncio
    async def test_empty_content_is_terminal(self, provider, sdk_client, analysis_request, openai_credential):
        sdk_client.chat.completions.create.return_value = completion(content=None)
        with pytest.raises(ProviderTerminalError):
            await provider.analyze(analysis_request, openai_credential)

    @pytest.mark.asyncio
    async def test_invalid_json_is_terminal(self, provider, sdk_client, analysis_request, openai_credential):
        sdk_client.chat.completions.create.return_value = completion(content="I think it is a coral")
        with pytest.raises(ProviderTerminalError):
            await provider.analyze(analysis_request, openai_credential)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, "not json"])
    async def test_unusable_reply_is_still_billed(
        self, provider, sdk_client, spend_guard, analysis_request, openai_credential, content
    ):
        sdk_client.chat.completions.create.return_value = completion(content=content)
        with pytest.raises(ProviderTerminalError):
            await provider.analyze(analysis_request, openai_credential)
        assert await spend_guard.spent_today() == pytest.approx(0.008)

    @pytest.mark.asyncio
    async def test_close_closes_clients(self, provider, sdk_client):
        await provider.close()
        sdk_client.close.assert_awaited_once()
