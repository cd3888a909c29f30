"""
Unit Tests for GeminiProvider

Drives the provider through httpx.MockTransport: request shape, key
placement and classification of every reply kind.
"""

import base64

import httpx
import orjson
import pytest

from inference_gateway.core.exceptions import (
    InvalidInputError,
    ProviderAuthenticationError,
    ProviderQuotaExceededError,
    ProviderTerminalError,
    ProviderTimeoutError,
    ProviderTransportError,
)
from inference_gateway.llm_providers.base_provider import ProviderConfig
from inference_gateway.llm_providers.gemini_models import GenerationConfig
from inference_gateway.llm_providers.gemini_provider import GeminiProvider
from tests.test_fixtures.settings_factory import make_settings

ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"


def success_body(text='{"species": "Acropora"}', finish_reason="STOP"):
    return {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": finish_reason, "index": 0}
        ],
        "usageMetadata": {"promptTokenCount": 258, "candidatesTokenCount": 12, "totalTokenCount": 270},
    }


def error_body(code, status, message="failure"):
    return {"error": {"code": code, "message": message, "status": status}}


class Recorder:
    """MockTransport handler that records requests and replays one reply."""

    def __init__(self, status_code=200, body=None, raw=None, exc=None):
        self.status_code = status_code
        self.body = body
        self.raw = raw
        self.exc = exc
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc(request)
        if self.raw is not None:
            return httpx.Response(self.status_code, content=self.raw)
        return httpx.Response(self.status_code, json=self.body)


def make_provider(recorder: Recorder) -> GeminiProvider:
    settings = make_settings().gemini
    config = ProviderConfig(name="gemini", base_url=settings.BASE_URL, model=settings.MODEL, timeout=30)
    generation = GenerationConfig(
        temperature=settings.TEMPERATURE,
        top_p=settings.TOP_P,
        top_k=settings.TOP_K,
        max_output_tokens=settings.MAX_OUTPUT_TOKENS,
        response_mime_type=settings.RESPONSE_MIME_TYPE,
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return GeminiProvider(config, generation, http_client=client)


@pytest.mark.unit
class TestRequest:
    @pytest.mark.asyncio
    async def test_posts_wire_body_with_key_header(self, analysis_request, gemini_credential):
        recorder = Recorder(body=success_body())
        provider = make_provider(recorder)

        await provider.analyze(analysis_request, gemini_credential)

        sent = recorder.requests[0]
        assert str(sent.url) == ENDPOINT
        assert sent.headers["x-goog-api-key"] == "AIza-test-key-1"
        assert "key=" not in str(sent.url)

        body = orjson.loads(sent.content)
        assert body["contents"][0]["parts"] == [
            {"text": analysis_request.prompt},
            {
                "inlineData": {
                    "mimeType": "image/jpeg",
                    "data": base64.b64encode(analysis_request.image).decode("ascii"),
                }
            },
        ]
        assert body["generationConfig"] == {
            "temperature": 0.2,
            "topP": 0.95,
            "topK": 40,
            "maxOutputTokens": 2048,
            "responseMimeType": "application/json",
        }
        assert len(body["safetySettings"]) == 4
        await provider.close()


@pytest.mark.unit
class TestSuccess:
    @pytest.mark.asyncio
    async def test_normalized_result(self, analysis_request, gemini_credential):
        provider = make_provider(Recorder(body=success_body()))

        result = await provider.analyze(analysis_request, gemini_credential)

        assert result.payload == {"species": "Acropora"}
        assert result.finish_reason == "STOP"
        assert result.usage.prompt_tokens == 258
        assert result.usage.completion_tokens == 12
        assert result.provenance.provider == "gemini"
        assert result.provenance.key_index == 1
        assert result.provenance.model == "gemini-2.0-flash"
        assert result.cached is False


@pytest.mark.unit
class TestClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, body, expected",
        [
            (429, error_body(429, "RESOURCE_EXHAUSTED"), ProviderQuotaExceededError),
            (403, error_body(403, "PERMISSION_DENIED"), ProviderAuthenticationError),
            (401, error_body(401, "UNAUTHENTICATED"), ProviderAuthenticationError),
            (503, error_body(503, "UNAVAILABLE"), ProviderTransportError),
            (500, error_body(500, "INTERNAL"), ProviderTransportError),
            (400, error_body(400, "INVALID_ARGUMENT", "Unable to process input image"), InvalidInputError),
            (404, error_body(404, "NOT_FOUND"), ProviderTerminalError),
            (400, error_body(400, "FAILED_PRECONDITION"), ProviderTerminalError),
        ],
    )
    async def test_error_replies(self, analysis_request, gemini_credential, status_code, body, expected):
        provider = make_provider(Recorder(status_code=status_code, body=body))

        with pytest.raises(expected) as exc_info:
            await provider.analyze(analysis_request, gemini_credential)

        assert type(exc_info.value) is expected
        assert exc_info.value.provider == "gemini"

    @pytest.mark.asyncio
    async def test_envelope_in_ok_reply_is_classified(self, analysis_request, gemini_credential):
        provider = make_provider(Recorder(status_code=200, body=error_body(429, "RESOURCE_EXHAUSTED")))
        with pytest.raises(ProviderQuotaExceededError):
            await provider.analyze(analysis_request, gemini_credential)

    @pytest.mark.asyncio
    async def test_unparseable_error_reply_uses_http_status(self, analysis_request, gemini_credential):
        provider = make_provider(Recorder(status_code=502, raw=b"<html>Bad gateway</html>"))
        with pytest.raises(ProviderTransportError):
            await provider.analyze(analysis_request, gemini_credential)

    @pytest.mark.asyncio
    async def test_malformed_ok_reply_is_terminal(self, analysis_request, gemini_credential):
        provider = make_provider(Recorder(status_code=200, raw=b"not json"))
        with pytest.raises(ProviderTerminalError):
            await provider.analyze(analysis_request, gemini_credential)

    @pytest.mark.asyncio
    async def test_no_candidates_is_terminal(self, analysis_request, gemini_credential):
        body = {"promptFeedback": {"blockReason": "SAFETY"}}
        provider = make_provider(Recorder(body=body))

        with pytest.raises(ProviderTerminalError) as exc_info:
            await provider.analyze(analysis_request, gemini_credential)
        assert exc_info.value.details["block_reason"] == "SAFETY"

    @pytest.mark.asyncio
    async def test_empty_text_is_terminal(self, analysis_request, gemini_credential):
        body = {"candidates": [{"content": {"parts": []}, "finishReason": "MAX_TOKENS"}]}
        provider = make_provider(Recorder(body=body))
        with pytest.raises(ProviderTerminalError):
            await provider.analyze(analysis_request, gemini_credential)

    @pytest.mark.asyncio
    async def test_invalid_json_text_is_terminal(self, analysis_request, gemini_credential):
        provider = make_provider(Recorder(body=success_body(text="not an object {")))
        with pytest.raises(ProviderTerminalError) as exc_info:
            await provider.analyze(analysis_request, gemini_credential)
        assert exc_info.value.message == "Gemini returned invalid JSON"

    @pytest.mark.asyncio
    async def test_timeout(self, analysis_request, gemini_credential):
        provider = make_provider(Recorder(exc=lambda request: httpx.ReadTimeout("slow", request=request)))
        with pytest.raises(ProviderTimeoutError):
            await provider.analyze(analysis_request, gemini_credential)

    @pytest.mark.asyncio
    async def test_connection_failure(self, analysis_request, gemini_credential):
        provider = make_provider(Recorder(exc=lambda request: httpx.ConnectError("refused", request=request)))
        with pytest.raises(ProviderTransportError):
            await provider.analyze(analysis_request, gemini_credential)
