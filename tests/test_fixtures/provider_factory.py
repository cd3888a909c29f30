"""
Provider Test Factory

Creates controllable provider stubs for orchestrator tests.
"""

import asyncio

from inference_gateway.analysis.models.analysis import (
    AnalysisRequest,
    NormalizedResult,
    Provenance,
    ProviderCredential,
    TokenUsage,
)
from inference_gateway.llm_providers.base_provider import BaseProvider, ProviderConfig


def make_result(provider: str = "gemini", text: str = '{"ok": true}', key_index: int = 1) -> NormalizedResult:
    return NormalizedResult(
        text=text,
        payload={"ok": True},
        usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        provenance=Provenance(provider=provider, key_index=key_index, model=f"{provider}-model"),
        finish_reason="STOP",
    )


class ScriptedProvider(BaseProvider):
    """
    Provider whose outcome per call comes from a script.

    Each script item is either an exception instance (raised), a
    NormalizedResult (returned) or a callable taking the credential. When
    the script runs out, the last item repeats.
    """

    def __init__(self, name: str, script: list | None = None, delay: float = 0.0):
        super().__init__(ProviderConfig(name=name, base_url="http://test", model=f"{name}-model"))
        self.script = list(script or [make_result(name)])
        self.delay = delay
        self.calls: list[ProviderCredential] = []
        self.closed = False

    async def _analyze_internal(
        self, request: AnalysisRequest, credential: ProviderCredential
    ) -> NormalizedResult:
        self.calls.append(credential)
        if self.delay:
            await asyncio.sleep(self.delay)

        step = self.script[min(len(self.calls) - 1, len(self.script) - 1)]
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(credential)
        return step

    async def close(self) -> None:
        self.closed = True


class ProviderTestFactory:
    """Factory for creating test provider stubs."""

    @staticmethod
    def success_provider(name: str = "gemini", delay: float = 0.0) -> ScriptedProvider:
        return ScriptedProvider(name, [make_result(name)], delay=delay)

    @staticmethod
    def failing_provider(name: str, error: Exception) -> ScriptedProvider:
        return ScriptedProvider(name, [error])

    @staticmethod
    def scripted_provider(name: str, script: list, delay: float = 0.0) -> ScriptedProvider:
        return ScriptedProvider(name, script, delay=delay)
