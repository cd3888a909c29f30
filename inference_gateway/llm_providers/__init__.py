from inference_gateway.llm_providers.base_provider import BaseProvider, ProviderConfig
from inference_gateway.llm_providers.gemini_provider import GeminiProvider
from inference_gateway.llm_providers.openai_provider import OpenAIProvider

__all__ = ["BaseProvider", "GeminiProvider", "OpenAIProvider", "ProviderConfig"]
