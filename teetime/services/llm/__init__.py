from teetime.services.llm.base import LLMProvider, LLMProviderError, LLMResponse
from teetime.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMProviderError", "LLMResponse", "OpenAIProvider"]
