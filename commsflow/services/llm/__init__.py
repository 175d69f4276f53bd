from commsflow.services.llm.base import LLMError, LLMProvider, LLMResponse
from commsflow.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider"]
