from storebot.services.llm.base import LLMError, LLMProvider, LLMRequestError, LLMResponse, LLMResponseError
from storebot.services.llm.openrouter_provider import OpenRouterProvider

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "LLMError",
    "LLMRequestError",
    "LLMResponseError",
    "OpenRouterProvider",
]
