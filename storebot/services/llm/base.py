from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None

    @property
    def total_tokens(self) -> int:
        if not isinstance(self.usage, dict):
            return 0
        tokens = self.usage.get("total_tokens")
        return tokens if isinstance(tokens, int) else 0


class LLMError(Exception):
    """Base class for completion provider failures."""


class LLMRequestError(LLMError):
    """Transport error or non-2xx status. Worth retrying."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class LLMResponseError(LLMError):
    """The provider answered but the body could not be used."""


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 800,
    ) -> LLMResponse:
        """Generate response from LLM."""
        pass
