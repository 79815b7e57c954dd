from typing import List, Optional

import httpx

from storebot.logging_config import get_logger
from storebot.services.llm.base import LLMProvider, LLMRequestError, LLMResponse, LLMResponseError

logger = get_logger("llm.openrouter")


class OpenRouterProvider(LLMProvider):
    """OpenRouter chat completions provider."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://openrouter.ai/api/v1/chat/completions",
        default_model: str = "openai/gpt-4o-mini",
        timeout_seconds: float = 60.0,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 800,
    ) -> LLMResponse:
        """Generate response from OpenRouter.

        Raises LLMRequestError on transport failures and non-2xx statuses,
        LLMResponseError when the body has no usable choice.
        """
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.debug(f"OpenRouter request: model={model}, messages_count={len(messages)}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    self.api_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise LLMRequestError(f"OpenRouter transport error: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.error(f"OpenRouter error: {response.status_code} - {response.text[:300]}")
            raise LLMRequestError(
                f"OpenRouter API error: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"].get("content") or ""
            usage = data.get("usage")
            if usage is not None and not isinstance(usage, dict):
                raise TypeError(f"usage is {type(usage).__name__}")
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise LLMResponseError(f"Unparseable OpenRouter response: {e}") from e

        logger.debug(f"OpenRouter content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=usage,
        )
