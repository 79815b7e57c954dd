from typing import List

import httpx

from storebot.config import settings
from storebot.logging_config import get_logger

logger = get_logger("embedding_service")


class EmbeddingError(Exception):
    """Embedding provider could not produce a vector."""


async def get_embedding(text: str) -> List[float]:
    """Get embedding for one text fragment from the OpenAI-compatible API."""
    if not settings.openai_api_key:
        raise EmbeddingError("OPENAI_API_KEY not configured")

    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(
                f"{settings.openai_base_url.rstrip('/')}/embeddings",
                headers={
                    "Authorization": f"Bearer {settings.openai_api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": settings.embedding_model,
                    "input": text,
                    "encoding_format": "float",
                },
            )
    except httpx.HTTPError as e:
        raise EmbeddingError(f"Embedding transport error: {e}") from e

    if response.status_code != 200:
        raise EmbeddingError(f"Embedding API error: {response.status_code} - {response.text[:200]}")

    try:
        embedding = response.json()["data"][0]["embedding"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise EmbeddingError(f"Unexpected embedding response: {e}") from e

    if not isinstance(embedding, list) or not embedding:
        raise EmbeddingError("Embedding response has no vector")
    return embedding
