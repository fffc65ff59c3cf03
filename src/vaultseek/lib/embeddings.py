"""
Embedding client using the OpenRouter embeddings endpoint.
"""

import logging
from typing import List, Optional

import httpx

from vaultseek.config import Settings

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when embedding generation fails."""
    pass


class OpenRouterEmbeddings:
    """Embeds queries and documents through OpenRouter.

    Args:
        api_key: OpenRouter API key
        model: Embedding model name
        base_url: API base URL
        timeout: Request timeout in seconds
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _embed(self, inputs: List[str]) -> List[List[float]]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/embeddings",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={"model": self.model, "input": inputs},
                )
        except httpx.TimeoutException:
            raise EmbeddingError("Embedding API request timed out")
        except httpx.RequestError as e:
            raise EmbeddingError(f"Network error calling embedding API: {e}")

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "60")
            raise EmbeddingError(f"Rate limited. Retry after {retry_after} seconds.")
        if response.status_code != 200:
            raise EmbeddingError(f"Embedding API returned {response.status_code}: {response.text}")

        try:
            data = response.json()
        except ValueError:
            raise EmbeddingError("Embedding API returned invalid JSON")
        items = data.get("data") if isinstance(data, dict) else None
        if not items:
            raise EmbeddingError("No embedding data in API response")

        # the API may return items out of order
        items = sorted(items, key=lambda item: item.get("index", 0))
        vectors: List[List[float]] = []
        for item in items:
            embedding = item.get("embedding")
            if not isinstance(embedding, list) or not all(isinstance(x, (int, float)) for x in embedding):
                raise EmbeddingError("Invalid embedding format from API")
            vectors.append([float(x) for x in embedding])
        if len(vectors) != len(inputs):
            raise EmbeddingError(f"Expected {len(inputs)} embeddings, got {len(vectors)}")
        return vectors

    async def embed_query(self, text: str) -> List[float]:
        return (await self._embed([text]))[0]

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        return await self._embed(texts)


def create_embedder(settings: Settings) -> Optional[OpenRouterEmbeddings]:
    """Embedding provider from settings, or None without an API key."""
    if not settings.openrouter_api_key:
        return None
    return OpenRouterEmbeddings(
        api_key=settings.openrouter_api_key,
        model=settings.embedding_model,
        base_url=settings.openrouter_base_url,
    )
