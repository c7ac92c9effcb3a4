"""Gemini API 嵌入客户端

使用 Google Gemini API 生成文本嵌入向量。
"""
import asyncio
from typing import List, Optional

import httpx

from .base import EmbeddingProvider, validate_vector
from config.logging import get_logger
from services.errors import EmbeddingError


logger = get_logger(__name__)


# Vector dimensions requested from Gemini models
GEMINI_DIMENSIONS = {
    "gemini-embedding-001": 768,
    "text-embedding-004": 768,
}


class GeminiEmbeddingClient(EmbeddingProvider):
    """Google Gemini API embedding client."""

    DEFAULT_MODEL = "gemini-embedding-001"
    DEFAULT_DIMENSION = 768
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    # Concurrent embedContent requests per batch
    MAX_CONCURRENCY = 8

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Gemini embedding client.

        Args:
            api_key: Gemini API key.
            base_url: Base URL of the API.
            model: Model name to use for embeddings.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._api_key = api_key
        self._base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._model = model or self.DEFAULT_MODEL
        self._timeout = timeout
        self._transport = transport
        self._dimension = GEMINI_DIMENSIONS.get(self._model, self.DEFAULT_DIMENSION)

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self._timeout),
                params={"key": self._api_key},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed multiple texts in batch.

        Note: embedContent takes one text per request, so requests are
        issued concurrently. Any single failure fails the whole batch.

        Args:
            texts: List of texts to embed.

        Returns:
            A list of embedding vectors.

        Raises:
            EmbeddingError: If any request fails.
        """
        if not texts:
            return []

        client = await self._get_client()
        model_path = self._model if self._model.startswith("models/") else f"models/{self._model}"
        semaphore = asyncio.Semaphore(self.MAX_CONCURRENCY)

        async def embed_one(text: str) -> List[float]:
            async with semaphore:
                return await self._embed_one(client, model_path, text)

        results = await asyncio.gather(
            *(embed_one(text) for text in texts), return_exceptions=True
        )

        embeddings: List[List[float]] = []
        for i, result in enumerate(results):
            if isinstance(result, BaseException):
                logger.error(f"[EMBED] Failed to embed text {i}: {result}")
                if isinstance(result, EmbeddingError):
                    raise result
                raise EmbeddingError(f"Gemini embedding failed: {result}") from result
            embeddings.append(result)

        return embeddings

    async def _embed_one(
        self, client: httpx.AsyncClient, model_path: str, text: str
    ) -> List[float]:
        """Embed a single text.

        Args:
            client: HTTP client.
            model_path: Model API path.
            text: Text to embed.

        Returns:
            Embedding vector.
        """
        try:
            response = await client.post(
                f"/{model_path}:embedContent",
                json={
                    "content": {"parts": [{"text": text}]},
                    "outputDimensionality": self._dimension,
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(
                f"Gemini embedding failed: {e.response.status_code} - {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Gemini embedding request failed: {e}") from e
        except ValueError as e:
            raise EmbeddingError("Gemini returned invalid JSON") from e

        try:
            values = data["embedding"]["values"]
        except (KeyError, TypeError) as e:
            raise EmbeddingError("Gemini response is missing 'embedding.values'") from e
        return validate_vector(values, "gemini")

    @property
    def name(self) -> str:
        return "gemini"

    @property
    def model(self) -> str:
        """Model name used for embeddings."""
        return self._model

    @property
    def vector_dimension(self) -> int:
        """Dimension of the output embedding vectors."""
        return self._dimension
