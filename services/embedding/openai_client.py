"""OpenAI 兼容 API 嵌入客户端

支持 OpenAI 以及任何兼容 OpenAI /embeddings 接口格式的服务。
"""
from typing import List, Optional

import httpx

from .base import EmbeddingProvider, parse_indexed_embeddings
from config.logging import get_logger
from services.errors import EmbeddingError


logger = get_logger(__name__)


# Default vector dimensions for common models
MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingClient(EmbeddingProvider):
    """OpenAI-compatible API embedding client."""

    DEFAULT_MODEL = "text-embedding-3-small"
    DEFAULT_DIMENSION = 1536
    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    # Inputs per HTTP request
    MAX_INPUTS_PER_REQUEST = 100

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the OpenAI embedding client.

        Args:
            api_key: API key for authentication.
            base_url: Base URL of the API (default: OpenAI).
            model: Model name to use for embeddings.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._api_key = api_key
        self._base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._model = model or self.DEFAULT_MODEL
        self._timeout = timeout
        self._transport = transport

        self._dimension = MODEL_DIMENSIONS.get(self._model, self.DEFAULT_DIMENSION)

        # HTTP client with connection pooling
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=10,
                    keepalive_expiry=30.0,
                ),
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

        Args:
            texts: List of texts to embed.

        Returns:
            A list of embedding vectors.

        Raises:
            EmbeddingError: On HTTP failure or a malformed response.
        """
        if not texts:
            return []

        client = await self._get_client()
        all_embeddings: List[List[float]] = []

        for i in range(0, len(texts), self.MAX_INPUTS_PER_REQUEST):
            batch = texts[i : i + self.MAX_INPUTS_PER_REQUEST]

            try:
                response = await client.post(
                    "/embeddings",
                    json={
                        "input": batch,
                        "model": self._model,
                    },
                )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                logger.error(f"[EMBED] OpenAI request failed: {e.response.status_code}")
                raise EmbeddingError(
                    f"OpenAI embedding failed: {e.response.status_code} - {e.response.text[:200]}"
                ) from e
            except httpx.HTTPError as e:
                logger.error(f"[EMBED] OpenAI transport error: {e}")
                raise EmbeddingError(f"OpenAI embedding request failed: {e}") from e
            except ValueError as e:
                raise EmbeddingError("OpenAI returned invalid JSON") from e

            all_embeddings.extend(parse_indexed_embeddings(data, len(batch), "openai"))

        return all_embeddings

    @property
    def name(self) -> str:
        return "openai"

    @property
    def model(self) -> str:
        """Model name used for embeddings."""
        return self._model

    @property
    def vector_dimension(self) -> int:
        """Dimension of the output embedding vectors."""
        return self._dimension
