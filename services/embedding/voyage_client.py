"""Voyage AI 嵌入客户端

Voyage 的 /embeddings 接口与 OpenAI 格式一致，响应按 index 排序。
"""
from typing import List, Optional

import httpx

from .base import EmbeddingProvider, parse_indexed_embeddings
from config.logging import get_logger
from services.errors import EmbeddingError


logger = get_logger(__name__)


VOYAGE_DIMENSIONS = {
    "voyage-4-large": 1024,
    "voyage-3-large": 1024,
    "voyage-3": 1024,
    "voyage-2": 1024,
}


class VoyageEmbeddingClient(EmbeddingProvider):
    """Voyage AI embedding client."""

    DEFAULT_MODEL = "voyage-4-large"
    DEFAULT_DIMENSION = 1024
    DEFAULT_BASE_URL = "https://api.voyageai.com/v1"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._model = model or self.DEFAULT_MODEL
        self._timeout = timeout
        self._transport = transport
        self._dimension = VOYAGE_DIMENSIONS.get(self._model, self.DEFAULT_DIMENSION)

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed multiple texts in one request.

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
        try:
            response = await client.post(
                "/embeddings",
                json={"input": texts, "model": self._model},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"[EMBED] Voyage request failed: {e.response.status_code}")
            raise EmbeddingError(
                f"Voyage embedding failed: {e.response.status_code} - {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[EMBED] Voyage transport error: {e}")
            raise EmbeddingError(f"Voyage embedding request failed: {e}") from e
        except ValueError as e:
            raise EmbeddingError("Voyage returned invalid JSON") from e

        return parse_indexed_embeddings(data, len(texts), "voyage")

    @property
    def name(self) -> str:
        return "voyage"

    @property
    def model(self) -> str:
        return self._model

    @property
    def vector_dimension(self) -> int:
        return self._dimension
