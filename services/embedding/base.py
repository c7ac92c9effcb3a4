"""嵌入服务提供者基类

定义嵌入服务提供者的抽象接口，以及远程响应的校验工具。
"""
from abc import ABC, abstractmethod
from typing import Any, List

from services.errors import EmbeddingError


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers.

    Implementations must return one vector per input text, in input order,
    and raise EmbeddingError instead of returning partial results.
    """

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single query text.

        Args:
            text: The text to embed.

        Returns:
            A list of floats representing the embedding vector.
        """
        results = await self.embed_batch([text])
        if len(results) != 1:
            raise EmbeddingError(f"{self.name} returned {len(results)} vectors for one query")
        return results[0]

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed multiple texts in batch.

        Args:
            texts: List of texts to embed.

        Returns:
            A list of embedding vectors, aligned with ``texts``.

        Raises:
            EmbeddingError: On transport failure or a malformed response.
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name ("openai", "gemini", "voyage", "none")."""
        pass

    @property
    @abstractmethod
    def model(self) -> str:
        """Model name used for embeddings."""
        pass

    @property
    @abstractmethod
    def vector_dimension(self) -> int:
        """Dimension of the output embedding vectors."""
        pass

    @property
    def id(self) -> str:
        """Unique identifier for this provider instance."""
        return f"{self.name}:{self.model}"

    async def close(self) -> None:
        """Release network resources. Safe to call more than once."""
        return None


def validate_vector(value: Any, provider: str) -> List[float]:
    """Check that a decoded JSON value is a non-empty list of numbers.

    Args:
        value: Decoded JSON value.
        provider: Provider name for error messages.

    Returns:
        The vector as a list of floats.

    Raises:
        EmbeddingError: If the value is not a numeric vector.
    """
    if not isinstance(value, list) or not value:
        raise EmbeddingError(f"{provider} returned an empty or non-list embedding")
    try:
        return [float(x) for x in value]
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"{provider} returned a non-numeric embedding") from e


def parse_indexed_embeddings(data: Any, expected: int, provider: str) -> List[List[float]]:
    """Parse an OpenAI-style ``{"data": [{"index", "embedding"}]}`` body.

    Items are ordered by ``index`` before being returned.

    Args:
        data: Decoded JSON response.
        expected: Number of input texts.
        provider: Provider name for error messages.

    Returns:
        Vectors aligned with the request inputs.

    Raises:
        EmbeddingError: If the body is malformed or the count does not match.
    """
    items = data.get("data") if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise EmbeddingError(f"{provider} response is missing 'data'")
    if len(items) != expected:
        raise EmbeddingError(
            f"{provider} returned {len(items)} embeddings for {expected} inputs"
        )

    try:
        ordered = sorted(items, key=lambda item: item.get("index", 0))
        return [validate_vector(item["embedding"], provider) for item in ordered]
    except (AttributeError, KeyError, TypeError) as e:
        raise EmbeddingError(f"{provider} returned a malformed embedding item") from e
