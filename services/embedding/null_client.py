"""关键词模式嵌入提供者

没有任何可用的嵌入服务时使用：返回零向量，索引只走关键词检索。
"""
from typing import List

from .base import EmbeddingProvider


class NullEmbeddingProvider(EmbeddingProvider):
    """Keyword-only provider that never calls a network service."""

    DIMENSION = 1

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [[0.0] * self.DIMENSION for _ in texts]

    @property
    def name(self) -> str:
        return "none"

    @property
    def model(self) -> str:
        return "none"

    @property
    def vector_dimension(self) -> int:
        return self.DIMENSION


def is_keyword_only(provider: EmbeddingProvider) -> bool:
    """True when the provider cannot produce meaningful vectors."""
    return provider.name == "none"
