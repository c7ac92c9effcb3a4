"""嵌入服务

支持多种嵌入服务提供者：
    - OpenAI 兼容 API
    - Gemini API
    - Voyage AI
    - 无可用凭据时的纯关键词模式
"""

from .base import EmbeddingProvider
from .factory import (
    EmbeddingCredentials,
    EmbeddingProviderResult,
    ProviderSelection,
    create_embedding_provider,
    select_provider,
)
from .null_client import NullEmbeddingProvider, is_keyword_only

__all__ = [
    "EmbeddingProvider",
    "EmbeddingCredentials",
    "EmbeddingProviderResult",
    "ProviderSelection",
    "NullEmbeddingProvider",
    "create_embedding_provider",
    "select_provider",
    "is_keyword_only",
]
