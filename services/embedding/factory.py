"""嵌入服务提供者工厂

根据配置与凭据选择并创建相应的嵌入服务提供者实例。

选择逻辑（auto）:
    1. OpenAI（有 API key 时）
    2. Gemini
    3. Voyage
    4. 都不可用时退化为纯关键词模式
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional, TYPE_CHECKING

import httpx

from .base import EmbeddingProvider
from .gemini_client import GeminiEmbeddingClient
from .null_client import NullEmbeddingProvider
from .openai_client import OpenAIEmbeddingClient
from .voyage_client import VoyageEmbeddingClient
from config.logging import get_logger
from services.errors import ConfigError

if TYPE_CHECKING:
    from config.settings import MemorySearchConfig

logger = get_logger(__name__)


AUTO_ORDER = ("openai", "gemini", "voyage")


@dataclass
class EmbeddingCredentials:
    """API keys and base URLs available to the factory."""

    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_base_url: Optional[str] = None
    voyage_api_key: Optional[str] = None
    voyage_base_url: Optional[str] = None

    @classmethod
    def from_config(
        cls,
        config: "MemorySearchConfig",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "EmbeddingCredentials":
        """Read credentials from ``memory_search.remote``, then the environment.

        Args:
            config: Memory search configuration.
            environ: Environment mapping (defaults to ``os.environ``).

        Returns:
            Resolved credentials.
        """
        env = os.environ if environ is None else environ
        remote = config.remote

        return cls(
            openai_api_key=remote.api_key or env.get("OPENAI_API_KEY") or None,
            openai_base_url=remote.base_url or env.get("OPENAI_BASE_URL") or None,
            gemini_api_key=(
                remote.gemini_api_key
                or env.get("GEMINI_API_KEY")
                or env.get("GOOGLE_API_KEY")
                or None
            ),
            gemini_base_url=remote.gemini_base_url,
            voyage_api_key=remote.voyage_api_key or env.get("VOYAGE_API_KEY") or None,
            voyage_base_url=remote.voyage_base_url,
        )

    def key_for(self, provider: str) -> Optional[str]:
        return getattr(self, f"{provider}_api_key", None)


@dataclass
class ProviderSelection:
    """Outcome of provider selection, before any client is built."""

    name: str
    requested_provider: str
    fallback_from: Optional[str] = None
    fallback_reason: Optional[str] = None


@dataclass
class EmbeddingProviderResult:
    """A constructed provider plus how it was chosen."""

    provider: EmbeddingProvider
    requested_provider: str
    fallback_from: Optional[str] = None
    fallback_reason: Optional[str] = None


def select_provider(
    config: "MemorySearchConfig",
    credentials: EmbeddingCredentials,
) -> ProviderSelection:
    """Choose a provider name from configuration and credentials.

    An explicitly configured provider must have its key. ``auto`` walks
    openai, gemini, voyage in order and records the skipped preference.

    Args:
        config: Memory search configuration.
        credentials: Available credentials.

    Returns:
        The selection.

    Raises:
        ConfigError: If an explicit provider has no API key.
    """
    requested = config.provider

    if requested != "auto":
        if not credentials.key_for(requested):
            raise ConfigError(
                f"Embedding provider '{requested}' is configured but no API key was found"
            )
        return ProviderSelection(name=requested, requested_provider=requested)

    missing = []
    for name in AUTO_ORDER:
        if credentials.key_for(name):
            if not missing:
                return ProviderSelection(name=name, requested_provider="auto")
            return ProviderSelection(
                name=name,
                requested_provider="auto",
                fallback_from=AUTO_ORDER[0],
                fallback_reason=_missing_keys_reason(missing),
            )
        missing.append(name)

    return ProviderSelection(
        name="none",
        requested_provider="auto",
        fallback_from=AUTO_ORDER[0],
        fallback_reason="No embedding API key available; using keyword-only search",
    )


PROVIDER_LABELS = {"openai": "OpenAI", "gemini": "Gemini", "voyage": "Voyage"}


def _missing_keys_reason(names) -> str:
    labels = [PROVIDER_LABELS[n] for n in names]
    if len(labels) == 1:
        return f"{labels[0]} API key not available"
    return f"{', '.join(labels[:-1])} and {labels[-1]} API keys not available"


def create_embedding_provider(
    config: "MemorySearchConfig",
    credentials: Optional[EmbeddingCredentials] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> EmbeddingProviderResult:
    """Create an embedding provider based on configuration.

    Args:
        config: Memory search configuration.
        credentials: Credentials (read from config and environment if omitted).
        transport: Optional httpx transport passed to remote clients.

    Returns:
        The provider and its selection metadata.

    Raises:
        ConfigError: If an explicit provider has no API key.
    """
    credentials = credentials or EmbeddingCredentials.from_config(config)
    selection = select_provider(config, credentials)

    model = config.model or None
    timeout = config.remote.timeout_seconds

    provider: EmbeddingProvider
    if selection.name == "openai":
        provider = OpenAIEmbeddingClient(
            api_key=credentials.openai_api_key,
            base_url=credentials.openai_base_url,
            model=model,
            timeout=timeout,
            transport=transport,
        )
    elif selection.name == "gemini":
        provider = GeminiEmbeddingClient(
            api_key=credentials.gemini_api_key,
            base_url=credentials.gemini_base_url,
            model=model,
            timeout=timeout,
            transport=transport,
        )
    elif selection.name == "voyage":
        provider = VoyageEmbeddingClient(
            api_key=credentials.voyage_api_key,
            base_url=credentials.voyage_base_url,
            model=model,
            timeout=timeout,
            transport=transport,
        )
    else:
        provider = NullEmbeddingProvider()

    if selection.fallback_from:
        logger.warning(
            f"[EMBED] Using {provider.id} instead of {selection.fallback_from}: "
            f"{selection.fallback_reason}"
        )
    else:
        logger.info(f"[EMBED] Using provider {provider.id}")

    return EmbeddingProviderResult(
        provider=provider,
        requested_provider=selection.requested_provider,
        fallback_from=selection.fallback_from,
        fallback_reason=selection.fallback_reason,
    )
