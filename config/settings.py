"""配置管理

从 config/memory.yaml 加载配置，支持工作区记忆文件的混合检索索引。
"""
import yaml
from pathlib import Path
from typing import Any, List, Literal, Mapping, Optional
from pydantic import BaseModel, Field


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_file: str = ""


# ============================================================================
# Memory Search Configuration
# ============================================================================

class RemoteEmbeddingConfig(BaseModel):
    """Remote embedding API configuration."""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_base_url: Optional[str] = None
    voyage_api_key: Optional[str] = None
    voyage_base_url: Optional[str] = None
    timeout_seconds: float = 60.0
    batch_size: int = Field(50, ge=1)


class MemoryStoreConfig(BaseModel):
    """Memory storage configuration."""
    path: str = "{workspace}/.memory/{agent_id}.sqlite"


class ChunkingConfig(BaseModel):
    """Text chunking configuration."""
    tokens: int = Field(400, ge=1)
    overlap: int = Field(80, ge=0)


class SyncConfig(BaseModel):
    """Memory synchronization configuration."""
    on_session_start: bool = True
    on_search: bool = True
    watch: bool = True
    watch_debounce_ms: int = Field(1500, ge=0)


class HybridConfig(BaseModel):
    enabled: bool = True
    vector_weight: float = Field(0.7, ge=0.0, le=1.0)
    text_weight: float = Field(0.3, ge=0.0, le=1.0)
    candidate_multiplier: int = Field(4, ge=1)


class QueryConfig(BaseModel):
    """Search query configuration."""
    max_results: int = Field(10, ge=1)
    min_score: float = Field(0.35, ge=0.0, le=1.0)
    hybrid: HybridConfig = Field(default_factory=HybridConfig)


class EmbeddingCacheConfig(BaseModel):
    """Embedding cache configuration."""
    enabled: bool = True
    max_entries: Optional[int] = 50000


class MemorySearchConfig(BaseModel):
    """Workspace memory search configuration."""
    enabled: bool = True
    sources: List[Literal["memory", "sessions"]] = Field(default_factory=lambda: ["memory"])

    # Embedding Provider
    provider: Literal["openai", "gemini", "voyage", "auto"] = "auto"
    model: str = ""

    # Remote API configuration
    remote: RemoteEmbeddingConfig = Field(default_factory=RemoteEmbeddingConfig)

    # Storage configuration
    store: MemoryStoreConfig = Field(default_factory=MemoryStoreConfig)

    # Chunking configuration
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)

    # Sync configuration
    sync: SyncConfig = Field(default_factory=SyncConfig)

    # Query configuration
    query: QueryConfig = Field(default_factory=QueryConfig)

    # Cache configuration
    cache: EmbeddingCacheConfig = Field(default_factory=EmbeddingCacheConfig)

    def resolve_store_path(self, workspace_dir: str | Path, agent_id: str) -> Path:
        """Expand the store path template for one workspace/agent pair."""
        raw = self.store.path.format(workspace=str(workspace_dir), agent_id=agent_id)
        return Path(raw).expanduser()


# Sections merged one level deep; "query.hybrid" is merged inside "query".
_SECTION_MODELS = {
    "remote": RemoteEmbeddingConfig,
    "store": MemoryStoreConfig,
    "chunking": ChunkingConfig,
    "sync": SyncConfig,
    "cache": EmbeddingCacheConfig,
}


def _merge_section(model_cls, current: BaseModel, override: Any):
    if override is None:
        return current
    if isinstance(override, BaseModel):
        override = override.model_dump(exclude_unset=True)
    return model_cls.model_validate({**current.model_dump(), **dict(override)})


def merge_memory_config(
    base: Optional[MemorySearchConfig] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> MemorySearchConfig:
    """Merge partial overrides into a base config, section by section.

    Nested sections keep every default the override does not mention, so
    ``{"query": {"hybrid": {"text_weight": 0.5}}}`` only changes that one
    weight.

    Args:
        base: Config to start from (defaults if not given).
        overrides: Partial config as a mapping.

    Returns:
        A new validated MemorySearchConfig.
    """
    base = base or MemorySearchConfig()
    if not overrides:
        return base

    merged = base.model_dump()
    for key, value in overrides.items():
        if key in _SECTION_MODELS:
            merged[key] = _merge_section(
                _SECTION_MODELS[key], getattr(base, key), value
            ).model_dump()
        elif key == "query":
            value = dict(value or {})
            hybrid = _merge_section(HybridConfig, base.query.hybrid, value.pop("hybrid", None))
            query = _merge_section(QueryConfig, base.query, value)
            merged["query"] = {**query.model_dump(), "hybrid": hybrid.model_dump()}
        else:
            merged[key] = value

    return MemorySearchConfig.model_validate(merged)


class Settings(BaseModel):
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    memory_search: MemorySearchConfig = Field(default_factory=MemorySearchConfig)

    @classmethod
    def from_yaml(cls, path: str = "config/memory.yaml") -> "Settings":
        config_path = Path(path)
        if not config_path.exists():
            return cls()

        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls(
            logging=LoggingConfig(**(data.get("logging") or {})),
            memory_search=merge_memory_config(None, data.get("memory_search") or {}),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_yaml()
    return _settings


def reload_settings(config_path: str = "config/memory.yaml") -> Settings:
    global _settings
    _settings = Settings.from_yaml(config_path)
    return _settings
