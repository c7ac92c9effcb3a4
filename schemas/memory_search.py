"""记忆索引相关的数据模型

定义同步统计与索引状态模型。
"""
from pydantic import BaseModel, Field
from typing import List, Optional


class MemorySyncStats(BaseModel):
    """Outcome of one sync pass."""

    status: str = "success"
    files_scanned: int = 0
    files_updated: int = 0
    files_removed: int = 0
    chunks_added: int = 0
    chunks_removed: int = 0
    chunks_retried: int = 0
    embedding_failures: int = 0
    errors: List[str] = Field(default_factory=list)
    full_reindex: bool = False


class MemoryCacheStatus(BaseModel):
    """Embedding cache state."""

    enabled: bool
    entries: int = 0
    max_entries: Optional[int] = None


class MemoryVectorStatus(BaseModel):
    """Vector search availability."""

    enabled: bool
    available: bool = False
    dims: Optional[int] = None
    load_error: Optional[str] = None


class MemoryIndexStatus(BaseModel):
    """Snapshot of an index manager."""

    backend: str = "builtin"
    workspace_dir: str
    agent_id: str
    db_path: str
    files: int = 0
    chunks: int = 0
    dirty: bool = True
    provider: str
    model: str
    requested_provider: str
    fallback_from: Optional[str] = None
    fallback_reason: Optional[str] = None
    sources: List[str] = Field(default_factory=list)
    cache: MemoryCacheStatus
    vector: MemoryVectorStatus
