"""Shared fixtures for memory index tests."""

import hashlib
from pathlib import Path
from typing import List

import pytest

from config.settings import MemorySearchConfig, merge_memory_config
from services.embedding.base import EmbeddingProvider
from services.errors import EmbeddingError
from services.memory_index import MemoryIndexManager
from services.memory_store import tokenize


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-words embeddings that record every call."""

    def __init__(self, dims: int = 16, model: str = "fake-model"):
        self.dims = dims
        self._model = model
        self.calls: List[List[str]] = []
        self.fail = False
        self.closed = False

    def vector_for(self, text: str) -> List[float]:
        vector = [0.0] * self.dims
        for token in tokenize(text):
            slot = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dims
            vector[slot] += 1.0
        return vector

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingError("fake provider is down")
        return [self.vector_for(text) for text in texts]

    async def close(self) -> None:
        self.closed = True

    @property
    def embedded_texts(self) -> List[str]:
        return [text for call in self.calls for text in call]

    @property
    def name(self) -> str:
        return "fake"

    @property
    def model(self) -> str:
        return self._model

    @property
    def vector_dimension(self) -> int:
        return self.dims


def write_file(root: Path, rel_path: str, content: str) -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def workspace(tmp_path) -> Path:
    """Create an empty workspace directory."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def memory_config() -> MemorySearchConfig:
    """Default config without the filesystem watcher."""
    return merge_memory_config(None, {"sync": {"watch": False}})


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
async def manager(workspace, memory_config, fake_provider):
    """Initialized manager backed by the fake provider."""
    manager = await MemoryIndexManager.create(
        workspace,
        "agent-1",
        memory_config,
        embedding_provider=fake_provider,
    )
    yield manager
    await manager.close()
