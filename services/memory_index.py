"""记忆索引管理器

管理工作区记忆文件的扫描、分块、嵌入、存储与混合检索。

每个 (工作区, agent) 对应一个管理器实例，由 MemoryIndexRegistry 统一持有。
"""
import asyncio
import hashlib
import json
from contextlib import suppress
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from .chunker import Chunker, MemoryChunk, MemoryFileEntry
from .embedding import (
    EmbeddingCredentials,
    EmbeddingProvider,
    EmbeddingProviderResult,
    create_embedding_provider,
    is_keyword_only,
)
from .errors import (
    ConfigError,
    EmbeddingError,
    InvalidPathError,
    MemoryIndexError,
    StorageError,
)
from .file_watcher import MEMORY_DIR, ROOT_MEMORY_FILES, FileWatcher
from .memory_store import MemoryStorage
from .search_engine import MemorySearchResult, SearchEngine, SearchOutcome
from config.logging import get_logger
from config.settings import MemorySearchConfig, merge_memory_config
from schemas.memory_search import (
    MemoryCacheStatus,
    MemoryIndexStatus,
    MemorySyncStats,
    MemoryVectorStatus,
)


logger = get_logger(__name__)

INDEX_META_KEY = "memory_index_meta_v1"
VECTOR_DIMS_META_KEY = "memory_vector_dims_v1"


class MemoryIndexManager:
    """Manager for memory indexing and retrieval.

    Responsibilities:
    - Scan memory files and detect changes by content hash
    - Chunk and embed changed files (with the embedding cache)
    - Remove files that disappeared from disk
    - Perform hybrid search
    - Safe file reading
    """

    def __init__(
        self,
        workspace_dir: str | Path,
        agent_id: str = "default",
        config: MemorySearchConfig | Mapping[str, Any] | None = None,
        credentials: Optional[EmbeddingCredentials] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ):
        """Initialize the memory index manager.

        Args:
            workspace_dir: Workspace holding MEMORY.md and memory/.
            agent_id: Agent owning this index.
            config: Full config, or partial overrides merged over defaults.
            credentials: Embedding credentials (config/environment if omitted).
            embedding_provider: Use this provider instead of selecting one.

        Raises:
            ConfigError: If memory search is disabled or the provider is
                misconfigured.
        """
        if not isinstance(config, MemorySearchConfig):
            config = merge_memory_config(None, config)
        if not config.enabled:
            raise ConfigError("Memory search is disabled")

        self.workspace_dir = Path(workspace_dir).expanduser().resolve()
        self.agent_id = agent_id
        self.config = config
        self.db_path = config.resolve_store_path(self.workspace_dir, agent_id)

        if embedding_provider is not None:
            self.provider_result = EmbeddingProviderResult(
                provider=embedding_provider,
                requested_provider=config.provider,
            )
        else:
            self.provider_result = create_embedding_provider(config, credentials)
        self.embedding_provider = self.provider_result.provider

        self.chunker = Chunker(
            tokens=config.chunking.tokens,
            overlap=config.chunking.overlap,
        )
        self.search_engine = SearchEngine(
            vector_weight=config.query.hybrid.vector_weight,
            text_weight=config.query.hybrid.text_weight,
            candidate_multiplier=config.query.hybrid.candidate_multiplier,
        )
        self.storage = MemoryStorage(
            self.db_path,
            cache_provider=self.embedding_provider.name,
            cache_model=self.embedding_provider.model,
            cache_max_entries=config.cache.max_entries,
        )

        self._lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._sync_task: Optional[asyncio.Task] = None
        self._watcher: Optional[FileWatcher] = None

        self._vector_dims = self.embedding_provider.vector_dimension
        self._dirty = True
        self._dirty_generation = 0
        self._initialized = False
        self._closed = False

    @classmethod
    async def create(
        cls,
        workspace_dir: str | Path,
        agent_id: str = "default",
        config: MemorySearchConfig | Mapping[str, Any] | None = None,
        **kwargs,
    ) -> "MemoryIndexManager":
        """Construct and initialize a manager."""
        manager = cls(workspace_dir, agent_id, config, **kwargs)
        try:
            await manager.initialize()
        except BaseException:
            await manager.close()
            raise
        return manager

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def vector_enabled(self) -> bool:
        """False when the active provider cannot produce vectors."""
        return not is_keyword_only(self.embedding_provider)

    async def initialize(self) -> None:
        """Open storage, provision the vector table, and start watching.

        Creates database, checks index metadata, starts the file watcher.
        """
        async with self._init_lock:
            if self._initialized:
                return
            if self._closed:
                raise MemoryIndexError("Memory index is closed")

            await self.storage.initialize()
            await self._check_index_meta()
            if self.vector_enabled:
                await self._provision_vector_table()

            if self.config.sync.watch:
                self._watcher = FileWatcher(
                    self.workspace_dir,
                    callback=self._on_watched_change,
                    on_change=self.mark_dirty,
                    debounce_ms=self.config.sync.watch_debounce_ms,
                )
                await self._watcher.start()

            self._initialized = True

        logger.info(
            f"[MEMORY] Index manager initialized for {self.workspace_dir} "
            f"(agent={self.agent_id}, embedding={self.embedding_provider.id})"
        )

    async def _ensure_ready(self) -> None:
        if self._closed:
            raise MemoryIndexError("Memory index is closed")
        if not self._initialized:
            await self.initialize()

    async def close(self) -> None:
        """Stop watching, cancel any sync, and release provider and storage.

        Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True

        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None

        task, self._sync_task = self._sync_task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        await self.embedding_provider.close()
        await self.storage.close()

        logger.info(f"[MEMORY] Index manager closed for {self.workspace_dir} (agent={self.agent_id})")

    def mark_dirty(self) -> None:
        """Record that memory files changed since the last sync."""
        self._dirty = True
        self._dirty_generation += 1

    async def _on_watched_change(self) -> None:
        if self._closed:
            return
        await self.sync()

    def _index_meta(self) -> Dict[str, Any]:
        return {
            "provider": self.embedding_provider.name,
            "model": self.embedding_provider.model,
            "vector_dims": self.embedding_provider.vector_dimension,
            "chunk_tokens": self.chunker.tokens,
            "chunk_overlap": self.chunker.overlap,
        }

    async def _check_index_meta(self) -> None:
        """Reset the index when provider, model, dims or chunking changed."""
        current = self._index_meta()
        raw = await self.storage.get_meta(INDEX_META_KEY)
        stored = json.loads(raw) if raw else None

        if stored == current:
            return

        if stored is not None:
            changed = [key for key in current if stored.get(key) != current[key]]
            logger.info(f"[MEMORY] Index settings changed ({', '.join(changed)}), reindexing")
            await self.storage.reset_index()
            await self.storage.delete_meta(VECTOR_DIMS_META_KEY)

        await self.storage.set_meta(INDEX_META_KEY, json.dumps(current, sort_keys=True))

    async def _provision_vector_table(self) -> None:
        """Create the vector table for the dimension vectors were last stored with.

        Falls back to the provider's reported dimension for a fresh index.
        """
        observed = await self.storage.get_meta(VECTOR_DIMS_META_KEY)
        self._vector_dims = int(observed) if observed else self.embedding_provider.vector_dimension
        await self.storage.ensure_vector_table(self._vector_dims)

    async def _adopt_vector_dims(self, dims: int) -> None:
        """Reprovision the vector table for the dimension the provider returns.

        Caller must hold ``_lock``.
        """
        logger.warning(
            f"[EMBED] Provider returned {dims}-dimensional vectors, expected "
            f"{self._vector_dims}; reprovisioning vector table"
        )
        self._vector_dims = dims
        await self.storage.ensure_vector_table(dims)
        await self.storage.set_meta(VECTOR_DIMS_META_KEY, str(dims))

    # ========================================================================
    # Sync
    # ========================================================================

    async def sync(self, force: bool = False) -> MemorySyncStats:
        """Synchronize the memory index.

        Concurrent callers share one in-flight sync.

        Args:
            force: Re-index every file even if its hash is unchanged.

        Returns:
            Sync statistics.

        Raises:
            MemoryIndexError: If the index is closed before the sync finishes.
        """
        await self._ensure_ready()

        task = self._sync_task
        if task is None or task.done():
            task = self._sync_task = asyncio.get_running_loop().create_task(self._run_sync(force))
        else:
            logger.debug("[MEMORY] Sync already in progress, joining")

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._closed and task.cancelled():
                raise MemoryIndexError("Memory index closed during sync") from None
            raise

    async def sync_on_session_start(self) -> Optional[MemorySyncStats]:
        """Run a sync if ``sync.on_session_start`` is enabled."""
        if not self.config.sync.on_session_start:
            return None
        return await self.sync()

    async def _run_sync(self, force: bool) -> MemorySyncStats:
        generation = self._dirty_generation
        stats = MemorySyncStats(full_reindex=force)

        seen: Set[str] = set()
        updated: Set[str] = set()

        for rel_path, abs_path in self.list_memory_files():
            stats.files_scanned += 1
            seen.add(rel_path)

            try:
                entry = self._build_file_entry(rel_path, abs_path)
            except OSError as e:
                logger.error(f"[MEMORY] Failed to read {rel_path}: {e}")
                stats.errors.append(f"{rel_path}: {e}")
                continue

            async with self._lock:
                stored = await self.storage.get_file(rel_path)
            if not force and stored and stored["hash"] == entry.hash:
                continue

            try:
                added, removed, failures = await self._index_file(entry)
            except StorageError as e:
                logger.error(f"[MEMORY] Error indexing {rel_path}: {e}")
                stats.errors.append(f"{rel_path}: {e}")
                continue

            updated.add(rel_path)
            stats.files_updated += 1
            stats.chunks_added += added
            stats.chunks_removed += removed
            stats.embedding_failures += failures

        async with self._lock:
            stored_paths = await self.storage.get_all_file_paths()
        for path in stored_paths:
            if path in seen:
                continue
            async with self._lock:
                removed = await self.storage.delete_file(path)
            stats.files_removed += 1
            stats.chunks_removed += removed
            logger.debug(f"[MEMORY] Removed stale file {path} ({removed} chunks)")

        if self.vector_enabled:
            retried, failures = await self._retry_unembedded(exclude_paths=updated)
            stats.chunks_retried += retried
            stats.embedding_failures += failures

        if stats.errors:
            stats.status = "partial"
        elif generation == self._dirty_generation:
            self._dirty = False

        if stats.files_updated or stats.files_removed or stats.chunks_retried or stats.errors:
            logger.info(
                f"[MEMORY] Sync completed: {stats.files_updated} updated, "
                f"{stats.files_removed} removed, {stats.chunks_added} chunks added, "
                f"{stats.embedding_failures} embedding failures"
            )
        return stats

    def list_memory_files(self) -> List[Tuple[str, Path]]:
        """Candidate memory files as (relative path, absolute path).

        ``MEMORY.md`` and ``memory.md`` at the workspace root come first,
        then ``memory/*.md`` ordered newest-first by filename.
        """
        if "memory" not in self.config.sources:
            return []

        files: List[Tuple[str, Path]] = []
        seen_real: Set[Path] = set()

        def add(rel_path: str, path: Path) -> None:
            real = path.resolve()
            # MEMORY.md and memory.md are one file on case-insensitive filesystems
            if real in seen_real:
                return
            seen_real.add(real)
            files.append((rel_path, path))

        for name in ROOT_MEMORY_FILES:
            path = self.workspace_dir / name
            if path.is_file():
                add(name, path)

        memory_dir = self.workspace_dir / MEMORY_DIR
        if memory_dir.is_dir():
            notes = sorted(
                (p for p in memory_dir.iterdir() if p.is_file() and p.suffix == ".md"),
                key=lambda p: p.name,
                reverse=True,
            )
            for path in notes:
                add(f"{MEMORY_DIR}/{path.name}", path)

        return files

    def _build_file_entry(self, rel_path: str, abs_path: Path) -> MemoryFileEntry:
        with open(abs_path, "rb") as f:
            raw = f.read()
        return MemoryFileEntry(
            path=rel_path,
            source="memory",
            content=raw.decode("utf-8", errors="replace"),
            hash=hashlib.sha256(raw).hexdigest(),
            size=len(raw),
        )

    async def _index_file(self, entry: MemoryFileEntry) -> Tuple[int, int, int]:
        """Re-chunk, embed and store one changed file.

        Returns:
            (chunks added, chunks removed, failed embedding batches)
        """
        chunks = self.chunker.build_chunks(entry)
        failures = await self._embed_chunks(chunks)

        async with self._lock:
            async with self.storage.transaction():
                removed = await self.storage.replace_file_chunks(entry.path, chunks)
                await self.storage.upsert_file(entry.path, entry.source, entry.hash, entry.size)

        logger.debug(f"[MEMORY] Indexed {entry.path}: {len(chunks)} chunks")
        return len(chunks), removed, failures

    async def _embed_chunks(self, chunks: List[MemoryChunk]) -> int:
        """Fill ``chunk.embedding`` in place, batch by batch.

        Cache hits skip the provider; identical texts in a batch are sent
        once. A failed batch is logged and its chunks keep no vector.

        Returns:
            Number of failed batches.
        """
        if not self.vector_enabled or not chunks:
            return 0

        cache_enabled = self.config.cache.enabled
        batch_size = self.config.remote.batch_size
        failures = 0

        for start in range(0, len(chunks), batch_size):
            batch = chunks[start : start + batch_size]
            pending: Dict[str, List[MemoryChunk]] = {}

            async with self._lock:
                for chunk in batch:
                    cached = (
                        await self.storage.get_cached_embedding(chunk.hash)
                        if cache_enabled else None
                    )
                    if cached is not None:
                        chunk.embedding = cached
                    else:
                        pending.setdefault(chunk.hash, []).append(chunk)

            if not pending:
                continue

            hashes = list(pending)
            texts = [pending[h][0].text for h in hashes]

            try:
                vectors = await asyncio.wait_for(
                    self.embedding_provider.embed_batch(texts),
                    timeout=self.config.remote.timeout_seconds,
                )
            except (EmbeddingError, asyncio.TimeoutError) as e:
                failures += 1
                logger.warning(
                    f"[EMBED] Batch of {len(texts)} texts failed, storing without vectors: "
                    f"{e or type(e).__name__}"
                )
                continue

            if len(vectors) != len(texts):
                failures += 1
                logger.warning(
                    f"[EMBED] Provider returned {len(vectors)} vectors for {len(texts)} texts"
                )
                continue

            lengths = {len(vector) for vector in vectors}
            if len(lengths) != 1 or 0 in lengths:
                failures += 1
                logger.warning(
                    f"[EMBED] Provider returned vectors of inconsistent length: {sorted(lengths)}"
                )
                continue
            dims = lengths.pop()

            async with self._lock:
                if dims != self._vector_dims:
                    await self._adopt_vector_dims(dims)
                for text_hash, vector in zip(hashes, vectors):
                    if cache_enabled:
                        await self.storage.cache_embedding(text_hash, vector)
                    for chunk in pending[text_hash]:
                        chunk.embedding = vector

        return failures

    async def _retry_unembedded(self, exclude_paths: Set[str]) -> Tuple[int, int]:
        """Embed chunks of unchanged files that were stored without vectors.

        Returns:
            (chunks embedded, failed batches)
        """
        async with self._lock:
            chunks = await self.storage.get_unembedded_chunks(exclude_paths)
        if not chunks:
            return 0, 0

        failures = await self._embed_chunks(chunks)
        embedded = [chunk for chunk in chunks if chunk.embedding]
        if embedded:
            async with self._lock:
                async with self.storage.transaction():
                    for chunk in embedded:
                        await self.storage.upsert_chunk(chunk)
            logger.info(f"[MEMORY] Embedded {len(embedded)} previously unembedded chunks")

        return len(embedded), failures

    # ========================================================================
    # Search
    # ========================================================================

    async def search(
        self,
        query: str,
        max_results: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[MemorySearchResult]:
        """Search for relevant memories.

        Args:
            query: Search query.
            max_results: Maximum results (from config if not specified).
            min_score: Minimum score threshold (from config if not specified).

        Returns:
            Results ordered by score descending.
        """
        outcome = await self.search_with_mode(query, max_results, min_score)
        return outcome.results

    async def search_with_mode(
        self,
        query: str,
        max_results: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> SearchOutcome:
        """Search and report which branches produced the results.

        The mode is ``keyword`` whenever the vector branch was skipped for
        this query, including a failed or empty query embedding.
        """
        if not query or not query.strip():
            return SearchOutcome(results=[], mode="keyword")

        await self._ensure_ready()

        if max_results is None:
            max_results = self.config.query.max_results
        if min_score is None:
            min_score = self.config.query.min_score

        if self._dirty and self.config.sync.on_search:
            await self.sync()

        hybrid = self.config.query.hybrid
        candidates = self.search_engine.candidate_count(max_results)
        query_embedding = await self._embed_query(query)

        vector_hits: List[Dict[str, Any]] = []
        keyword_hits: List[Dict[str, Any]] = []

        async with self._lock:
            use_vector = (
                query_embedding is not None
                and await self.storage.count_embedded_chunks() > 0
            )
            if use_vector:
                vector_hits = await self.storage.search_vector(query_embedding, candidates)
            if hybrid.enabled or not use_vector:
                keyword_hits = await self.storage.search_keyword(query, candidates)

        if not use_vector:
            mode = "keyword"
            fused = self.search_engine.fuse([], keyword_hits, vector_weight=0.0, text_weight=1.0)
        elif not hybrid.enabled:
            mode = "vector"
            fused = self.search_engine.fuse(vector_hits, [], vector_weight=1.0, text_weight=0.0)
        else:
            mode = "hybrid"
            fused = self.search_engine.fuse(vector_hits, keyword_hits)

        results = self.search_engine.select(fused, max_results, min_score)

        if results:
            logger.info(f"[SEARCH] Found {len(results)} results ({mode}) for: '{query[:50]}'")
        else:
            logger.debug(f"[SEARCH] No results ({mode}) for: '{query[:50]}'")
        return SearchOutcome(results=results, mode=mode)

    async def _embed_query(self, query: str) -> Optional[List[float]]:
        """Embed the query, or None when the vector branch must be skipped."""
        if not self.vector_enabled:
            return None

        try:
            vector = await asyncio.wait_for(
                self.embedding_provider.embed_query(query),
                timeout=self.config.remote.timeout_seconds,
            )
        except (EmbeddingError, asyncio.TimeoutError) as e:
            logger.warning(f"[SEARCH] Query embedding failed, using keyword search: {e or type(e).__name__}")
            return None

        if not vector or not any(vector):
            return None
        if len(vector) != self._vector_dims:
            logger.warning(
                f"[SEARCH] Query vector has {len(vector)} dimensions, index has "
                f"{self._vector_dims}; using keyword search"
            )
            return None
        return vector

    # ========================================================================
    # File access
    # ========================================================================

    async def read_file(
        self,
        rel_path: str,
        from_line: Optional[int] = None,
        lines: Optional[int] = None,
    ) -> Dict[str, str]:
        """Safely read a memory file.

        Args:
            rel_path: Path relative to the workspace.
            from_line: Starting line number (1-indexed).
            lines: Number of lines to read.

        Returns:
            ``{"text": ..., "path": normalized path}``.

        Raises:
            InvalidPathError: If the path is not a memory file in the workspace.
            FileNotFoundError: If the file does not exist.
        """
        normalized = (rel_path or "").replace("\\", "/").strip()
        while normalized.startswith("./"):
            normalized = normalized[2:]

        if not normalized:
            raise InvalidPathError("path is required")

        name = PurePosixPath(normalized).name
        if name not in ROOT_MEMORY_FILES and not normalized.startswith(f"{MEMORY_DIR}/"):
            raise InvalidPathError(
                f"Can only read MEMORY.md or memory/*.md files, got: {rel_path}"
            )

        target = (self.workspace_dir / normalized).resolve()
        if not target.is_relative_to(self.workspace_dir):
            raise InvalidPathError(f"Path escapes the workspace: {rel_path}")

        resolved = target.relative_to(self.workspace_dir)
        if resolved.name not in ROOT_MEMORY_FILES and (
            len(resolved.parts) < 2 or resolved.parts[0] != MEMORY_DIR
        ):
            raise InvalidPathError(f"Path does not resolve to a memory file: {rel_path}")

        with open(target, "r", encoding="utf-8") as f:
            content = f.read()

        if from_line is None and lines is None:
            return {"text": content, "path": normalized}

        all_lines = content.split("\n")
        start = max(1, from_line or 1)
        count = len(all_lines) if lines is None else max(0, lines)
        return {
            "text": "\n".join(all_lines[start - 1 : start - 1 + count]),
            "path": normalized,
        }

    # ========================================================================
    # Status
    # ========================================================================

    async def status(self) -> MemoryIndexStatus:
        """Get index status.

        Returns:
            Counts, dirty flag, provider identity and vector availability.
        """
        stats = {"files": 0, "chunks": 0, "cache_entries": 0}
        vector = {"available": False, "dims": None, "load_error": None}

        if self._initialized and not self._closed:
            async with self._lock:
                stats = await self.storage.get_stats()
            vector = self.storage.vector_status()

        return MemoryIndexStatus(
            workspace_dir=str(self.workspace_dir),
            agent_id=self.agent_id,
            db_path=str(self.db_path),
            files=stats["files"],
            chunks=stats["chunks"],
            dirty=self._dirty,
            provider=self.embedding_provider.name,
            model=self.embedding_provider.model,
            requested_provider=self.provider_result.requested_provider,
            fallback_from=self.provider_result.fallback_from,
            fallback_reason=self.provider_result.fallback_reason,
            sources=list(self.config.sources),
            cache=MemoryCacheStatus(
                enabled=self.config.cache.enabled,
                entries=stats["cache_entries"],
                max_entries=self.config.cache.max_entries,
            ),
            vector=MemoryVectorStatus(
                enabled=self.vector_enabled,
                available=vector["available"],
                dims=vector["dims"],
                load_error=vector["load_error"],
            ),
        )


# ============================================================================
# Registry
# ============================================================================

RegistryKey = Tuple[str, str]


class MemoryIndexRegistry:
    """Holds at most one manager per (workspace, agent) pair."""

    def __init__(self):
        self._managers: Dict[RegistryKey, MemoryIndexManager] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def make_key(workspace_dir: str | Path, agent_id: str) -> RegistryKey:
        return str(Path(workspace_dir).expanduser().resolve()), agent_id

    async def get_or_create(
        self,
        workspace_dir: str | Path,
        agent_id: str = "default",
        config: MemorySearchConfig | Mapping[str, Any] | None = None,
        **kwargs,
    ) -> MemoryIndexManager:
        """Return the existing manager for the key, or create and initialize one.

        Args:
            workspace_dir: Workspace directory.
            agent_id: Agent ID.
            config: Config used only when a new manager is created.
            **kwargs: Passed to MemoryIndexManager on creation.

        Returns:
            The shared manager instance.
        """
        key = self.make_key(workspace_dir, agent_id)
        async with self._lock:
            manager = self._managers.get(key)
            if manager is not None and not manager.closed:
                return manager

            manager = await MemoryIndexManager.create(workspace_dir, agent_id, config, **kwargs)
            self._managers[key] = manager
            return manager

    def get(self, workspace_dir: str | Path, agent_id: str = "default") -> Optional[MemoryIndexManager]:
        manager = self._managers.get(self.make_key(workspace_dir, agent_id))
        if manager is None or manager.closed:
            return None
        return manager

    async def remove_and_close(self, workspace_dir: str | Path, agent_id: str = "default") -> bool:
        """Close and forget one manager.

        Returns:
            True if a manager was registered for the key.
        """
        async with self._lock:
            manager = self._managers.pop(self.make_key(workspace_dir, agent_id), None)
        if manager is None:
            return False
        await manager.close()
        return True

    async def close_all(self) -> None:
        async with self._lock:
            managers = list(self._managers.values())
            self._managers.clear()
        for manager in managers:
            await manager.close()

    def __len__(self) -> int:
        return len(self._managers)


_registry: Optional[MemoryIndexRegistry] = None


def get_memory_registry() -> MemoryIndexRegistry:
    """Get the process-wide registry."""
    global _registry
    if _registry is None:
        _registry = MemoryIndexRegistry()
    return _registry


async def get_memory_index_manager(
    workspace_dir: str | Path,
    agent_id: str = "default",
    config: MemorySearchConfig | Mapping[str, Any] | None = None,
    **kwargs,
) -> MemoryIndexManager:
    """Get or create the manager for a workspace/agent from the process registry."""
    return await get_memory_registry().get_or_create(workspace_dir, agent_id, config, **kwargs)
