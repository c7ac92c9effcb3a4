"""记忆索引存储

基于 aiosqlite 的持久化存储：文件元数据、分块、嵌入缓存，
以及两条查询路径（sqlite-vec 向量检索、FTS5 关键词检索）。

sqlite-vec 扩展不可用时退化为进程内余弦相似度扫描；
FTS5 不可用时退化为 LIKE 匹配。
"""
import json
import math
import re
import sqlite3
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import aiosqlite
import sqlite_vec

from .chunker import MemoryChunk
from .errors import StorageError
from config.logging import get_logger


logger = get_logger(__name__)


VECTOR_TABLE = "chunks_vec"
FTS_TABLE = "chunks_fts"

TERM_RE = re.compile(r"\w+", re.UNICODE)
# Scripts written without spaces between words (CJK, kana, hangul)
UNSEGMENTED_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]")
VEC_DIMS_RE = re.compile(r"embedding\s+FLOAT\[(\d+)\]", re.IGNORECASE)

# Keyword relevance weights: term coverage, term frequency, phrase match
COVERAGE_WEIGHT = 0.6
FREQUENCY_WEIGHT = 0.2
PHRASE_WEIGHT = 0.2


def tokenize(text: str) -> List[str]:
    """Lowercase word tokens of at least two characters.

    Single characters of unsegmented scripts are kept, since one CJK
    character is often a whole word.
    """
    return [
        t for t in TERM_RE.findall(text.lower())
        if len(t) >= 2 or is_unsegmented(t)
    ]


def is_unsegmented(term: str) -> bool:
    """True when the term contains characters of a script without word spaces.

    FTS5's default tokenizer keeps such a run as one token, so these terms
    are matched as substrings instead.
    """
    return UNSEGMENTED_RE.search(term) is not None


def keyword_score(query: str, text: str) -> float:
    """Score text relevance for a query in [0, 1].

    Combines query-term coverage, saturated term frequency, and a bonus
    when the query terms appear as a contiguous phrase. Unsegmented
    (CJK) terms are counted as substring occurrences.

    Args:
        query: Raw query string.
        text: Chunk text.

    Returns:
        Relevance score (0 when no query term occurs).
    """
    terms = list(dict.fromkeys(tokenize(query)))
    if not terms:
        return 0.0

    tokens = tokenize(text)
    if not tokens:
        return 0.0

    counts: Dict[str, int] = {}
    for token in tokens:
        counts[token] = counts.get(token, 0) + 1

    joined = " ".join(tokens)
    term_counts = {
        t: joined.count(t) if is_unsegmented(t) else counts.get(t, 0)
        for t in terms
    }

    matched = [t for t in terms if term_counts[t] > 0]
    if not matched:
        return 0.0

    coverage = len(matched) / len(terms)
    tf = sum(term_counts[t] for t in matched)
    frequency = tf / (tf + 2.0)

    phrase = " ".join(tokenize(query))
    if any(is_unsegmented(t) for t in terms):
        phrase_bonus = 1.0 if phrase in joined else 0.0
    else:
        phrase_bonus = 1.0 if f" {phrase} " in f" {joined} " else 0.0

    return (
        COVERAGE_WEIGHT * coverage
        + FREQUENCY_WEIGHT * frequency
        + PHRASE_WEIGHT * phrase_bonus
    )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors (0 if either is a zero vector)."""
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _row_to_chunk(row: Tuple) -> MemoryChunk:
    # id, path, source, start_line, end_line, text, hash, embedding
    embedding = json.loads(row[7]) if row[7] else None
    return MemoryChunk(
        id=row[0],
        path=row[1],
        source=row[2],
        start_line=row[3],
        end_line=row[4],
        text=row[5],
        hash=row[6],
        embedding=embedding,
    )


def _hit(row: Tuple, key: str, score: float) -> Dict[str, Any]:
    return {
        "id": row[0],
        "path": row[1],
        "source": row[2],
        "start_line": row[3],
        "end_line": row[4],
        "text": row[5],
        key: score,
    }


CHUNK_COLUMNS = "c.id, c.path, c.source, c.start_line, c.end_line, c.text, c.hash, c.embedding"


class MemoryStorage:
    """SQLite-backed store for one (workspace, agent) index.

    Writes commit immediately unless they run inside ``transaction()``.
    Every failed SQLite operation is raised as StorageError.
    """

    def __init__(
        self,
        db_path: str | Path,
        cache_provider: str = "none",
        cache_model: str = "none",
        cache_max_entries: Optional[int] = None,
    ):
        """Initialize the storage handle.

        Args:
            db_path: Path to the SQLite file.
            cache_provider: Provider name scoping embedding-cache rows.
            cache_model: Model name scoping embedding-cache rows.
            cache_max_entries: Prune the cache to this size (None = unbounded).
        """
        self.db_path = Path(db_path).expanduser()
        self.cache_provider = cache_provider
        self.cache_model = cache_model
        self.cache_max_entries = cache_max_entries

        self._db: Optional[aiosqlite.Connection] = None
        self._in_transaction = False

        self._fts_available = False
        self._vec_loaded = False
        self._vec_load_error: Optional[str] = None
        self._vec_dims: Optional[int] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        """Open the database, load sqlite-vec, and create the schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._db = await aiosqlite.connect(str(self.db_path))
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA busy_timeout=5000")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open index database {self.db_path}: {e}") from e

        await self._load_vector_extension()
        await self._init_schema()

        logger.debug(
            f"[STORE] Opened {self.db_path} "
            f"(fts={self._fts_available}, vec={self._vec_loaded})"
        )

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            db, self._db = self._db, None
            try:
                await db.close()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to close index database: {e}") from e

    async def _load_vector_extension(self) -> None:
        try:
            await self._db.enable_load_extension(True)
            await self._db.load_extension(sqlite_vec.loadable_path())
            await self._db.enable_load_extension(False)
            self._vec_loaded = True
        except (AttributeError, sqlite3.Error) as e:
            # Python builds without extension loading raise AttributeError
            self._vec_loaded = False
            self._vec_load_error = f"sqlite-vec unavailable: {e}"
            logger.warning(f"[STORE] {self._vec_load_error}; using in-process vector scan")

    async def _init_schema(self) -> None:
        await self._execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        await self._execute("""
            CREATE TABLE IF NOT EXISTS files (
                path TEXT PRIMARY KEY,
                source TEXT NOT NULL DEFAULT 'memory',
                hash TEXT NOT NULL,
                size INTEGER NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        await self._execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id TEXT PRIMARY KEY,
                path TEXT NOT NULL,
                source TEXT NOT NULL DEFAULT 'memory',
                start_line INTEGER NOT NULL,
                end_line INTEGER NOT NULL,
                text TEXT NOT NULL,
                hash TEXT NOT NULL,
                embedding TEXT,
                updated_at REAL NOT NULL
            )
        """)
        await self._execute("CREATE INDEX IF NOT EXISTS ix_chunks_path ON chunks(path)")
        await self._execute("""
            CREATE TABLE IF NOT EXISTS embedding_cache (
                provider TEXT NOT NULL,
                model TEXT NOT NULL,
                hash TEXT NOT NULL,
                dims INTEGER NOT NULL,
                embedding TEXT NOT NULL,
                hit_count INTEGER NOT NULL DEFAULT 0,
                updated_at REAL NOT NULL,
                PRIMARY KEY (provider, model, hash)
            )
        """)
        await self._execute("""
            CREATE INDEX IF NOT EXISTS ix_embedding_cache_updated_at
            ON embedding_cache(updated_at)
        """)

        try:
            await self._db.execute(f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE}
                USING fts5(chunk_id UNINDEXED, text)
            """)
            self._fts_available = True
        except sqlite3.OperationalError as e:
            self._fts_available = False
            logger.debug(f"[STORE] FTS5 not available, using LIKE fallback: {e}")

        if self._vec_loaded:
            self._vec_dims = await self._existing_vector_dims()

        await self._maybe_commit()

    # ========================================================================
    # Low-level helpers
    # ========================================================================

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Index database is not open")
        return self._db

    async def _execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        try:
            cursor = await self._conn().execute(sql, tuple(params))
            rowcount = cursor.rowcount
            await cursor.close()
            return rowcount
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error: {e}") from e

    async def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> List[Tuple]:
        try:
            cursor = await self._conn().execute(sql, tuple(params))
            rows = await cursor.fetchall()
            await cursor.close()
            return list(rows)
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error: {e}") from e

    async def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[Tuple]:
        rows = await self._fetchall(sql, params)
        return rows[0] if rows else None

    async def _maybe_commit(self) -> None:
        if self._in_transaction:
            return
        try:
            await self._conn().commit()
        except sqlite3.Error as e:
            raise StorageError(f"Commit failed: {e}") from e

    @asynccontextmanager
    async def transaction(self):
        """Group writes into one commit; roll back if the block raises."""
        if self._in_transaction:
            yield self
            return

        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._in_transaction = False
            try:
                await self._conn().rollback()
            except sqlite3.Error as e:
                logger.error(f"[STORE] Rollback failed: {e}")
            raise
        self._in_transaction = False
        await self._maybe_commit()

    # ========================================================================
    # Meta
    # ========================================================================

    async def get_meta(self, key: str) -> Optional[str]:
        row = await self._fetchone("SELECT value FROM meta WHERE key = ?", (key,))
        return row[0] if row else None

    async def set_meta(self, key: str, value: str) -> None:
        await self._execute(
            "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value)
        )
        await self._maybe_commit()

    async def delete_meta(self, key: str) -> None:
        await self._execute("DELETE FROM meta WHERE key = ?", (key,))
        await self._maybe_commit()

    # ========================================================================
    # Vector table
    # ========================================================================

    async def _existing_vector_dims(self) -> Optional[int]:
        row = await self._fetchone(
            "SELECT sql FROM sqlite_master WHERE type='table' AND name=?",
            (VECTOR_TABLE,),
        )
        if not row or not row[0]:
            return None
        match = VEC_DIMS_RE.search(row[0])
        return int(match.group(1)) if match else None

    async def ensure_vector_table(self, dims: int) -> bool:
        """Provision the vec0 table for ``dims``-dimensional vectors.

        A table with a different dimensionality is dropped and recreated,
        then refilled from the stored chunk embeddings that fit.

        Args:
            dims: Dimensionality reported by the active provider.

        Returns:
            True if the vector table is usable.
        """
        if not self._vec_loaded or dims <= 0:
            return False

        existing = await self._existing_vector_dims()
        if existing == dims:
            self._vec_dims = dims
            return True

        if existing:
            logger.info(f"[STORE] Recreating vector table: dimension {existing} → {dims}")
        else:
            logger.info(f"[STORE] Creating vector table with dimension {dims}")

        try:
            await self._execute(f"DROP TABLE IF EXISTS {VECTOR_TABLE}")
            await self._execute(f"""
                CREATE VIRTUAL TABLE {VECTOR_TABLE} USING vec0(
                    chunk_id TEXT PRIMARY KEY,
                    embedding FLOAT[{dims}] distance_metric=cosine
                )
            """)
        except StorageError as e:
            self._vec_dims = None
            self._vec_load_error = f"vector table unavailable: {e}"
            logger.warning(f"[STORE] {self._vec_load_error}")
            return False

        self._vec_dims = dims

        rows = await self._fetchall(
            "SELECT id, embedding FROM chunks WHERE embedding IS NOT NULL"
        )
        for chunk_id, raw in rows:
            await self._insert_vector(chunk_id, json.loads(raw))

        await self._maybe_commit()
        return True

    def vector_status(self) -> Dict[str, Any]:
        """Availability of the vector backend.

        Returns:
            Dict with ``available`` (sqlite-vec table usable), ``dims`` and
            ``load_error``.
        """
        return {
            "available": self._vec_loaded and self._vec_dims is not None,
            "dims": self._vec_dims,
            "load_error": self._vec_load_error,
        }

    async def _insert_vector(self, chunk_id: str, embedding: List[float]) -> None:
        if self._vec_dims is None or len(embedding) != self._vec_dims:
            return
        await self._execute(f"DELETE FROM {VECTOR_TABLE} WHERE chunk_id = ?", (chunk_id,))
        await self._execute(
            f"INSERT INTO {VECTOR_TABLE} (chunk_id, embedding) VALUES (?, ?)",
            (chunk_id, sqlite_vec.serialize_float32(embedding)),
        )

    async def _delete_vectors_for_path(self, path: str) -> None:
        if self._vec_dims is None:
            return
        await self._execute(
            f"DELETE FROM {VECTOR_TABLE} WHERE chunk_id IN "
            f"(SELECT id FROM chunks WHERE path = ?)",
            (path,),
        )

    # ========================================================================
    # Files
    # ========================================================================

    async def upsert_file(self, path: str, source: str, file_hash: str, size: int) -> None:
        await self._execute(
            """
            INSERT INTO files (path, source, hash, size, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                source = excluded.source,
                hash = excluded.hash,
                size = excluded.size,
                updated_at = excluded.updated_at
            """,
            (path, source, file_hash, size, time.time()),
        )
        await self._maybe_commit()

    async def get_file(self, path: str) -> Optional[Dict[str, Any]]:
        """Stored metadata for a file, or None if it was never indexed."""
        row = await self._fetchone(
            "SELECT path, source, hash, size, updated_at FROM files WHERE path = ?",
            (path,),
        )
        if not row:
            return None
        return {
            "path": row[0],
            "source": row[1],
            "hash": row[2],
            "size": row[3],
            "updated_at": row[4],
        }

    async def delete_file(self, path: str) -> int:
        """Delete a file and all of its chunks.

        Returns:
            Number of chunks removed.
        """
        removed = await self._delete_chunks_for_path(path)
        await self._execute("DELETE FROM files WHERE path = ?", (path,))
        await self._maybe_commit()
        return removed

    async def get_all_file_paths(self) -> List[str]:
        rows = await self._fetchall("SELECT path FROM files ORDER BY path")
        return [row[0] for row in rows]

    # ========================================================================
    # Chunks
    # ========================================================================

    async def upsert_chunk(self, chunk: MemoryChunk) -> None:
        """Insert or replace one chunk, its keyword row, and its vector."""
        embedding_json = json.dumps(chunk.embedding) if chunk.embedding else None

        await self._execute(
            """
            INSERT INTO chunks
                (id, path, source, start_line, end_line, text, hash, embedding, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                path = excluded.path,
                source = excluded.source,
                start_line = excluded.start_line,
                end_line = excluded.end_line,
                text = excluded.text,
                hash = excluded.hash,
                embedding = excluded.embedding,
                updated_at = excluded.updated_at
            """,
            (
                chunk.id,
                chunk.path,
                chunk.source,
                chunk.start_line,
                chunk.end_line,
                chunk.text,
                chunk.hash,
                embedding_json,
                time.time(),
            ),
        )

        if self._fts_available:
            await self._execute(f"DELETE FROM {FTS_TABLE} WHERE chunk_id = ?", (chunk.id,))
            await self._execute(
                f"INSERT INTO {FTS_TABLE} (chunk_id, text) VALUES (?, ?)",
                (chunk.id, chunk.text),
            )

        if self._vec_dims is not None:
            await self._execute(f"DELETE FROM {VECTOR_TABLE} WHERE chunk_id = ?", (chunk.id,))
            if chunk.embedding:
                await self._insert_vector(chunk.id, chunk.embedding)

        await self._maybe_commit()

    async def _delete_chunks_for_path(self, path: str) -> int:
        await self._delete_vectors_for_path(path)
        if self._fts_available:
            await self._execute(
                f"DELETE FROM {FTS_TABLE} WHERE chunk_id IN "
                f"(SELECT id FROM chunks WHERE path = ?)",
                (path,),
            )
        return await self._execute("DELETE FROM chunks WHERE path = ?", (path,))

    async def replace_file_chunks(self, path: str, chunks: List[MemoryChunk]) -> int:
        """Replace every chunk of ``path`` with ``chunks``.

        Returns:
            Number of chunks removed.
        """
        async with self.transaction():
            removed = await self._delete_chunks_for_path(path)
            for chunk in chunks:
                await self.upsert_chunk(chunk)
        return removed

    async def get_unembedded_chunks(
        self, exclude_paths: Optional[Iterable[str]] = None
    ) -> List[MemoryChunk]:
        """Chunks stored without a vector, in path/line order."""
        rows = await self._fetchall(
            f"SELECT {CHUNK_COLUMNS} FROM chunks c "
            f"WHERE c.embedding IS NULL ORDER BY c.path, c.start_line"
        )
        excluded = set(exclude_paths or ())
        return [_row_to_chunk(row) for row in rows if row[1] not in excluded]

    async def count_embedded_chunks(self) -> int:
        row = await self._fetchone("SELECT COUNT(*) FROM chunks WHERE embedding IS NOT NULL")
        return row[0] if row else 0

    # ========================================================================
    # Embedding cache
    # ========================================================================

    async def get_cached_embedding(self, text_hash: str) -> Optional[List[float]]:
        """Get embedding from cache.

        Args:
            text_hash: SHA-256 hash of the text.

        Returns:
            Cached embedding or None.
        """
        row = await self._fetchone(
            """
            SELECT embedding FROM embedding_cache
            WHERE provider = ? AND model = ? AND hash = ?
            """,
            (self.cache_provider, self.cache_model, text_hash),
        )
        if not row:
            return None

        await self._execute(
            """
            UPDATE embedding_cache
            SET hit_count = hit_count + 1, updated_at = ?
            WHERE provider = ? AND model = ? AND hash = ?
            """,
            (time.time(), self.cache_provider, self.cache_model, text_hash),
        )
        await self._maybe_commit()
        return json.loads(row[0])

    async def cache_embedding(self, text_hash: str, embedding: List[float]) -> None:
        """Cache an embedding result and prune the oldest entries if needed.

        Args:
            text_hash: SHA-256 hash of the text.
            embedding: Embedding vector.
        """
        await self._execute(
            """
            INSERT OR REPLACE INTO embedding_cache
                (provider, model, hash, dims, embedding, hit_count, updated_at)
            VALUES (?, ?, ?, ?, ?, 0, ?)
            """,
            (
                self.cache_provider,
                self.cache_model,
                text_hash,
                len(embedding),
                json.dumps(embedding),
                time.time(),
            ),
        )

        if self.cache_max_entries:
            await self._prune_cache(self.cache_max_entries)

        await self._maybe_commit()

    async def _prune_cache(self, max_entries: int) -> None:
        row = await self._fetchone("SELECT COUNT(*) FROM embedding_cache")
        count = row[0] if row else 0
        if count <= max_entries:
            return

        excess = count - max_entries
        await self._execute(
            """
            DELETE FROM embedding_cache
            WHERE rowid IN (
                SELECT rowid FROM embedding_cache
                ORDER BY updated_at ASC, rowid ASC
                LIMIT ?
            )
            """,
            (excess,),
        )
        logger.debug(f"[STORE] Pruned {excess} cache entries")

    async def count_cache_entries(self) -> int:
        row = await self._fetchone(
            "SELECT COUNT(*) FROM embedding_cache WHERE provider = ? AND model = ?",
            (self.cache_provider, self.cache_model),
        )
        return row[0] if row else 0

    # ========================================================================
    # Queries
    # ========================================================================

    async def search_vector(self, query_embedding: List[float], limit: int) -> List[Dict[str, Any]]:
        """Rank chunks by cosine similarity to ``query_embedding``.

        Uses the vec0 KNN index when it matches the query dimensionality,
        otherwise scans stored embeddings in process.

        Args:
            query_embedding: Query vector.
            limit: Maximum results.

        Returns:
            Hit dicts with ``vector_score`` in [0, 1], best first.
        """
        if limit <= 0 or not query_embedding:
            return []

        if self._vec_dims is not None and len(query_embedding) == self._vec_dims:
            rows = await self._fetchall(
                f"""
                SELECT c.id, c.path, c.source, c.start_line, c.end_line, c.text, v.distance
                FROM (
                    SELECT chunk_id, distance
                    FROM {VECTOR_TABLE}
                    WHERE embedding MATCH ? AND k = ?
                ) v
                JOIN chunks c ON c.id = v.chunk_id
                """,
                (sqlite_vec.serialize_float32(query_embedding), limit),
            )
            hits = [
                _hit(row, "vector_score", max(0.0, 1.0 - row[6]))
                for row in rows
                if row[6] is not None
            ]
        else:
            rows = await self._fetchall(
                f"SELECT {CHUNK_COLUMNS} FROM chunks c WHERE c.embedding IS NOT NULL"
            )
            hits = []
            for row in rows:
                score = cosine_similarity(query_embedding, json.loads(row[7]))
                hits.append(_hit(row, "vector_score", max(0.0, score)))

        hits.sort(key=lambda h: (-h["vector_score"], h["id"]))
        return hits[:limit]

    async def search_keyword(self, query: str, limit: int) -> List[Dict[str, Any]]:
        """Rank chunks by keyword relevance to ``query``.

        FTS5 (or LIKE, for CJK terms or without FTS5) selects candidates;
        ``keyword_score`` ranks them.

        Args:
            query: Raw query string.
            limit: Maximum results.

        Returns:
            Hit dicts with ``text_score`` in [0, 1], best first.
        """
        terms = list(dict.fromkeys(tokenize(query)))
        if limit <= 0 or not terms:
            return []

        # FTS5 keeps an unspaced CJK run as one token, so those terms need LIKE
        if self._fts_available and not any(is_unsegmented(t) for t in terms):
            match = " OR ".join(f'"{term}"' for term in terms)
            rows = await self._fetchall(
                f"""
                SELECT c.id, c.path, c.source, c.start_line, c.end_line, c.text,
                       bm25({FTS_TABLE}) AS rank
                FROM {FTS_TABLE}
                JOIN chunks c ON c.id = {FTS_TABLE}.chunk_id
                WHERE {FTS_TABLE} MATCH ?
                ORDER BY rank
                LIMIT ?
                """,
                (match, limit * 2),
            )
        else:
            clauses = " OR ".join("lower(c.text) LIKE ?" for _ in terms)
            rows = await self._fetchall(
                f"""
                SELECT c.id, c.path, c.source, c.start_line, c.end_line, c.text, 0.0
                FROM chunks c
                WHERE {clauses}
                """,
                [f"%{term}%" for term in terms],
            )

        hits = []
        for row in rows:
            score = keyword_score(query, row[5])
            if score <= 0:
                continue
            hit = _hit(row, "text_score", score)
            hit["_rank"] = row[6]
            hits.append(hit)

        hits.sort(key=lambda h: (-h["text_score"], h["_rank"], h["id"]))
        for hit in hits:
            del hit["_rank"]
        return hits[:limit]

    # ========================================================================
    # Stats / maintenance
    # ========================================================================

    async def get_stats(self) -> Dict[str, int]:
        """Counts of files, chunks, embedded chunks and cache entries."""
        files = await self._fetchone("SELECT COUNT(*) FROM files")
        chunks = await self._fetchone("SELECT COUNT(*) FROM chunks")
        return {
            "files": files[0] if files else 0,
            "chunks": chunks[0] if chunks else 0,
            "embedded_chunks": await self.count_embedded_chunks(),
            "cache_entries": await self.count_cache_entries(),
        }

    async def reset_index(self) -> None:
        """Remove all files, chunks and vectors. The embedding cache is kept."""
        async with self.transaction():
            await self._execute("DELETE FROM chunks")
            await self._execute("DELETE FROM files")
            if self._fts_available:
                await self._execute(f"DELETE FROM {FTS_TABLE}")
            if self._vec_loaded:
                await self._execute(f"DROP TABLE IF EXISTS {VECTOR_TABLE}")
        self._vec_dims = None
        logger.info(f"[STORE] Index reset: {self.db_path}")
