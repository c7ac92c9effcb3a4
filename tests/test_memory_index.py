"""Tests for the memory index manager."""

import asyncio

import pytest

from config.settings import merge_memory_config
from services.embedding import EmbeddingCredentials
from services.errors import ConfigError, InvalidPathError, MemoryIndexError
from services.memory_index import VECTOR_DIMS_META_KEY, MemoryIndexManager, MemoryIndexRegistry

from conftest import FakeEmbeddingProvider, write_file


DEPLOY_NOTES = "# Deploys\nWe deploy on fridays after the standup.\nRollback plan lives in the wiki."
TRAVEL_NOTES = "# Travel\nFlight to Lisbon on the 12th.\nHotel is near the river."


class TestSync:
    """Incremental synchronization."""

    async def test_first_sync_indexes_memory_files(self, manager, workspace, fake_provider):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        write_file(workspace, "memory/2024-06-01.md", TRAVEL_NOTES)
        write_file(workspace, "memory/draft.txt", "not markdown")
        write_file(workspace, "notes.md", "not a memory file")

        stats = await manager.sync()

        assert stats.status == "success"
        assert stats.files_scanned == 2
        assert stats.files_updated == 2
        assert stats.chunks_added == 2
        assert stats.embedding_failures == 0
        assert not manager.dirty

        status = await manager.status()
        assert status.files == 2
        assert status.chunks == 2
        assert status.provider == "fake"
        assert status.model == "fake-model"
        assert status.cache.entries == 2

    async def test_unchanged_files_are_not_reembedded(self, manager, workspace, fake_provider):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        await manager.sync()
        calls = len(fake_provider.calls)

        stats = await manager.sync()

        assert stats.files_updated == 0
        assert stats.chunks_added == 0
        assert len(fake_provider.calls) == calls

    async def test_identical_chunks_are_embedded_once(self, manager, workspace, fake_provider):
        write_file(workspace, "memory/2024-06-01.md", DEPLOY_NOTES)
        write_file(workspace, "memory/2024-06-02.md", DEPLOY_NOTES)

        stats = await manager.sync()

        assert stats.files_updated == 2
        assert fake_provider.embedded_texts == [DEPLOY_NOTES]

    async def test_changed_file_is_rechunked(self, manager, workspace):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        await manager.sync()

        write_file(workspace, "MEMORY.md", TRAVEL_NOTES)
        stats = await manager.sync()

        assert stats.files_updated == 1
        assert stats.chunks_removed == 1
        assert stats.chunks_added == 1
        results = await manager.search("lisbon", min_score=0.0)
        assert [r.path for r in results] == ["MEMORY.md"]

    async def test_deleted_files_are_removed(self, manager, workspace):
        note = write_file(workspace, "memory/2024-06-01.md", TRAVEL_NOTES)
        await manager.sync()

        note.unlink()
        stats = await manager.sync()

        assert stats.files_removed == 1
        assert stats.chunks_removed == 1
        assert (await manager.status()).files == 0
        assert await manager.search("lisbon", min_score=0.0) == []

    async def test_force_sync_reindexes_from_cache(self, manager, workspace, fake_provider):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        await manager.sync()
        calls = len(fake_provider.calls)

        stats = await manager.sync(force=True)

        assert stats.full_reindex
        assert stats.files_updated == 1
        assert len(fake_provider.calls) == calls

    async def test_concurrent_syncs_share_one_run(self, manager, workspace):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)

        first, second = await asyncio.gather(manager.sync(), manager.sync())

        assert first is second
        assert first.files_updated == 1

    async def test_change_during_sync_keeps_index_dirty(self, workspace, memory_config):
        class MarkingProvider(FakeEmbeddingProvider):
            manager = None

            async def embed_batch(self, texts):
                self.manager.mark_dirty()
                return await super().embed_batch(texts)

        provider = MarkingProvider()
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", memory_config, embedding_provider=provider
        )
        provider.manager = manager
        try:
            write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
            await manager.sync()
            assert manager.dirty
        finally:
            await manager.close()

    async def test_memory_source_disabled(self, workspace, fake_provider):
        config = merge_memory_config(None, {"sources": ["sessions"], "sync": {"watch": False}})
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", config, embedding_provider=fake_provider
        )
        try:
            write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
            stats = await manager.sync()
            assert stats.files_scanned == 0
        finally:
            await manager.close()

    async def test_session_start_sync_can_be_disabled(self, workspace, fake_provider):
        config = merge_memory_config(
            None, {"sync": {"watch": False, "on_session_start": False}}
        )
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", config, embedding_provider=fake_provider
        )
        try:
            assert await manager.sync_on_session_start() is None
        finally:
            await manager.close()

    async def test_session_start_sync_runs(self, manager, workspace):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)

        stats = await manager.sync_on_session_start()

        assert stats.files_updated == 1


class TestEmbeddingFailures:
    """Chunks stored without vectors and retried later."""

    async def test_failed_batch_is_retried_on_next_sync(self, manager, workspace, fake_provider):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        fake_provider.fail = True

        first = await manager.sync()

        assert first.embedding_failures == 1
        assert first.chunks_added == 1
        assert (await manager.status()).chunks == 1
        assert await manager.storage.count_embedded_chunks() == 0

        fake_provider.fail = False
        second = await manager.sync()

        assert second.files_updated == 0
        assert second.chunks_retried == 1
        assert await manager.storage.count_embedded_chunks() == 1

    async def test_search_falls_back_to_keywords_when_query_embedding_fails(
        self, manager, workspace, fake_provider
    ):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        await manager.sync()
        fake_provider.fail = True

        results = await manager.search("deploy fridays")

        assert [r.path for r in results] == ["MEMORY.md"]
        assert results[0].vector_score is None
        assert results[0].text_score == pytest.approx(results[0].score)


class TestSearch:
    """Hybrid search through the manager."""

    async def test_search_syncs_dirty_index(self, manager, workspace):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        write_file(workspace, "memory/2024-06-01.md", TRAVEL_NOTES)

        results = await manager.search("flight lisbon hotel", min_score=0.0)

        assert results[0].path == "memory/2024-06-01.md"
        assert results[0].start_line == 1
        assert results[0].citation == "memory/2024-06-01.md#L1-L3"
        assert results[0].vector_score is not None
        assert results[0].text_score is not None
        assert not manager.dirty

    async def test_blank_query_returns_nothing(self, manager):
        assert await manager.search("   ") == []

    async def test_max_results(self, manager, workspace):
        for day in range(1, 6):
            write_file(workspace, f"memory/2024-06-0{day}.md", f"Standup notes day {day}")

        results = await manager.search("standup notes", max_results=2, min_score=0.0)

        assert len(results) == 2

    async def test_vector_only_when_hybrid_disabled(self, workspace, fake_provider):
        config = merge_memory_config(
            None, {"sync": {"watch": False}, "query": {"hybrid": {"enabled": False}}}
        )
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", config, embedding_provider=fake_provider
        )
        try:
            write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
            results = await manager.search("deploy fridays", min_score=0.0)
            assert results
            assert all(r.text_score is None for r in results)
            assert results[0].score == pytest.approx(results[0].vector_score)
        finally:
            await manager.close()

    async def test_keyword_only_without_credentials(self, workspace, memory_config):
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", memory_config, credentials=EmbeddingCredentials()
        )
        try:
            write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
            write_file(workspace, "memory/2024-06-01.md", TRAVEL_NOTES)

            results = await manager.search("deploy fridays")

            assert not manager.vector_enabled
            assert [r.path for r in results] == ["MEMORY.md"]
            assert results[0].score == pytest.approx(0.7)

            status = await manager.status()
            assert status.provider == "none"
            assert status.requested_provider == "auto"
            assert status.fallback_from == "openai"
            assert status.fallback_reason
            assert status.vector.enabled is False
        finally:
            await manager.close()

    async def test_cjk_query_in_keyword_only_mode(self, workspace, memory_config):
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", memory_config, credentials=EmbeddingCredentials()
        )
        try:
            write_file(workspace, "MEMORY.md", "# 笔记\n今天我学习了向量数据库的用法\n")

            results = await manager.search("向量数据库", min_score=0.0)

            assert [r.path for r in results] == ["MEMORY.md"]
            assert results[0].score > 0.35
        finally:
            await manager.close()

    async def test_search_reports_mode(self, manager, workspace, fake_provider):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)

        hybrid = await manager.search_with_mode("deploy fridays", min_score=0.0)
        fake_provider.fail = True
        fallback = await manager.search_with_mode("deploy fridays", min_score=0.0)

        assert hybrid.mode == "hybrid"
        assert fallback.mode == "keyword"
        assert fallback.keyword_only
        assert [r.path for r in fallback.results] == ["MEMORY.md"]


class TestIndexSettingsChange:
    """Stored index metadata triggers a reset when settings change."""

    async def test_new_model_resets_index(self, workspace, memory_config):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        first = await MemoryIndexManager.create(
            workspace, "agent-1", memory_config, embedding_provider=FakeEmbeddingProvider()
        )
        await first.sync()
        await first.close()

        provider = FakeEmbeddingProvider(dims=8, model="fake-small")
        second = await MemoryIndexManager.create(
            workspace, "agent-1", memory_config, embedding_provider=provider
        )
        try:
            assert (await second.status()).files == 0

            stats = await second.sync()

            assert stats.files_updated == 1
            assert provider.embedded_texts == [DEPLOY_NOTES]
        finally:
            await second.close()

    async def test_same_settings_keep_index(self, workspace, memory_config):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        first = await MemoryIndexManager.create(
            workspace, "agent-1", memory_config, embedding_provider=FakeEmbeddingProvider()
        )
        await first.sync()
        await first.close()

        provider = FakeEmbeddingProvider()
        second = await MemoryIndexManager.create(
            workspace, "agent-1", memory_config, embedding_provider=provider
        )
        try:
            assert (await second.status()).files == 1
            stats = await second.sync()
            assert stats.files_updated == 0
            assert provider.calls == []
        finally:
            await second.close()

class MisreportingProvider(FakeEmbeddingProvider):
    """Reports 32 dimensions but returns 16-dimensional vectors."""

    @property
    def vector_dimension(self) -> int:
        return 32


class TestVectorDimensions:
    """Vector lengths returned by the provider drive the vector table."""

    async def test_observed_dimension_replaces_reported_one(self, workspace, memory_config):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", memory_config, embedding_provider=MisreportingProvider()
        )
        try:
            stats = await manager.sync()

            assert stats.embedding_failures == 0
            assert await manager.storage.count_embedded_chunks() == 1
            assert await manager.storage.get_meta(VECTOR_DIMS_META_KEY) == "16"
            vector = manager.storage.vector_status()
            if vector["available"]:
                assert vector["dims"] == 16

            results = await manager.search("deploy fridays", min_score=0.0)
            assert results[0].vector_score is not None
        finally:
            await manager.close()

        provider = MisreportingProvider()
        reopened = await MemoryIndexManager.create(
            workspace, "agent-1", memory_config, embedding_provider=provider
        )
        try:
            assert (await reopened.status()).files == 1
            assert (await reopened.sync()).files_updated == 0

            results = await reopened.search("deploy fridays", min_score=0.0)
            assert results[0].vector_score is not None
        finally:
            await reopened.close()

    async def test_ragged_batch_is_stored_without_vectors(self, workspace):
        class RaggedProvider(FakeEmbeddingProvider):
            async def embed_batch(self, texts):
                vectors = await super().embed_batch(texts)
                return [vector[: 8 if i % 2 else 16] for i, vector in enumerate(vectors)]

        config = merge_memory_config(
            None, {"sync": {"watch": False}, "chunking": {"tokens": 10, "overlap": 0}}
        )
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", config, embedding_provider=RaggedProvider()
        )
        try:
            write_file(workspace, "MEMORY.md", DEPLOY_NOTES)

            stats = await manager.sync()

            assert stats.chunks_added >= 2
            assert stats.embedding_failures >= 1
            assert await manager.storage.count_embedded_chunks() == 0
        finally:
            await manager.close()


async def wait_until(predicate, timeout: float = 5.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.02)
    return True


def count_sync_runs(manager, monkeypatch) -> list:
    runs = []
    original = manager._run_sync

    async def counting_run_sync(force):
        runs.append(force)
        return await original(force)

    monkeypatch.setattr(manager, "_run_sync", counting_run_sync)
    return runs


@pytest.fixture
def watch_config():
    return merge_memory_config(None, {"sync": {"watch": True, "watch_debounce_ms": 100}})


class TestWatchedSync:
    """Watcher-driven syncs and shutdown while they are pending."""

    async def test_file_change_triggers_sync(self, workspace, watch_config, monkeypatch):
        (workspace / "memory").mkdir()
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", watch_config, embedding_provider=FakeEmbeddingProvider()
        )
        try:
            await manager.sync()
            assert not manager.dirty
            generation = manager._dirty_generation
            runs = count_sync_runs(manager, monkeypatch)

            write_file(workspace, "memory/2024-06-01.md", TRAVEL_NOTES)

            assert await wait_until(lambda: manager._dirty_generation > generation)
            assert await wait_until(lambda: runs and not manager.dirty)
            assert (await manager.status()).files == 1
        finally:
            await manager.close()

    async def test_burst_of_changes_runs_one_sync(self, workspace, watch_config, monkeypatch):
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", watch_config, embedding_provider=FakeEmbeddingProvider()
        )
        try:
            await manager.sync()
            runs = count_sync_runs(manager, monkeypatch)

            for _ in range(3):
                manager._watcher.notify()
            assert manager.dirty

            assert await wait_until(lambda: runs and not manager.dirty)
            await asyncio.sleep(0.3)
            assert len(runs) == 1
        finally:
            await manager.close()

    async def test_close_with_pending_debounce(self, workspace, watch_config, monkeypatch):
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", watch_config, embedding_provider=FakeEmbeddingProvider()
        )
        runs = count_sync_runs(manager, monkeypatch)

        manager._watcher.notify()
        await manager.close()
        await asyncio.sleep(0.3)

        assert runs == []
        assert manager.closed

    async def test_close_during_watched_sync(self, workspace, watch_config, monkeypatch):
        class BlockingProvider(FakeEmbeddingProvider):
            def __init__(self):
                super().__init__()
                self.started = asyncio.Event()
                self.release = asyncio.Event()

            async def embed_batch(self, texts):
                self.started.set()
                await self.release.wait()
                return await super().embed_batch(texts)

        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)
        provider = BlockingProvider()
        manager = await MemoryIndexManager.create(
            workspace, "agent-1", watch_config, embedding_provider=provider
        )
        runs = count_sync_runs(manager, monkeypatch)

        manager._watcher.notify()
        await asyncio.wait_for(provider.started.wait(), timeout=5.0)
        joined = asyncio.get_running_loop().create_task(manager.sync())
        await asyncio.sleep(0)

        await manager.close()

        with pytest.raises(MemoryIndexError):
            await joined
        assert provider.closed
        await asyncio.sleep(0.3)
        assert len(runs) == 1



class TestReadFile:
    """Allow-listed memory file reads."""

    async def test_reads_whole_file(self, manager, workspace):
        write_file(workspace, "MEMORY.md", DEPLOY_NOTES)

        result = await manager.read_file("./MEMORY.md")

        assert result == {"text": DEPLOY_NOTES, "path": "MEMORY.md"}

    async def test_reads_line_range(self, manager, workspace):
        write_file(workspace, "memory/2024-06-01.md", "one\ntwo\nthree\nfour")

        result = await manager.read_file("memory\\2024-06-01.md", from_line=2, lines=2)

        assert result["text"] == "two\nthree"
        assert result["path"] == "memory/2024-06-01.md"

    async def test_range_past_end_is_empty(self, manager, workspace):
        write_file(workspace, "MEMORY.md", "one\ntwo")

        result = await manager.read_file("MEMORY.md", from_line=10, lines=5)

        assert result["text"] == ""

    @pytest.mark.parametrize(
        "path",
        ["notes.md", "memory/../secret.md", "../MEMORY.md", "/etc/passwd", ""],
    )
    async def test_rejects_paths_outside_allow_list(self, manager, workspace, path):
        write_file(workspace, "secret.md", "token")

        with pytest.raises(InvalidPathError):
            await manager.read_file(path)

    async def test_missing_file(self, manager):
        with pytest.raises(FileNotFoundError):
            await manager.read_file("memory/2099-01-01.md")


class TestLifecycle:
    """Construction, close and registry."""

    def test_disabled_config_is_rejected(self, workspace, fake_provider):
        with pytest.raises(ConfigError):
            MemoryIndexManager(workspace, config={"enabled": False}, embedding_provider=fake_provider)

    async def test_close_is_idempotent(self, manager, fake_provider):
        await manager.close()
        await manager.close()

        assert manager.closed
        assert fake_provider.closed
        with pytest.raises(MemoryIndexError):
            await manager.search("anything")
        with pytest.raises(MemoryIndexError):
            await manager.sync()

    async def test_store_path_is_per_agent(self, workspace, memory_config, fake_provider):
        manager = MemoryIndexManager(
            workspace, "agent-7", memory_config, embedding_provider=fake_provider
        )

        assert manager.db_path == workspace.resolve() / ".memory" / "agent-7.sqlite"

    async def test_registry_shares_managers(self, workspace, memory_config):
        registry = MemoryIndexRegistry()
        first = await registry.get_or_create(
            workspace, "agent-1", memory_config, embedding_provider=FakeEmbeddingProvider()
        )
        same = await registry.get_or_create(workspace / ".", "agent-1")
        other = await registry.get_or_create(
            workspace, "agent-2", memory_config, embedding_provider=FakeEmbeddingProvider()
        )

        assert first is same
        assert other is not first
        assert len(registry) == 2
        assert registry.get(workspace, "agent-1") is first

        assert await registry.remove_and_close(workspace, "agent-1")
        assert first.closed
        assert registry.get(workspace, "agent-1") is None
        assert not await registry.remove_and_close(workspace, "agent-1")

        await registry.close_all()
        assert other.closed
        assert len(registry) == 0
