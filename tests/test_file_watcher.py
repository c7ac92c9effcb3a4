"""Tests for the memory file watcher."""

import asyncio

import pytest
from watchdog.events import DirCreatedEvent, FileDeletedEvent, FileModifiedEvent, FileMovedEvent

from services.file_watcher import FileWatcher, MemoryFileEventHandler, is_memory_path

from conftest import write_file


class Counter:
    def __init__(self):
        self.count = 0

    def __call__(self):
        self.count += 1

    async def async_call(self):
        self.count += 1


class RecordingObserver:
    def __init__(self):
        self.scheduled = []

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((path, recursive))


@pytest.fixture
def watcher(workspace):
    return FileWatcher(workspace, callback=Counter().async_call, debounce_ms=20)


class TestIsMemoryPath:
    """Which paths count as memory files."""

    def test_root_files(self, workspace):
        root = workspace.resolve()
        assert is_memory_path(root, root / "MEMORY.md")
        assert is_memory_path(root, root / "memory.md")
        assert not is_memory_path(root, root / "README.md")

    def test_memory_dir(self, workspace):
        root = workspace.resolve()
        assert is_memory_path(root, root / "memory" / "2024-06-01.md")
        assert not is_memory_path(root, root / "memory" / "notes.txt")
        assert not is_memory_path(root, root / "memory" / "archive" / "old.md")
        assert not is_memory_path(root, root / "other" / "MEMORY.md")


class TestEventHandler:
    """Filtering of raw watchdog events."""

    def test_memory_file_events_notify(self, watcher, monkeypatch):
        notified = Counter()
        monkeypatch.setattr(watcher, "notify_threadsafe", notified)
        handler = MemoryFileEventHandler(watcher)
        root = watcher.workspace_dir

        handler.on_any_event(FileModifiedEvent(str(root / "MEMORY.md")))
        handler.on_any_event(FileDeletedEvent(str(root / "memory" / "2024-06-01.md")))
        handler.on_any_event(
            FileMovedEvent(str(root / "memory" / "draft.tmp"), str(root / "memory" / "2024-06-02.md"))
        )

        assert notified.count == 3

    def test_other_files_are_ignored(self, watcher, monkeypatch):
        notified = Counter()
        monkeypatch.setattr(watcher, "notify_threadsafe", notified)
        handler = MemoryFileEventHandler(watcher)
        root = watcher.workspace_dir

        handler.on_any_event(FileModifiedEvent(str(root / "notes.md")))
        handler.on_any_event(FileModifiedEvent(str(root / ".memory" / "agent.sqlite")))

        assert notified.count == 0

    def test_created_memory_dir_is_watched(self, watcher, monkeypatch):
        notified = Counter()
        monkeypatch.setattr(watcher, "notify_threadsafe", notified)
        observer = RecordingObserver()
        watcher._observer = observer
        handler = MemoryFileEventHandler(watcher)

        handler.on_any_event(DirCreatedEvent(str(watcher.workspace_dir / "memory")))
        handler.on_any_event(DirCreatedEvent(str(watcher.workspace_dir / "memory")))

        assert observer.scheduled == [(str(watcher.workspace_dir / "memory"), False)]
        assert notified.count == 1


class TestDebounce:
    """Debounced sync callback."""

    async def test_burst_triggers_one_callback(self, workspace):
        callback = Counter()
        changed = Counter()
        watcher = FileWatcher(
            workspace, callback=callback.async_call, on_change=changed, debounce_ms=20
        )

        watcher.notify()
        watcher.notify()
        watcher.notify()
        await asyncio.sleep(0.2)

        assert changed.count == 3
        assert callback.count == 1
        await watcher.stop()

    async def test_stopped_watcher_ignores_changes(self, workspace):
        callback = Counter()
        changed = Counter()
        watcher = FileWatcher(
            workspace, callback=callback.async_call, on_change=changed, debounce_ms=20
        )

        watcher.notify()
        await watcher.stop()
        watcher.notify()
        await asyncio.sleep(0.1)

        assert watcher.closed
        assert changed.count == 1
        assert callback.count == 0

    async def test_callback_errors_are_contained(self, workspace):
        async def failing():
            raise RuntimeError("sync failed")

        watcher = FileWatcher(workspace, callback=failing, debounce_ms=1)

        watcher.notify()
        task = watcher._debounce_task
        await task

        assert task.exception() is None
        await watcher.stop()


class TestObserver:
    """Real filesystem notifications."""

    async def test_start_and_stop(self, workspace):
        (workspace / "memory").mkdir()
        watcher = FileWatcher(workspace, callback=Counter().async_call)

        await watcher.start()
        assert watcher.is_running

        await watcher.stop()
        assert not watcher.is_running

    async def test_file_write_triggers_callback(self, workspace):
        (workspace / "memory").mkdir()
        callback = Counter()
        watcher = FileWatcher(workspace, callback=callback.async_call, debounce_ms=50)
        await watcher.start()
        try:
            write_file(workspace, "memory/2024-06-01.md", "# Notes\n- new entry")

            for _ in range(100):
                if callback.count:
                    break
                await asyncio.sleep(0.05)

            assert callback.count >= 1
        finally:
            await watcher.stop()
