"""文件监控服务

监控工作区记忆文件（MEMORY.md、memory.md、memory/*.md），
检测到更改时标记索引为脏，并在防抖延迟后触发增量同步。
"""
import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from config.logging import get_logger


logger = get_logger(__name__)


ROOT_MEMORY_FILES = ("MEMORY.md", "memory.md")
MEMORY_DIR = "memory"


def is_memory_path(workspace_dir: Path, path: str | Path) -> bool:
    """Check whether an absolute path is a watched memory file.

    Args:
        workspace_dir: Resolved workspace directory.
        path: Path reported by the filesystem event.

    Returns:
        True for ``MEMORY.md``/``memory.md`` at the workspace root and
        ``*.md`` directly inside ``memory/``.
    """
    candidate = Path(path)
    parent = candidate.parent

    if parent == workspace_dir:
        return candidate.name in ROOT_MEMORY_FILES
    if parent == workspace_dir / MEMORY_DIR:
        return candidate.suffix == ".md"
    return False


class MemoryFileEventHandler(FileSystemEventHandler):
    """Forwards memory-file events from the observer thread."""

    def __init__(self, watcher: "FileWatcher"):
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in ("created", "modified", "deleted", "moved"):
            return

        if event.is_directory:
            if event.event_type in ("created", "moved"):
                target = getattr(event, "dest_path", "") or event.src_path
                self.watcher.watch_memory_dir_if_created(target)
            return

        paths = [event.src_path]
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.append(dest)

        if any(is_memory_path(self.watcher.workspace_dir, p) for p in paths):
            logger.debug(f"[WATCH] {event.event_type}: {event.src_path}")
            self.watcher.notify_threadsafe()


class FileWatcher:
    """File watcher using watchdog for one workspace's memory files.

    Watchdog delivers events on its own thread; they are handed to the
    event loop captured in ``start()``. Each event marks the index dirty
    at once and restarts the debounce timer; the sync callback runs once
    the timer expires without further events.
    """

    def __init__(
        self,
        workspace_dir: str | Path,
        callback: Callable[[], Awaitable[Any]],
        on_change: Optional[Callable[[], None]] = None,
        debounce_ms: int = 1500,
    ):
        """Initialize the file watcher.

        Args:
            workspace_dir: Workspace holding the memory files.
            callback: Async callback to invoke after the debounce delay.
            on_change: Sync callback invoked immediately on every change.
            debounce_ms: Debounce delay in milliseconds.
        """
        self.workspace_dir = Path(workspace_dir).expanduser().resolve()
        self.callback = callback
        self.on_change = on_change
        self.debounce_ms = debounce_ms

        self._observer: Optional[Observer] = None
        self._handler = MemoryFileEventHandler(self)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._memory_dir_watched = False

        self._running = False
        self._closed = False

    async def start(self) -> None:
        """Start the file watcher.

        Creates the observer and starts watching the workspace root and
        its ``memory/`` directory.
        """
        if self._running:
            logger.warning("[WATCH] Already running")
            return
        if self._closed:
            return

        self._loop = asyncio.get_running_loop()

        if not self.workspace_dir.exists():
            logger.warning(f"[WATCH] Workspace does not exist: {self.workspace_dir}")
            return

        self._observer = Observer()
        self._observer.schedule(self._handler, str(self.workspace_dir), recursive=False)

        memory_dir = self.workspace_dir / MEMORY_DIR
        if memory_dir.is_dir():
            self._observer.schedule(self._handler, str(memory_dir), recursive=False)
            self._memory_dir_watched = True

        self._observer.start()
        self._running = True

        logger.info(f"[WATCH] Monitoring {self.workspace_dir} (debounce: {self.debounce_ms}ms)")

    def watch_memory_dir_if_created(self, path: str | Path) -> None:
        """Start watching ``memory/`` once it appears under the workspace."""
        memory_dir = self.workspace_dir / MEMORY_DIR
        if self._memory_dir_watched or self._observer is None or Path(path) != memory_dir:
            return

        self._observer.schedule(self._handler, str(memory_dir), recursive=False)
        self._memory_dir_watched = True
        logger.debug(f"[WATCH] Monitoring: {memory_dir}")
        self.notify_threadsafe()

    async def stop(self) -> None:
        """Stop the file watcher. Later notifications are ignored."""
        self._closed = True

        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

        if self._observer:
            observer, self._observer = self._observer, None
            observer.stop()
            await asyncio.to_thread(observer.join, 5.0)

        if self._running:
            self._running = False
            logger.info("[WATCH] Stopped")

    def notify_threadsafe(self) -> None:
        """Schedule ``notify`` on the watcher's event loop from any thread."""
        loop = self._loop
        if self._closed or loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.notify)

    def notify(self) -> None:
        """Record a change and (re)start the debounce timer.

        Must be called on the event loop thread.
        """
        if self._closed:
            return

        if self.on_change is not None:
            self.on_change()

        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()

        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced_callback())

    async def _debounced_callback(self) -> None:
        """Debounced callback invocation."""
        try:
            await asyncio.sleep(self.debounce_ms / 1000.0)
        except asyncio.CancelledError:
            return

        if self._closed:
            return

        logger.debug("[WATCH] Triggering sync callback")
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[WATCH] Callback error: {e}")

    @property
    def is_running(self) -> bool:
        """Check if the file watcher is running."""
        return self._running

    @property
    def closed(self) -> bool:
        return self._closed
