"""记忆工具

供 agent 调用的 memory_search / memory_get 工具，返回可直接放入上下文的文本。
"""
from typing import Optional

from .errors import InvalidPathError, MemoryIndexError
from .memory_index import MemoryIndexManager
from .search_engine import format_search_results
from config.logging import get_logger


logger = get_logger(__name__)


MEMORY_SEARCH_DESCRIPTION = (
    "Search MEMORY.md and memory/*.md files for relevant information. "
    "Uses semantic search when an embedding API is available, keyword search otherwise. "
    "Returns top snippets with file paths and line ranges."
)

MEMORY_GET_DESCRIPTION = (
    "Read a specific memory file with an optional line range. "
    "Use after memory_search to pull the full context of a snippet. "
    "Only works on MEMORY.md and memory/*.md files."
)


class MemoryTools:
    """Text-in, text-out wrappers around one MemoryIndexManager.

    Failures are reported as ``Error: ...`` strings so a tool call never
    raises into the agent loop.
    """

    def __init__(self, manager: MemoryIndexManager):
        self.manager = manager

    async def memory_search(self, query: str, max_results: Optional[int] = None) -> str:
        """Search memories and format the hits with citations.

        Args:
            query: Search query.
            max_results: Maximum number of snippets.

        Returns:
            Formatted results or an error message.
        """
        if not query or not query.strip():
            return "Error: query is required"

        try:
            outcome = await self.manager.search_with_mode(query.strip(), max_results=max_results)
        except MemoryIndexError as e:
            logger.error(f"[MEMORY] memory_search failed: {e}")
            return f"Error searching memories: {e}"

        if not outcome.results:
            return f'No relevant memories found for: "{query}"'

        return format_search_results(outcome.results, keyword_only=outcome.keyword_only)

    async def memory_get(
        self,
        path: str,
        from_line: Optional[int] = None,
        lines: Optional[int] = None,
    ) -> str:
        """Read a memory file or a line range of it.

        Args:
            path: Path relative to the workspace.
            from_line: Starting line number (1-indexed).
            lines: Number of lines to read.

        Returns:
            File text or an error message.
        """
        if not path or not path.strip():
            return "Error: path is required"

        try:
            result = await self.manager.read_file(path, from_line=from_line, lines=lines)
        except InvalidPathError as e:
            return f"Error: {e}"
        except FileNotFoundError:
            return f"Memory file not found: {path}"
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"[MEMORY] Error reading {path}: {e}")
            return f"Error reading memory: {e}"

        return result["text"]
