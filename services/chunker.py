"""文本分块服务

将 Markdown 记忆文件按字符预算分块，支持块间重叠，并以标题作为优先边界。
"""
import hashlib
import math
import re
from dataclasses import dataclass
from typing import List, Optional

from config.logging import get_logger


logger = get_logger(__name__)

# Rough estimate for English text
CHARS_PER_TOKEN = 4

HEADER_RE = re.compile(r"^#{1,3}\s")


@dataclass
class TextChunk:
    """A raw chunk of text with its 1-indexed, inclusive line range."""

    text: str
    start_line: int
    end_line: int
    hash: str
    token_count: int


@dataclass
class MemoryFileEntry:
    """One on-disk memory file, read fresh on every sync pass."""

    path: str
    source: str
    content: str
    hash: str
    size: int


@dataclass
class MemoryChunk:
    """A chunk of a memory file, the unit of embedding and retrieval."""

    id: str
    path: str
    source: str
    start_line: int
    end_line: int
    text: str
    hash: str
    embedding: Optional[List[float]] = None


def hash_text(text: str) -> str:
    """Calculate SHA-256 hash of text.

    Args:
        text: Text to hash.

    Returns:
        Hexadecimal hash string.
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def estimate_tokens(text: str) -> int:
    """Estimate token count for text.

    Uses the larger of the word count and ``ceil(chars / 4)``.

    Args:
        text: Text to estimate.

    Returns:
        Estimated token count (0 for blank text).
    """
    trimmed = text.strip()
    if not trimmed:
        return 0

    words = len(trimmed.split())
    return max(words, math.ceil(len(trimmed) / CHARS_PER_TOKEN))


def make_chunk_id(path: str, start_line: int, end_line: int) -> str:
    return f"{path}:{start_line}-{end_line}"


class Chunker:
    """Text chunker for splitting markdown files into overlapping chunks."""

    # Default chunking parameters
    DEFAULT_TOKENS = 400
    DEFAULT_OVERLAP = 80

    def __init__(
        self,
        tokens: int = DEFAULT_TOKENS,
        overlap: int = DEFAULT_OVERLAP,
    ):
        """Initialize the chunker.

        Args:
            tokens: Target tokens per chunk.
            overlap: Overlap tokens between chunks.
        """
        self.tokens = tokens
        self.overlap = overlap

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into chunks.

        Lines are accumulated until the next one would overflow the
        character budget. The following chunk then starts with a trailing
        overlap window from the closed chunk, unless the line that caused
        the cut is a markdown header, in which case it starts at the header.

        Args:
            text: The text to chunk.

        Returns:
            List of TextChunk objects in document order.
        """
        if not text:
            return []

        max_chars = self.tokens * CHARS_PER_TOKEN
        overlap_chars = self.overlap * CHARS_PER_TOKEN

        lines = text.split("\n")
        chunks: List[TextChunk] = []

        current_lines: List[str] = []
        current_start = 1
        current_chars = 0

        for i, line in enumerate(lines):
            line_chars = len(line) + 1  # +1 for newline

            if current_chars + line_chars > max_chars and current_lines:
                self._append_chunk(chunks, current_lines, current_start, i)

                if HEADER_RE.match(line) or overlap_chars <= 0:
                    current_lines = []
                    current_start = i + 1
                    current_chars = 0
                else:
                    overlap_lines = self._get_overlap_lines(current_lines, overlap_chars)
                    current_lines = overlap_lines
                    current_start = i - len(overlap_lines) + 1
                    current_chars = sum(len(l) + 1 for l in overlap_lines)

            current_lines.append(line)
            current_chars += line_chars

        if current_lines:
            self._append_chunk(chunks, current_lines, current_start, len(lines))

        logger.debug(f"[CHUNK] Created {len(chunks)} chunks from {len(lines)} lines")
        return chunks

    def build_chunks(self, entry: MemoryFileEntry) -> List[MemoryChunk]:
        """Chunk a memory file entry into indexable chunks.

        Chunk ids are derived from the path and line range, so re-chunking
        unchanged content reproduces the same ids.

        Args:
            entry: The file entry to chunk.

        Returns:
            List of MemoryChunk objects without embeddings.
        """
        return [
            MemoryChunk(
                id=make_chunk_id(entry.path, chunk.start_line, chunk.end_line),
                path=entry.path,
                source=entry.source,
                start_line=chunk.start_line,
                end_line=chunk.end_line,
                text=chunk.text,
                hash=chunk.hash,
            )
            for chunk in self.chunk_text(entry.content)
        ]

    def _append_chunk(
        self,
        chunks: List[TextChunk],
        lines: List[str],
        start_line: int,
        end_line: int,
    ) -> None:
        text = "\n".join(lines)
        if not text.strip():
            return

        chunks.append(TextChunk(
            text=text,
            start_line=start_line,
            end_line=end_line,
            hash=hash_text(text),
            token_count=estimate_tokens(text),
        ))

    def _get_overlap_lines(self, lines: List[str], max_chars: int) -> List[str]:
        """Get overlap lines from the end of the previous chunk.

        Args:
            lines: Lines from previous chunk.
            max_chars: Character budget for the overlap window.

        Returns:
            List of lines to overlap.
        """
        result: List[str] = []
        total_chars = 0

        # Take lines from the end until the budget is exhausted
        for line in reversed(lines):
            line_chars = len(line) + 1
            if total_chars + line_chars > max_chars:
                break
            result.insert(0, line)
            total_chars += line_chars

        return result


def chunk_markdown(
    content: str,
    max_tokens: int = Chunker.DEFAULT_TOKENS,
    overlap_tokens: int = Chunker.DEFAULT_OVERLAP,
) -> List[TextChunk]:
    """Chunk markdown content with the given budgets.

    Args:
        content: Raw markdown.
        max_tokens: Target tokens per chunk.
        overlap_tokens: Overlap tokens between chunks.

    Returns:
        List of TextChunk objects.
    """
    return Chunker(tokens=max_tokens, overlap=overlap_tokens).chunk_text(content)
