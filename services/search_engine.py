"""混合搜索引擎

将向量相似度检索与关键词检索的结果按分块 ID 合并，并加权融合打分。

特性:
    - 任一检索路径缺失的分数按 0 计算，仅被一路命中的分块仍可参与排序
    - 同分时按分块 ID 排序，保证结果确定
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config.logging import get_logger


SNIPPET_MAX_CHARS = 700


logger = get_logger(__name__)


@dataclass
class MemorySearchResult:
    """A search result with score and location."""

    id: str
    path: str
    source: str
    start_line: int
    end_line: int
    snippet: str
    score: float  # 0-1, higher is better
    vector_score: Optional[float] = None
    text_score: Optional[float] = None

    @property
    def citation(self) -> str:
        return f"{self.path}#L{self.start_line}-L{self.end_line}"


@dataclass
class SearchOutcome:
    """Results of one query and the branch mode that produced them.

    ``mode`` is ``hybrid``, ``vector`` or ``keyword``.
    """

    results: List[MemorySearchResult]
    mode: str

    @property
    def keyword_only(self) -> bool:
        return self.mode == "keyword"


def make_snippet(text: str, max_chars: int = SNIPPET_MAX_CHARS) -> str:
    return text[:max_chars]


class SearchEngine:
    """Hybrid result fusion.

    Final score = ``vector_weight * vector_score + text_weight * text_score``.
    """

    def __init__(
        self,
        vector_weight: float = 0.7,
        text_weight: float = 0.3,
        candidate_multiplier: int = 4,
    ):
        """Initialize the search engine.

        Args:
            vector_weight: Weight for vector search results (0-1).
            text_weight: Weight for keyword search results (0-1).
            candidate_multiplier: Multiplier for candidate retrieval.
        """
        if not (0 <= vector_weight <= 1):
            raise ValueError("vector_weight must be between 0 and 1")
        if not (0 <= text_weight <= 1):
            raise ValueError("text_weight must be between 0 and 1")

        self.vector_weight = vector_weight
        self.text_weight = text_weight
        self.candidate_multiplier = candidate_multiplier

    def candidate_count(self, max_results: int) -> int:
        """Candidates to fetch from each branch for ``max_results`` hits."""
        return max(1, max_results * self.candidate_multiplier)

    def fuse(
        self,
        vector_results: List[Dict[str, Any]],
        keyword_results: List[Dict[str, Any]],
        vector_weight: Optional[float] = None,
        text_weight: Optional[float] = None,
    ) -> List[MemorySearchResult]:
        """Combine vector and keyword hits into one ranked list.

        Args:
            vector_results: Hits carrying ``vector_score``.
            keyword_results: Hits carrying ``text_score``.
            vector_weight: Override for the vector weight.
            text_weight: Override for the text weight.

        Returns:
            Results sorted by score descending, then id ascending.
        """
        vw = self.vector_weight if vector_weight is None else vector_weight
        tw = self.text_weight if text_weight is None else text_weight

        merged: Dict[str, Dict[str, Any]] = {}
        for hit in vector_results:
            merged[hit["id"]] = {**hit, "text_score": None}
        for hit in keyword_results:
            entry = merged.get(hit["id"])
            if entry is None:
                merged[hit["id"]] = {**hit, "vector_score": None}
            else:
                entry["text_score"] = hit["text_score"]

        results = []
        for chunk_id, data in merged.items():
            v_score = data.get("vector_score")
            t_score = data.get("text_score")
            score = vw * (v_score or 0.0) + tw * (t_score or 0.0)

            results.append(MemorySearchResult(
                id=chunk_id,
                path=data["path"],
                source=data.get("source", "memory"),
                start_line=data["start_line"],
                end_line=data["end_line"],
                snippet=make_snippet(data.get("text", "")),
                score=score,
                vector_score=v_score,
                text_score=t_score,
            ))

        results.sort(key=lambda r: (-r.score, r.id))
        logger.debug(
            f"[SEARCH] Fused {len(vector_results)} vector + "
            f"{len(keyword_results)} keyword hits into {len(results)}"
        )
        return results

    @staticmethod
    def select(
        results: List[MemorySearchResult],
        max_results: int,
        min_score: float,
    ) -> List[MemorySearchResult]:
        """Filter by minimum score and truncate to ``max_results``."""
        return [r for r in results if r.score >= min_score][:max_results]


def format_search_results(
    results: List[MemorySearchResult],
    keyword_only: bool = False,
) -> str:
    """Format search results for LLM context.

    Args:
        results: List of search results.
        keyword_only: Mark the results as produced by keyword search alone.

    Returns:
        Formatted string with ``path#Lstart-Lend`` citations.
    """
    if not results:
        return "No relevant memory found."

    plural = "" if len(results) == 1 else "s"
    mode = " (keyword search)" if keyword_only else ""
    parts = [f"Found {len(results)} relevant memory snippet{plural}{mode}:", ""]

    for result in results:
        parts.extend([
            f"### Source: {result.citation} (score {result.score:.2f})",
            "",
            result.snippet,
            "",
            "---",
            "",
        ])

    first = results[0]
    parts.append("Use `memory_get` to read the full context of any snippet.")
    parts.append(f'Example: memory_get(path="{first.path}", from_line={first.start_line}, lines=20)')

    return "\n".join(parts)
