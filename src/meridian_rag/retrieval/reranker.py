"""meridian_rag.retrieval.reranker

Second-stage rerankers for retrieval results.

This module defines:
- an abstract reranker interface
- an LLM-backed reranker that asks a chat model to order candidate snippets
- a small reranker factory for configuration-driven construction

Reranking never fails the query: any model or parsing problem falls back to
the original order truncated to ``top_k``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from meridian_rag.common.schemas import RetrievalResult
from meridian_rag.generation.llm_interface import BaseLLM, create_llm

logger = logging.getLogger(__name__)

DEFAULT_RERANK_MODEL = "anthropic/claude-3-haiku"
INPUT_PRICE_PER_MILLION = 0.25
OUTPUT_PRICE_PER_MILLION = 1.25

_INDEX_LINE = re.compile(r"^\s*(\d+)\s*$")


@dataclass(frozen=True)
class RerankUsage:
    """Cost accounting for one rerank call."""
    time_ms: float = 0.0
    cost: float = 0.0
    applied: bool = False


class BaseReranker(ABC):
    """Abstract interface for reranking retrieval results."""

    @abstractmethod
    async def rerank_with_usage(
            self,
            query: str,
            results: Sequence[RetrievalResult],
            top_k: int = 5,
        ) -> tuple[list[RetrievalResult], RerankUsage]:
        """Return at most ``top_k`` reordered results plus usage accounting."""
        raise NotImplementedError

    async def rerank(self, query: str, results: Sequence[RetrievalResult], top_k: int = 5) -> list[RetrievalResult]:
        reranked, _ = await self.rerank_with_usage(query, results, top_k)
        return reranked

    async def rerank_batch(
            self,
            items: Sequence[tuple[str, Sequence[RetrievalResult]]],
            top_k: int = 5,
        ) -> list[list[RetrievalResult]]:
        """Rerank several ``(query, results)`` pairs concurrently."""
        logger.info("Starting batch reranking of %d queries", len(items))
        reranked = await asyncio.gather(*(self.rerank(q, r, top_k) for q, r in items))
        logger.info(
            "Batch reranking completed: %d queries, %d results",
            len(items), sum(len(r) for r in reranked),
        )
        return list(reranked)


class LLMReranker(BaseReranker):
    """Reranker that asks a chat model for a relevance ordering.

    Parameters
    ----------
    llm : BaseLLM
        Chat model used for ranking.
    max_tokens : int, optional
        Maximum completion tokens. Defaults to ``1000``.
    preview_chars : int, optional
        Number of content characters shown per candidate. Defaults to ``400``.
    """

    def __init__(self, llm: BaseLLM, *, max_tokens: int = 1000, preview_chars: int = 400):
        self.llm = llm
        self.max_tokens = int(max_tokens)
        self.preview_chars = int(preview_chars)
        if self.preview_chars <= 0:
            raise ValueError("'reranker.preview_chars' must be a positive integer.")

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "LLMReranker":
        llm_cfg = dict(config.get("llm") or {})
        llm_cfg.setdefault("type", "openai_chat")
        llm_cfg.setdefault("model_name", DEFAULT_RERANK_MODEL)
        return cls(
            create_llm(llm_cfg),
            max_tokens=int(config.get("max_tokens", 1000)),
            preview_chars=int(config.get("preview_chars", 400)),
        )

    def build_prompt(self, query: str, results: Sequence[RetrievalResult]) -> str:
        parts = [
            "Given this user query:\n"
            f'"{query}"\n\n'
            "Rank these code snippets by relevance (most relevant first). Consider:\n"
            "- How well the code addresses the query\n"
            "- Code quality and clarity\n"
            "- Relevance to the task described\n\n"
            "Code snippets:\n\n"
        ]
        for idx, result in enumerate(results):
            preview = result.content[: self.preview_chars]
            ellipsis = "..." if len(result.content) > self.preview_chars else ""
            parts.append(f"[{idx}] File: {result.file_path}\n")
            parts.append(f"Type: {result.chunk_type} | Language: {result.language}\n")
            parts.append(f"Code:\n{preview}{ellipsis}\n\n")
        parts.append(
            "\nRespond with ONLY the indices in order of relevance, one per line.\n"
            "Example response:\n2\n0\n5\n1\n3\n\n"
            "Your response (indices only, most relevant first):"
        )
        return "".join(parts)

    @staticmethod
    def parse_rankings(text: str, max_index: int) -> list[int]:
        """Extract in-range indices from bare-integer lines, first occurrence wins."""
        rankings: list[int] = []
        for line in text.strip().splitlines():
            match = _INDEX_LINE.match(line)
            if not match:
                continue
            idx = int(match.group(1))
            if 0 <= idx < max_index and idx not in rankings:
                rankings.append(idx)
        return rankings

    @staticmethod
    def estimate_cost(input_chars: int, output_chars: int) -> float:
        """Estimate USD cost from character counts at four characters per token."""
        input_tokens = math.ceil(input_chars / 4)
        output_tokens = math.ceil(output_chars / 4)
        return (input_tokens / 1_000_000) * INPUT_PRICE_PER_MILLION + \
            (output_tokens / 1_000_000) * OUTPUT_PRICE_PER_MILLION

    async def rerank_with_usage(
            self,
            query: str,
            results: Sequence[RetrievalResult],
            top_k: int = 5,
        ) -> tuple[list[RetrievalResult], RerankUsage]:
        if not results:
            return [], RerankUsage()
        if len(results) <= top_k:
            logger.debug("Results already within top_k, skipping reranking")
            return list(results), RerankUsage()

        started = time.perf_counter()
        fallback = list(results[:top_k])
        logger.info("Starting LLM reranking of %d results (top_k=%d)", len(results), top_k)

        prompt = self.build_prompt(query, results)
        try:
            content = await self.llm.acomplete(prompt, max_tokens=self.max_tokens)
        except Exception:
            logger.error("Reranking failed, falling back to original order", exc_info=True)
            return fallback, RerankUsage(time_ms=(time.perf_counter() - started) * 1000.0)

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        cost = self.estimate_cost(len(prompt), len(content or ""))
        if not content:
            logger.warning("Empty response from reranker, returning original order")
            return fallback, RerankUsage(time_ms=elapsed_ms, cost=cost)

        rankings = self.parse_rankings(content, len(results))
        if not rankings:
            logger.warning("Reranking produced no valid indices, using original order")
            return fallback, RerankUsage(time_ms=elapsed_ms, cost=cost)

        reranked = [results[i] for i in rankings][:top_k]
        logger.info(
            "LLM reranking completed: %d -> %d results in %.1fms",
            len(results), len(reranked), elapsed_ms,
        )
        return reranked, RerankUsage(time_ms=elapsed_ms, cost=cost, applied=True)


def create_reranker(*, config: Optional[Mapping[str, Any]]) -> Optional[BaseReranker]:
    """Create a reranker from configuration, or ``None`` when disabled."""
    cfg = dict(config or {})
    if not cfg.get("enabled", False):
        return None

    kind = str(cfg.get("type", "llm")).lower().strip()
    if kind == "llm":
        return LLMReranker.from_config_dict(cfg)

    raise ValueError(f"Unsupported rerank type {kind!r}. Supported rerankers: ['llm'].")


__all__ = [
    "BaseReranker",
    "LLMReranker",
    "RerankUsage",
    "create_reranker",
]
