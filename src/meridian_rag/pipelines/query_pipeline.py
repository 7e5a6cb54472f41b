"""meridian_rag.pipelines.query_pipeline

Query-time orchestration: retrieve candidates, then optionally rerank them.

Classes
-------
QueryResult
    Ranked results plus rerank accounting for one query.
QueryPipeline
    Orchestrates retrieval and reranking.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from meridian_rag.common.schemas import RetrievalFilter, RetrievalResult
from meridian_rag.metrics.collector import RerankEvent
from meridian_rag.retrieval.types import Reranker, Retriever

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    query: str
    project_id: str
    results: list[RetrievalResult] = field(default_factory=list)
    candidates: int = 0
    reranked: bool = False
    rerank_time_ms: Optional[float] = None
    rerank_cost: float = 0.0


class QueryPipeline:
    """Retrieval with optional second-stage reranking.

    Parameters
    ----------
    retriever : Retriever
        Semantic or hybrid retriever.
    reranker : Reranker or None, optional
        Second-stage reranker. When ``None`` results are returned as
        retrieved.
    candidate_multiplier : int, optional
        With a reranker, ``top_k * candidate_multiplier`` candidates are
        retrieved before reranking to ``top_k``. Defaults to ``2``.
    metrics : RagMetricsCollector or None, optional
        Receives one :class:`RerankEvent` per rerank call.
    default_top_k : int, optional
        Result count used when :meth:`run` receives none.
    """

    def __init__(
            self,
            retriever: Retriever,
            reranker: Optional[Reranker] = None,
            candidate_multiplier: int = 2,
            metrics: Any = None,
            default_top_k: int = 10,
        ):
        self.retriever = retriever
        self.reranker = reranker
        self.candidate_multiplier = int(candidate_multiplier)
        if self.candidate_multiplier < 1:
            raise ValueError("'candidate_multiplier' must be at least 1.")
        self.metrics = metrics
        self.default_top_k = int(default_top_k)

    async def run(
            self,
            query: str,
            project_id: str,
            top_k: Optional[int] = None,
            filter: Optional[RetrievalFilter] = None,
        ) -> QueryResult:
        """Answer one query.

        Raises
        ------
        NoCompletedIndexError
            Propagated from the retriever.
        """
        k = self.default_top_k if top_k is None else int(top_k)
        n_candidates = k * self.candidate_multiplier if self.reranker is not None else k
        candidates = await self.retriever.retrieve(query, project_id, n_candidates, filter)

        if self.reranker is None:
            return QueryResult(query=query, project_id=project_id, results=candidates[:k], candidates=len(candidates))

        results, usage = await self.reranker.rerank_with_usage(query, candidates, k)
        if self.metrics is not None and usage.time_ms:
            self.metrics.record_rerank(
                RerankEvent(
                    project_id=project_id,
                    input_results=len(candidates),
                    output_results=len(results),
                    rerank_time_ms=usage.time_ms,
                    cost=usage.cost,
                )
            )
        logger.debug("Query pipeline: %d candidates -> %d results (reranked=%s)", len(candidates), len(results), usage.applied)
        return QueryResult(
            query=query,
            project_id=project_id,
            results=results,
            candidates=len(candidates),
            reranked=usage.applied,
            rerank_time_ms=usage.time_ms if usage.time_ms else None,
            rerank_cost=usage.cost,
        )

    async def __call__(self, query: str, project_id: str, **kwargs) -> QueryResult:
        return await self.run(query, project_id, **kwargs)


__all__ = ["QueryPipeline", "QueryResult"]
