"""meridian_rag.metrics.collector

In-process metrics for indexing runs, retrievals, the embedding cache and the
vector store.

A single :class:`RagMetricsCollector` is created by the application container
and handed to every component that reports into it. Histories are bounded to
the most recent ``history_size`` events; aggregate views cover the trailing
24 hours.

Classes
-------
IndexingEvent
    One finished (or failed) indexing run.
RetrievalEvent
    One retrieval call.
RerankEvent
    One second-stage rerank call.
RagMetricsCollector
    Event sink and aggregator.

Functions
---------
percentile
    Nearest-rank percentile, ``sorted[ceil(n * p) - 1]``.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from meridian_rag.common.schemas import utcnow

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 1000


@dataclass(frozen=True)
class IndexingEvent:
    index_id: str
    project_id: str
    status: str
    total_files: int
    total_chunks: int
    duration_ms: float
    cost: float
    tokens_used: int
    started_at: datetime
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class RetrievalEvent:
    project_id: str
    query: str
    method: str
    results_count: int
    average_score: float
    retrieval_time_ms: float
    cost: float = 0.0
    cache_hit: bool = False
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class RerankEvent:
    project_id: str
    input_results: int
    output_results: int
    rerank_time_ms: float
    cost: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)


def percentile(values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile of ``values``; ``0.0`` for an empty sequence."""
    if not values:
        return 0.0
    ordered = sorted(values)
    idx = max(0, math.ceil(len(ordered) * p) - 1)
    return float(ordered[min(idx, len(ordered) - 1)])


@dataclass
class _CollectionStats:
    total_vectors: int = 0
    queries: int = 0
    total_query_latency_ms: float = 0.0
    deletes: int = 0
    last_update: Optional[datetime] = None


class RagMetricsCollector:
    """Collects RAG events and computes aggregate views.

    Parameters
    ----------
    history_size : int, optional
        Number of indexing and retrieval events retained. Defaults to ``1000``.
    window : timedelta, optional
        Trailing window used by :meth:`get_metrics`. Defaults to 24 hours.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE, window: timedelta = timedelta(hours=24)):
        self.history_size = int(history_size)
        self.window = window
        self.reset()

    def reset(self) -> None:
        self._indexing: deque[IndexingEvent] = deque(maxlen=self.history_size)
        self._retrieval: deque[RetrievalEvent] = deque(maxlen=self.history_size)
        self._rerank: deque[RerankEvent] = deque(maxlen=self.history_size)
        self._cache_hits = 0
        self._cache_misses = 0
        self._cache_hit_latency_ms = 0.0
        self._cache_miss_latency_ms = 0.0
        self._collections: dict[str, _CollectionStats] = {}

    # ----------------- recording -----------------

    def record_indexing(self, event: IndexingEvent) -> None:
        self._indexing.append(event)
        logger.debug(
            "Indexing recorded: index=%s status=%s chunks=%d cost=%.6f",
            event.index_id, event.status, event.total_chunks, event.cost,
        )

    def record_retrieval(self, event: RetrievalEvent) -> None:
        self._retrieval.append(event)
        logger.debug(
            "Retrieval recorded: method=%s results=%d time=%.1fms",
            event.method, event.results_count, event.retrieval_time_ms,
        )

    def record_rerank(self, event: RerankEvent) -> None:
        self._rerank.append(event)

    def record_cache_hit(self, latency_ms: float) -> None:
        self._cache_hits += 1
        self._cache_hit_latency_ms += float(latency_ms)

    def record_cache_miss(self, latency_ms: float) -> None:
        self._cache_misses += 1
        self._cache_miss_latency_ms += float(latency_ms)

    def record_vector_store_operation(
            self,
            collection_name: str,
            operation: str,
            latency_ms: float,
            *,
            vector_count: Optional[int] = None,
            results_count: Optional[int] = None,
        ) -> None:
        stats = self._collections.setdefault(collection_name, _CollectionStats())
        if operation == "upsert" and vector_count:
            stats.total_vectors += int(vector_count)
        elif operation == "search":
            stats.queries += 1
            stats.total_query_latency_ms += float(latency_ms)
        elif operation == "delete":
            stats.deletes += 1
        stats.last_update = utcnow()

    # ----------------- views -----------------

    def get_cache_metrics(self) -> dict[str, Any]:
        total = self._cache_hits + self._cache_misses
        return {
            "hits": self._cache_hits,
            "misses": self._cache_misses,
            "hit_rate": self._cache_hits / total if total else 0.0,
            "average_hit_latency_ms": self._cache_hit_latency_ms / self._cache_hits if self._cache_hits else 0.0,
            "average_miss_latency_ms": self._cache_miss_latency_ms / self._cache_misses if self._cache_misses else 0.0,
        }

    def get_vector_store_metrics(self) -> list[dict[str, Any]]:
        return [
            {
                "collection_name": name,
                "total_vectors": stats.total_vectors,
                "queries": stats.queries,
                "deletes": stats.deletes,
                "average_query_latency_ms": stats.total_query_latency_ms / stats.queries if stats.queries else 0.0,
                "last_update": stats.last_update,
            }
            for name, stats in self._collections.items()
        ]

    def get_metrics(self) -> dict[str, Any]:
        """Aggregate the trailing window into indexing, retrieval,
        performance, cost, quality and cache blocks."""
        now = utcnow()
        since = now - self.window
        indexing = [e for e in self._indexing if e.started_at >= since]
        retrieval = [e for e in self._retrieval if e.timestamp >= since]
        completed = [e for e in indexing if e.status == "COMPLETED"]

        indexing_cost = sum(e.cost for e in completed)
        chunks_indexed = sum(e.total_chunks for e in completed)
        files_indexed = sum(e.total_files for e in completed)
        n_retrievals = len(retrieval)
        reranked = [e for e in self._rerank if e.timestamp >= since]
        embedding_cost = sum(e.cost for e in retrieval)
        rerank_cost = sum(e.cost for e in reranked)
        avg_score = sum(e.average_score for e in retrieval) / n_retrievals if n_retrievals else 0.0
        last_completed = max((e.completed_at for e in completed if e.completed_at), default=None)

        return {
            "indexing": {
                "total_projects_indexed": len({e.project_id for e in completed}),
                "total_chunks_indexed": chunks_indexed,
                "average_indexing_time_ms": sum(e.duration_ms for e in completed) / len(completed) if completed else 0.0,
                "indexing_cost": indexing_cost,
                "indexing_success_rate": len(completed) / len(indexing) if indexing else 1.0,
                "last_indexing_time": last_completed,
                "failed_indexings": sum(1 for e in indexing if e.status == "FAILED"),
            },
            "retrieval": {
                "total_retrievals": n_retrievals,
                "average_retrieval_time_ms": sum(e.retrieval_time_ms for e in retrieval) / n_retrievals if n_retrievals else 0.0,
                "average_relevance_score": avg_score,
                "cache_hit_rate": self.get_cache_metrics()["hit_rate"],
                "reranking_rate": min(1.0, len(reranked) / n_retrievals) if n_retrievals else 0.0,
                "average_rerank_time_ms": sum(e.rerank_time_ms for e in reranked) / len(reranked) if reranked else 0.0,
                "average_results_per_query": sum(e.results_count for e in retrieval) / n_retrievals if n_retrievals else 0.0,
            },
            "performance": {
                "p50_retrieval_time_ms": percentile([e.retrieval_time_ms for e in self._retrieval], 0.50),
                "p95_retrieval_time_ms": percentile([e.retrieval_time_ms for e in self._retrieval], 0.95),
                "p99_retrieval_time_ms": percentile([e.retrieval_time_ms for e in self._retrieval], 0.99),
                "p50_indexing_time_ms": percentile([e.duration_ms for e in self._indexing], 0.50),
                "p95_indexing_time_ms": percentile([e.duration_ms for e in self._indexing], 0.95),
            },
            "cost": {
                "total_embedding_cost": embedding_cost,
                "total_reranking_cost": rerank_cost,
                "cost_per_retrieval": (embedding_cost + rerank_cost) / n_retrievals if n_retrievals else 0.0,
                "cost_per_index": indexing_cost / len(completed) if completed else 0.0,
            },
            "quality": {
                "average_chunks_per_file": chunks_indexed / files_indexed if files_indexed else 0.0,
                "index_freshness_days": (now - last_completed).total_seconds() / 86400 if last_completed else None,
                "average_vector_score": avg_score,
            },
            "cache": self.get_cache_metrics(),
        }


__all__ = [
    "IndexingEvent",
    "RagMetricsCollector",
    "RerankEvent",
    "RetrievalEvent",
    "percentile",
]
