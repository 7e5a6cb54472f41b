"""meridian_rag.metrics.exporter

Renderers over :class:`~meridian_rag.metrics.collector.RagMetricsCollector`
snapshots: the Prometheus text exposition format for scrapers and a short,
human-readable summary for dashboards and CLIs.

Functions
---------
render_prometheus
    Render collector aggregates as Prometheus text (format 0.0.4).
summarize
    Condensed indexing, retrieval and cache overview with formatted values.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from meridian_rag.metrics.collector import RagMetricsCollector

logger = logging.getLogger(__name__)

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

# (metric name, help text, type, section, key)
_GLOBAL_METRICS = (
    ("rag_projects_indexed_total", "Projects with a completed index in the window", "counter", "indexing", "total_projects_indexed"),
    ("rag_chunks_indexed_total", "Code chunks indexed by completed runs", "counter", "indexing", "total_chunks_indexed"),
    ("rag_indexing_duration_ms", "Average indexing duration in milliseconds", "gauge", "indexing", "average_indexing_time_ms"),
    ("rag_indexing_cost_usd", "Total indexing cost in USD", "counter", "indexing", "indexing_cost"),
    ("rag_indexing_success_rate", "Share of indexing runs that completed (0-1)", "gauge", "indexing", "indexing_success_rate"),
    ("rag_indexing_failures_total", "Failed indexing runs", "counter", "indexing", "failed_indexings"),
    ("rag_retrievals_total", "Retrieval operations", "counter", "retrieval", "total_retrievals"),
    ("rag_retrieval_duration_ms", "Average retrieval duration in milliseconds", "gauge", "retrieval", "average_retrieval_time_ms"),
    ("rag_retrieval_relevance_score", "Average relevance score of retrieved results (0-1)", "gauge", "retrieval", "average_relevance_score"),
    ("rag_retrieval_results_per_query", "Average number of results per query", "gauge", "retrieval", "average_results_per_query"),
    ("rag_reranking_rate", "Share of retrievals that were reranked (0-1)", "gauge", "retrieval", "reranking_rate"),
    ("rag_retrieval_duration_p50_ms", "P50 retrieval duration in milliseconds", "gauge", "performance", "p50_retrieval_time_ms"),
    ("rag_retrieval_duration_p95_ms", "P95 retrieval duration in milliseconds", "gauge", "performance", "p95_retrieval_time_ms"),
    ("rag_retrieval_duration_p99_ms", "P99 retrieval duration in milliseconds", "gauge", "performance", "p99_retrieval_time_ms"),
    ("rag_indexing_duration_p50_ms", "P50 indexing duration in milliseconds", "gauge", "performance", "p50_indexing_time_ms"),
    ("rag_indexing_duration_p95_ms", "P95 indexing duration in milliseconds", "gauge", "performance", "p95_indexing_time_ms"),
    ("rag_embedding_cost_usd", "Query embedding cost in USD", "counter", "cost", "total_embedding_cost"),
    ("rag_reranking_cost_usd", "Reranking cost in USD", "counter", "cost", "total_reranking_cost"),
    ("rag_cost_per_retrieval_usd", "Average cost per retrieval in USD", "gauge", "cost", "cost_per_retrieval"),
    ("rag_cost_per_index_usd", "Average cost per completed index in USD", "gauge", "cost", "cost_per_index"),
    ("rag_average_chunks_per_file", "Average number of chunks per indexed file", "gauge", "quality", "average_chunks_per_file"),
    ("rag_index_freshness_days", "Age of the newest completed index in days", "gauge", "quality", "index_freshness_days"),
    ("rag_vector_score", "Average vector similarity score (0-1)", "gauge", "quality", "average_vector_score"),
    ("rag_cache_hits_total", "Embedding cache hits", "counter", "cache", "hits"),
    ("rag_cache_misses_total", "Embedding cache misses", "counter", "cache", "misses"),
    ("rag_cache_hit_rate", "Embedding cache hit rate (0-1)", "gauge", "cache", "hit_rate"),
    ("rag_cache_hit_latency_ms", "Average cache hit latency in milliseconds", "gauge", "cache", "average_hit_latency_ms"),
    ("rag_cache_miss_latency_ms", "Average cache miss latency in milliseconds", "gauge", "cache", "average_miss_latency_ms"),
)

_COLLECTION_METRICS = (
    ("rag_vectorstore_vectors_total", "Vectors upserted into the collection", "gauge", "total_vectors"),
    ("rag_vectorstore_queries_total", "Searches against the collection", "counter", "queries"),
    ("rag_vectorstore_query_latency_ms", "Average search latency in milliseconds", "gauge", "average_query_latency_ms"),
)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    return f"{float(value):.6g}"


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _family(name: str, help_text: str, kind: str, samples: Iterable[str]) -> list[str]:
    return [f"# HELP {name} {help_text}", f"# TYPE {name} {kind}", *samples]


def render_prometheus(collector: RagMetricsCollector) -> str:
    """Render the collector's current aggregates as Prometheus text.

    Metrics with no value yet (e.g. index freshness before any completed run)
    are omitted. Vector-store metrics carry a ``collection`` label; each family
    is emitted once with one sample per collection.

    Parameters
    ----------
    collector : RagMetricsCollector
        Source of the snapshot.

    Returns
    -------
    str
        Newline-terminated exposition text.
    """
    snapshot = collector.get_metrics()
    lines: list[str] = []

    for name, help_text, kind, section, key in _GLOBAL_METRICS:
        value = snapshot[section].get(key)
        if value is None:
            continue
        lines.extend(_family(name, help_text, kind, [f"{name} {_format_value(value)}"]))

    collections = collector.get_vector_store_metrics()
    if collections:
        for name, help_text, kind, key in _COLLECTION_METRICS:
            samples = [
                f'{name}{{collection="{_escape_label(c["collection_name"])}"}} {_format_value(c[key])}'
                for c in collections
            ]
            lines.extend(_family(name, help_text, kind, samples))

    logger.debug("Rendered %d Prometheus lines", len(lines))
    return "\n".join(lines) + "\n"


def summarize(collector: RagMetricsCollector) -> dict[str, dict[str, Any]]:
    """Return a condensed overview with display-ready strings.

    Examples
    --------
    >>> summarize(RagMetricsCollector())["cache"]
    {'hit_rate': '0.0%', 'average_hit_latency': '0.0ms'}
    """
    snapshot = collector.get_metrics()
    indexing = snapshot["indexing"]
    retrieval = snapshot["retrieval"]
    cache = snapshot["cache"]

    return {
        "indexing": {
            "projects": indexing["total_projects_indexed"],
            "failed": indexing["failed_indexings"],
            "average_duration": f"{indexing['average_indexing_time_ms'] / 1000:.1f}s",
            "cost": f"${indexing['indexing_cost']:.4f}",
        },
        "retrieval": {
            "total": retrieval["total_retrievals"],
            "average_latency": f"{retrieval['average_retrieval_time_ms']:.0f}ms",
            "average_score": f"{retrieval['average_relevance_score'] * 100:.1f}%",
        },
        "cache": {
            "hit_rate": f"{cache['hit_rate'] * 100:.1f}%",
            "average_hit_latency": f"{cache['average_hit_latency_ms']:.1f}ms",
        },
    }


__all__ = ["PROMETHEUS_CONTENT_TYPE", "render_prometheus", "summarize"]
