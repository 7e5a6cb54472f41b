"""meridian_rag.metrics

In-process RAG metrics collection.

Modules
-------
collector
    Event sink and aggregator shared by indexers, retrievers and stores.
exporter
    Prometheus text and summary renderers over collector snapshots.
"""
from .collector import IndexingEvent, RagMetricsCollector, RerankEvent, RetrievalEvent, percentile
from .exporter import render_prometheus, summarize

__all__ = [
    "IndexingEvent",
    "RagMetricsCollector",
    "RerankEvent",
    "RetrievalEvent",
    "percentile",
    "render_prometheus",
    "summarize",
]
