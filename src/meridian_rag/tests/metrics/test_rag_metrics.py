from datetime import timedelta

import pytest

from meridian_rag.common.schemas import utcnow
from meridian_rag.metrics.collector import (
    IndexingEvent,
    RagMetricsCollector,
    RerankEvent,
    RetrievalEvent,
    percentile,
)


def _indexing(status="COMPLETED", project_id="p1", chunks=10, files=5, cost=0.01, duration_ms=100.0, age=timedelta()):
    started = utcnow() - age
    return IndexingEvent(
        index_id="i",
        project_id=project_id,
        status=status,
        total_files=files,
        total_chunks=chunks,
        duration_ms=duration_ms,
        cost=cost,
        tokens_used=100,
        started_at=started,
        completed_at=started,
    )


def _retrieval(time_ms=10.0, score=0.5, results=3, cost=0.0):
    return RetrievalEvent(
        project_id="p1",
        query="q",
        method="semantic",
        results_count=results,
        average_score=score,
        retrieval_time_ms=time_ms,
        cost=cost,
    )


def test_percentile_nearest_rank():
    values = list(range(1, 101))
    assert percentile(values, 0.50) == 50
    assert percentile(values, 0.95) == 95
    assert percentile(values, 0.99) == 99
    assert percentile([7.0], 0.99) == 7.0
    assert percentile([], 0.5) == 0.0


def test_empty_metrics():
    metrics = RagMetricsCollector().get_metrics()

    assert metrics["indexing"]["indexing_success_rate"] == 1.0
    assert metrics["retrieval"]["total_retrievals"] == 0
    assert metrics["cost"]["cost_per_retrieval"] == 0.0
    assert metrics["quality"]["index_freshness_days"] is None


def test_indexing_aggregates():
    collector = RagMetricsCollector()
    collector.record_indexing(_indexing(project_id="p1", chunks=10, files=5))
    collector.record_indexing(_indexing(project_id="p2", chunks=30, files=5, cost=0.03))
    collector.record_indexing(_indexing(status="FAILED", chunks=0, files=0, cost=0.0))

    block = collector.get_metrics()
    assert block["indexing"]["total_projects_indexed"] == 2
    assert block["indexing"]["total_chunks_indexed"] == 40
    assert block["indexing"]["indexing_success_rate"] == pytest.approx(2 / 3)
    assert block["indexing"]["failed_indexings"] == 1
    assert block["cost"]["cost_per_index"] == pytest.approx(0.02)
    assert block["quality"]["average_chunks_per_file"] == pytest.approx(4.0)


def test_events_outside_window_are_ignored():
    collector = RagMetricsCollector()
    collector.record_indexing(_indexing(age=timedelta(days=2)))
    assert collector.get_metrics()["indexing"]["total_chunks_indexed"] == 0


def test_retrieval_and_rerank_aggregates():
    collector = RagMetricsCollector()
    collector.record_retrieval(_retrieval(time_ms=10.0, score=0.4, cost=0.001))
    collector.record_retrieval(_retrieval(time_ms=30.0, score=0.8, cost=0.003))
    collector.record_rerank(RerankEvent(project_id="p1", input_results=10, output_results=5, rerank_time_ms=200.0, cost=0.002))

    m = collector.get_metrics()
    assert m["retrieval"]["total_retrievals"] == 2
    assert m["retrieval"]["average_retrieval_time_ms"] == pytest.approx(20.0)
    assert m["retrieval"]["average_relevance_score"] == pytest.approx(0.6)
    assert m["retrieval"]["reranking_rate"] == pytest.approx(0.5)
    assert m["retrieval"]["average_rerank_time_ms"] == pytest.approx(200.0)
    assert m["cost"]["total_embedding_cost"] == pytest.approx(0.004)
    assert m["cost"]["total_reranking_cost"] == pytest.approx(0.002)
    assert m["cost"]["cost_per_retrieval"] == pytest.approx(0.003)
    assert m["performance"]["p50_retrieval_time_ms"] == 10.0
    assert m["performance"]["p95_retrieval_time_ms"] == 30.0


def test_history_is_bounded():
    collector = RagMetricsCollector(history_size=3)
    for i in range(10):
        collector.record_retrieval(_retrieval(time_ms=float(i)))

    assert collector.get_metrics()["retrieval"]["total_retrievals"] == 3
    assert collector.get_metrics()["performance"]["p50_retrieval_time_ms"] == 8.0


def test_cache_metrics():
    collector = RagMetricsCollector()
    collector.record_cache_hit(1.0)
    collector.record_cache_hit(3.0)
    collector.record_cache_miss(10.0)

    cache = collector.get_cache_metrics()
    assert cache["hits"] == 2
    assert cache["hit_rate"] == pytest.approx(2 / 3)
    assert cache["average_hit_latency_ms"] == pytest.approx(2.0)
    assert cache["average_miss_latency_ms"] == pytest.approx(10.0)


def test_vector_store_metrics_and_reset():
    collector = RagMetricsCollector()
    collector.record_vector_store_operation("chunks", "upsert", 5.0, vector_count=4)
    collector.record_vector_store_operation("chunks", "search", 2.0, results_count=3)
    collector.record_vector_store_operation("chunks", "search", 4.0, results_count=1)
    collector.record_vector_store_operation("chunks", "delete", 1.0)

    (stats,) = collector.get_vector_store_metrics()
    assert stats["total_vectors"] == 4
    assert stats["queries"] == 2
    assert stats["deletes"] == 1
    assert stats["average_query_latency_ms"] == pytest.approx(3.0)
    assert stats["last_update"] is not None

    collector.reset()
    assert collector.get_vector_store_metrics() == []
