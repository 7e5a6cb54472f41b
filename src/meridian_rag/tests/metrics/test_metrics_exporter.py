from meridian_rag.common.schemas import utcnow
from meridian_rag.metrics.collector import IndexingEvent, RagMetricsCollector, RetrievalEvent
from meridian_rag.metrics.exporter import render_prometheus, summarize


def _completed(chunks=12, files=4, cost=0.002, duration_ms=2500.0):
    now = utcnow()
    return IndexingEvent(
        index_id="i1",
        project_id="p1",
        status="COMPLETED",
        total_files=files,
        total_chunks=chunks,
        duration_ms=duration_ms,
        cost=cost,
        tokens_used=100,
        started_at=now,
        completed_at=now,
    )


def _retrieval(time_ms=40.0, score=0.75):
    return RetrievalEvent(
        project_id="p1",
        query="q",
        method="semantic",
        results_count=3,
        average_score=score,
        retrieval_time_ms=time_ms,
    )


def test_empty_collector_renders_zeroes_and_skips_unknowns():
    text = render_prometheus(RagMetricsCollector())

    assert text.endswith("\n")
    assert "# TYPE rag_retrievals_total counter" in text
    assert "rag_retrievals_total 0\n" in text
    assert "rag_indexing_success_rate 1\n" in text
    assert "rag_index_freshness_days" not in text
    assert "rag_vectorstore" not in text


def test_recorded_events_are_exported():
    collector = RagMetricsCollector()
    collector.record_indexing(_completed())
    collector.record_retrieval(_retrieval())
    collector.record_cache_hit(2.0)
    collector.record_cache_miss(8.0)

    lines = render_prometheus(collector).splitlines()

    assert "rag_chunks_indexed_total 12" in lines
    assert "rag_indexing_cost_usd 0.002" in lines
    assert "rag_retrievals_total 1" in lines
    assert "rag_retrieval_duration_ms 40" in lines
    assert "rag_cache_hits_total 1" in lines
    assert "rag_cache_hit_rate 0.5" in lines
    assert any(line.startswith("rag_index_freshness_days ") for line in lines)


def test_vector_store_families_are_labelled_per_collection():
    collector = RagMetricsCollector()
    collector.record_vector_store_operation("code_chunks", "upsert", 5.0, vector_count=10)
    collector.record_vector_store_operation("code_chunks", "search", 4.0, results_count=3)
    collector.record_vector_store_operation('odd"name', "search", 2.0, results_count=1)

    text = render_prometheus(collector)

    assert text.count("# TYPE rag_vectorstore_queries_total counter") == 1
    assert 'rag_vectorstore_vectors_total{collection="code_chunks"} 10' in text
    assert 'rag_vectorstore_queries_total{collection="code_chunks"} 1' in text
    assert 'rag_vectorstore_query_latency_ms{collection="code_chunks"} 4' in text
    assert 'rag_vectorstore_queries_total{collection="odd\\"name"} 1' in text


def test_summary_formats_values():
    collector = RagMetricsCollector()
    collector.record_indexing(_completed())
    collector.record_retrieval(_retrieval(time_ms=40.4, score=0.756))
    collector.record_cache_hit(1.25)
    collector.record_cache_miss(3.0)

    summary = summarize(collector)

    assert summary["indexing"] == {"projects": 1, "failed": 0, "average_duration": "2.5s", "cost": "$0.0020"}
    assert summary["retrieval"] == {"total": 1, "average_latency": "40ms", "average_score": "75.6%"}
    assert summary["cache"] == {"hit_rate": "50.0%", "average_hit_latency": "1.2ms"}


def test_summary_of_empty_collector():
    summary = summarize(RagMetricsCollector())

    assert summary["retrieval"]["average_latency"] == "0ms"
    assert summary["cache"]["hit_rate"] == "0.0%"
