import pytest

from meridian_rag.common.errors import NoCompletedIndexError
from meridian_rag.pipelines.query_pipeline import QueryPipeline
from meridian_rag.retrieval.reranker import LLMReranker, RerankUsage

from conftest import FakeLLM


class RecordingRetriever:
    def __init__(self, inner):
        self.inner = inner
        self.requested = []

    async def retrieve(self, query, project_id, top_k=None, filter=None):
        self.requested.append(top_k)
        return await self.inner.retrieve(query, project_id, top_k, filter)


async def test_without_reranker(semantic_retriever, indexed_project):
    retriever = RecordingRetriever(semantic_retriever)
    pipeline = QueryPipeline(retriever, default_top_k=3)

    result = await pipeline.run("user authentication", "proj-1")

    assert retriever.requested == [3]
    assert result.reranked is False
    assert result.rerank_time_ms is None
    assert 0 < len(result.results) <= 3
    assert result.candidates == len(result.results)


async def test_reranker_sees_widened_candidates(semantic_retriever, indexed_project, metrics):
    retriever = RecordingRetriever(semantic_retriever)
    llm = FakeLLM("1\n0")
    pipeline = QueryPipeline(retriever, LLMReranker(llm), candidate_multiplier=3, metrics=metrics)

    result = await pipeline.run("user login token", "proj-1", top_k=1)

    assert retriever.requested == [3]
    assert result.candidates == 2
    assert result.reranked is True
    assert len(result.results) == 1
    assert llm.prompts
    assert result.rerank_time_ms is not None
    assert metrics.get_metrics()["retrieval"]["average_rerank_time_ms"] > 0


class ReversingReranker:
    """Duck-typed reranker; not a BaseReranker subclass."""

    async def rerank(self, query, results, top_k=5):
        reranked, _ = await self.rerank_with_usage(query, results, top_k)
        return reranked

    async def rerank_with_usage(self, query, results, top_k=5):
        return list(reversed(results))[:top_k], RerankUsage(time_ms=2.5, cost=0.001, applied=True)


async def test_any_reranker_implementation_is_accepted(semantic_retriever, indexed_project, metrics):
    candidates = await semantic_retriever.retrieve("user login token", "proj-1", top_k=2)
    pipeline = QueryPipeline(semantic_retriever, ReversingReranker(), metrics=metrics)

    result = await pipeline.run("user login token", "proj-1", top_k=1)

    assert result.reranked is True
    assert [r.chunk_id for r in result.results] == [candidates[-1].chunk_id]
    assert result.rerank_time_ms == 2.5
    assert result.rerank_cost == 0.001
    assert metrics.get_metrics()["cost"]["total_reranking_cost"] == pytest.approx(0.001)


async def test_reranker_fallback_is_not_marked_reranked(semantic_retriever, indexed_project):
    pipeline = QueryPipeline(semantic_retriever, LLMReranker(FakeLLM(error=TimeoutError())))

    result = await pipeline.run("user login token", "proj-1", top_k=1)

    assert result.reranked is False
    assert len(result.results) == 1


async def test_errors_propagate(semantic_retriever):
    with pytest.raises(NoCompletedIndexError):
        await QueryPipeline(semantic_retriever)("anything", "nobody")


def test_candidate_multiplier_validated(semantic_retriever):
    with pytest.raises(ValueError):
        QueryPipeline(semantic_retriever, candidate_multiplier=0)
