import pytest

from meridian_rag.common.errors import NoCompletedIndexError
from meridian_rag.common.schemas import RetrievalFilter
from meridian_rag.retrieval.retriever import HybridRetriever
from meridian_rag.retrieval.retriever_factory import create, hybrid_kwargs


@pytest.fixture
def hybrid(semantic_retriever, chunk_store):
    return HybridRetriever(semantic=semantic_retriever, chunk_store=chunk_store)


async def test_hybrid_without_completed_index(hybrid):
    with pytest.raises(NoCompletedIndexError):
        await hybrid.retrieve("user authentication", "nobody")


async def test_fused_ranking_one_result_per_file(hybrid, indexed_project):
    results = await hybrid.retrieve("user authentication", "proj-1", top_k=5)

    paths = [r.file_path for r in results]
    assert paths[0] == "src/auth/jwt.ts"
    assert len(paths) == len(set(paths))
    assert "src/ui/style.js" not in paths

    top = results[0]
    assert top.source == "hybrid"
    assert top.score == pytest.approx(top.semantic_score * 0.7 + top.keyword_score * 0.3)


async def test_keyword_only_hits_are_included(hybrid, indexed_project):
    # "selectusers" only matches "user" as a substring and is below the
    # semantic threshold, so it can only come from the keyword pass.
    results = await hybrid.retrieve("user authentication", "proj-1", top_k=5)
    go = [r for r in results if r.file_path == "db/query.go"]

    assert go and go[0].source == "keyword"
    assert go[0].semantic_score is None


async def test_top_k_truncates(hybrid, indexed_project):
    results = await hybrid.retrieve("user authentication", "proj-1", top_k=1)
    assert len(results) == 1


async def test_keyword_search_scores_and_limits(hybrid, indexed_project):
    rows = await hybrid.keyword_search(indexed_project, ["user"], limit=2)

    assert 0 < len(rows) <= 2
    assert all(r.source == "keyword" for r in rows)
    assert all(0 < r.score <= 1.0 for r in rows)
    assert await hybrid.keyword_search(indexed_project, [], limit=5) == []


async def test_keyword_search_respects_language_filter(hybrid, indexed_project):
    rows = await hybrid.keyword_search(
        indexed_project, ["user"], limit=10, filter=RetrievalFilter(language="go")
    )
    assert [r.file_path for r in rows] == ["db/query.go"]


async def test_hybrid_retrieval_is_logged(hybrid, indexed_project, log_store):
    await hybrid.retrieve("user authentication", "proj-1")

    from meridian_rag.storage.stores import since_hours

    stats = await log_store.stats("proj-1", method="hybrid", since=since_hours(1))
    assert stats["total_retrievals"] == 1


def test_factory_builds_both_kinds(semantic_retriever, chunk_store):
    assert create(kind="semantic", semantic=semantic_retriever, top_k=7) is semantic_retriever
    assert semantic_retriever.top_k == 7

    built = create(
        kind="hybrid",
        semantic=semantic_retriever,
        chunk_store=chunk_store,
        **hybrid_kwargs({"semantic_weight": 0.5, "keyword_weight": 0.5, "ignored": 1}),
    )
    assert isinstance(built, HybridRetriever)
    assert (built.semantic_weight, built.keyword_weight) == (0.5, 0.5)

    with pytest.raises(ValueError):
        create(kind="bm25", semantic=semantic_retriever)
