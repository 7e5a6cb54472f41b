import pytest

from meridian_rag.common.schemas import RetrievalResult
from meridian_rag.retrieval.reranker import LLMReranker, create_reranker

from conftest import FakeLLM


def _results(n):
    return [
        RetrievalResult(
            chunk_id=f"c{i}",
            file_path=f"src/f{i}.ts",
            content=f"function f{i}() {{ return {i}; }}",
            score=1.0 - i / 10,
            start_line=1,
            end_line=1,
            language="typescript",
            chunk_type="function",
        )
        for i in range(n)
    ]


async def test_empty_input():
    reranker = LLMReranker(FakeLLM("0"))
    reranked, usage = await reranker.rerank_with_usage("q", [], top_k=3)
    assert reranked == []
    assert usage.applied is False


async def test_within_top_k_is_returned_unchanged():
    llm = FakeLLM("1\n0")
    results = _results(3)

    reranked = await LLMReranker(llm).rerank("q", results, top_k=3)

    assert reranked == results
    assert llm.prompts == []


async def test_llm_order_is_applied():
    results = _results(5)
    reranker = LLMReranker(FakeLLM("3\n1\n4\n"))

    reranked, usage = await reranker.rerank_with_usage("q", results, top_k=2)

    assert [r.chunk_id for r in reranked] == ["c3", "c1"]
    assert usage.applied is True
    assert usage.cost > 0


async def test_invalid_indices_are_ignored():
    reranker = LLMReranker(FakeLLM("Sure!\n2\n99\n2\n-1\n0"))
    reranked = await reranker.rerank("q", _results(4), top_k=3)
    assert [r.chunk_id for r in reranked] == ["c2", "c0"]


@pytest.mark.parametrize("reply", ["", "no numbers here", "7\n8"])
async def test_unusable_reply_falls_back_to_original_order(reply):
    results = _results(5)
    reranked, usage = await LLMReranker(FakeLLM(reply)).rerank_with_usage("q", results, top_k=2)
    assert reranked == results[:2]
    assert usage.applied is False


async def test_llm_error_falls_back():
    results = _results(4)
    reranker = LLMReranker(FakeLLM(error=RuntimeError("rate limited")))
    assert await reranker.rerank("q", results, top_k=2) == results[:2]


def test_prompt_lists_candidates_with_previews():
    reranker = LLMReranker(FakeLLM(), preview_chars=10)
    results = _results(2)
    prompt = reranker.build_prompt("find f1", results)

    assert '"find f1"' in prompt
    assert "[0] File: src/f0.ts" in prompt
    assert "[1] File: src/f1.ts" in prompt
    assert "function f..." in prompt


def test_parse_rankings():
    assert LLMReranker.parse_rankings(" 2 \n0\n2\nfoo 1\n5", 3) == [2, 0]


def test_estimate_cost():
    cost = LLMReranker.estimate_cost(4_000_000, 400_000)
    assert cost == pytest.approx(0.25 + 0.125)


async def test_rerank_batch():
    reranker = LLMReranker(FakeLLM("1\n0"))
    batches = await reranker.rerank_batch([("a", _results(3)), ("b", _results(1))], top_k=1)
    assert [[r.chunk_id for r in b] for b in batches] == [["c1"], ["c0"]]


def test_create_reranker():
    assert create_reranker(config=None) is None
    assert create_reranker(config={"enabled": False}) is None

    reranker = create_reranker(
        config={"enabled": True, "max_tokens": 50, "llm": {"api_base": "http://localhost:1/v1"}}
    )
    assert isinstance(reranker, LLMReranker)
    assert reranker.max_tokens == 50

    with pytest.raises(ValueError):
        create_reranker(config={"enabled": True, "type": "cross_encoder"})
