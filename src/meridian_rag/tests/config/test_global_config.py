import pytest

from meridian_rag.config import GlobalConfig
from meridian_rag.config.global_config import DEFAULT_CODE_EXTENSIONS


def test_defaults_without_file():
    cfg = GlobalConfig({})

    assert cfg.embedder["dimensions"] == 3072
    assert cfg.vector_store["collection_name"] == "codebase_embeddings"
    assert cfg.cache["backend"] == "memory"
    assert cfg.chunking == {"max_chunk_size": 1500, "overlap": 200}
    assert cfg.indexing["code_extensions"] == DEFAULT_CODE_EXTENSIONS
    assert cfg.retriever["type"] == "semantic"
    assert cfg.retriever["hybrid"]["semantic_weight"] == 0.7
    assert cfg.reranker["enabled"] is False
    assert cfg.tokenization["type"] == "heuristic"


def test_partial_sections_merge_over_defaults():
    cfg = GlobalConfig({"retriever": {"type": "hybrid", "hybrid": {"semantic_weight": 0.5, "keyword_weight": 0.5}}})

    assert cfg.retriever["type"] == "hybrid"
    assert cfg.retriever["top_k"] == 10
    assert cfg.retriever["hybrid"]["keyword_weight"] == 0.5
    assert cfg.retriever["hybrid"]["min_keyword_length"] == 3


def test_unbalanced_hybrid_weights_warn():
    cfg = GlobalConfig({"retriever": {"hybrid": {"keyword_weight": 0.5}}})

    with pytest.warns(UserWarning, match="sum to 1.200"):
        assert cfg.retriever["hybrid"]["semantic_weight"] == 0.7


def test_load_expands_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_QDRANT_HOST", "qdrant.internal")
    path = tmp_path / "config.yaml"
    path.write_text(
        "vector_store:\n"
        "  host: ${TEST_QDRANT_HOST}\n"
        "  collection_name: code\n"
        "chunking:\n"
        "  max_chunk_size: 800\n"
    )

    cfg = GlobalConfig.load(path)

    assert cfg.config_path == path.resolve()
    assert cfg.vector_store["host"] == "qdrant.internal"
    assert cfg.vector_store["port"] == 6333
    assert cfg.chunking["max_chunk_size"] == 800
    assert cfg.chunking["overlap"] == 200


def test_empty_file_loads(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert GlobalConfig.load(path).raw == {}


def test_score_threshold_from_environment(monkeypatch):
    monkeypatch.setenv("RAG_SCORE_THRESHOLD", "0.55")
    assert GlobalConfig({}).retriever["score_threshold"] == 0.55
    assert GlobalConfig({"retriever": {"score_threshold": 0.1}}).retriever["score_threshold"] == 0.1


@pytest.mark.parametrize(
    "raw, section",
    [
        ({"chunking": {"max_chunk_size": 0}}, "chunking"),
        ({"chunking": {"overlap": -1}}, "chunking"),
        ({"indexing": {"batch_size": 0}}, "indexing"),
        ({"vector_store": {"collection_name": " "}}, "vector_store"),
    ],
)
def test_invalid_values(raw, section):
    with pytest.raises(ValueError):
        getattr(GlobalConfig(raw), section)


def test_non_mapping_section():
    with pytest.raises(TypeError):
        GlobalConfig({"cache": ["redis"]}).cache
