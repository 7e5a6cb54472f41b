import pytest
from llama_index.core.callbacks import CallbackManager

from meridian_rag.common.tokenisation import HeuristicTokenCounter
from meridian_rag.retrieval.embedder import (
    DEFAULT_PRICE_PER_MILLION,
    OpenAILikeEmbedder,
    _normalize_embedder_kind,
    create_embedder,
    lookup_price_per_million,
)

from conftest import FakeEmbedder, topic_vector


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("OpenAILike", "openai_like"),
        ("openai-like", "openai_like"),
        ("open ai like", "openai_like"),
        ("HuggingFace", "hugging_face"),
        ("", ""),
    ],
)
def test_normalize_embedder_kind(raw, expected):
    assert _normalize_embedder_kind(raw) == expected


def test_lookup_price_known_and_unknown():
    assert lookup_price_per_million("mystery-model") == DEFAULT_PRICE_PER_MILLION
    assert lookup_price_per_million("openai/text-embedding-3-small") < DEFAULT_PRICE_PER_MILLION


async def test_generate_embedding_returns_floats(embedder):
    vector = await embedder.generate_embedding("jwt login token")
    assert vector == topic_vector("jwt login token")
    assert len(vector) == embedder.dimensions
    assert all(isinstance(x, float) for x in vector)


async def test_generate_embeddings_preserves_order_across_batches():
    embedder = FakeEmbedder()
    embedder.max_batch_size = 2
    texts = ["css color", "sql table", "jwt", "sum total", "padding"]

    vectors = await embedder.generate_embeddings(texts)

    assert vectors == [topic_vector(t) for t in texts]


def test_estimate_tokens_and_cost(embedder):
    assert embedder.estimate_tokens("") == 0
    assert embedder.estimate_tokens("abcde") == 2
    assert embedder.estimate_cost(1_000_000) == pytest.approx(0.13)
    assert embedder.estimate_cost(-5) == 0.0


def test_token_counter_overrides_estimate(embedder):
    embedder.token_counter = HeuristicTokenCounter(chars_per_token=1)
    assert embedder.estimate_tokens("abcde") == 5


def test_invalid_dimensions_rejected():
    with pytest.raises(ValueError):
        FakeEmbedder(dimensions=0)


def test_create_embedder_defaults_to_openai_like():
    embedder = create_embedder(
        {
            "model_name": "text-embedding-3-small",
            "api_base": "http://localhost:9999/v1",
            "api_key": "test-key",
            "dimensions": 8,
        }
    )
    assert isinstance(embedder, OpenAILikeEmbedder)
    assert embedder.dimensions == 8
    assert embedder.model_name == "text-embedding-3-small"


def test_callback_manager_reaches_llama_index_embedding():
    manager = CallbackManager([])
    embedder = create_embedder(
        {"model_name": "text-embedding-3-small", "api_base": "http://localhost:9999/v1", "api_key": "test-key"},
        callback_manager=manager,
    )
    assert embedder.get_embedder().callback_manager is manager


def test_create_embedder_rejects_unknown_kind():
    with pytest.raises(ValueError, match="Unknown embedder kind"):
        create_embedder({"type": "word2vec", "model_name": "x", "dimensions": 4})
    with pytest.raises(TypeError):
        create_embedder(["not", "a", "mapping"])
