from pathlib import Path
from typing import Any, List

import pytest
from llama_index.core.base.embeddings.base import BaseEmbedding

from meridian_rag.indexing.file_indexer import FileIndexer
from meridian_rag.indexing.incremental_indexer import IncrementalIndexer
from meridian_rag.indexing.repository_indexer import RepositoryIndexer
from meridian_rag.indexing.source import LocalDirectoryProvider
from meridian_rag.metrics.collector import RagMetricsCollector
from meridian_rag.retrieval.chunker import CodeChunker
from meridian_rag.retrieval.embedder import BaseEmbedder
from meridian_rag.retrieval.embedding_cache import EmbeddingCache, InMemoryCacheBackend
from meridian_rag.retrieval.retriever import SemanticRetriever
from meridian_rag.retrieval.vector_store import QdrantVectorStore
from meridian_rag.storage.database import Database
from meridian_rag.storage.stores import ChunkStore, IndexStore, RetrievalLogStore


# Each topic is one vector dimension; a text scores one unit per keyword occurrence.
TOPICS = [
    ("auth", "authentication", "jwt", "token", "login", "user", "session", "password"),
    ("css", "color", "margin", "padding", "font", "style"),
    ("sql", "database", "select", "table", "query"),
    ("sum", "add", "multiply", "number", "total"),
]
DIMENSIONS = len(TOPICS) + 1


def topic_vector(text: str) -> List[float]:
    lowered = (text or "").lower()
    vector = [float(sum(lowered.count(word) for word in words)) for words in TOPICS]
    # Small constant component keeps every vector non-zero.
    vector.append(0.05)
    return vector


class TopicEmbedding(BaseEmbedding):
    """Deterministic LlamaIndex embedding keyed on topic keywords."""

    def _get_query_embedding(self, query: str) -> List[float]:
        return topic_vector(query)

    async def _aget_query_embedding(self, query: str) -> List[float]:
        return topic_vector(query)

    def _get_text_embedding(self, text: str) -> List[float]:
        return topic_vector(text)

    async def _aget_text_embedding(self, text: str) -> List[float]:
        return topic_vector(text)


class FakeEmbedder(BaseEmbedder):
    """Embedder over :class:`TopicEmbedding` that counts provider calls."""

    def __init__(self, dimensions: int = DIMENSIONS):
        super().__init__("topic-test-embedding", dimensions, price_per_million_tokens=0.13)
        self._embedding = TopicEmbedding(model_name="topic-test-embedding")
        self.calls: list[str] = []

    def get_embedder(self):
        return self._embedding

    @classmethod
    def from_config_dict(cls, config, callback_manager=None):
        return cls(int(config.get("dimensions", DIMENSIONS)))

    async def generate_embedding(self, text: str) -> List[float]:
        self.calls.append(text)
        return await super().generate_embedding(text)


class FakeLLM:
    """Chat model stand-in returning a canned reply (or raising)."""

    def __init__(self, reply: Any = "", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    @property
    def model_name(self) -> str:
        return "fake-llm"

    async def acomplete(self, prompt: str, **kwargs) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


AUTH_TS = """import jwt from "jsonwebtoken";

export function verifyJwtToken(token: string) {
  // authentication: validate the user session token
  return jwt.verify(token, process.env.JWT_SECRET);
}

export class LoginService {
  login(user: string, password: string) {
    return createSession(user, password);
  }
}
"""

STYLE_CSS_JS = """export const buttonStyle = () => ({
  color: "red",
  margin: "4px",
  padding: "2px",
  font: "Inter",
});
"""

MATH_PY = """def add(a, b):
    return a + b


def total(numbers):
    return sum(numbers)
"""

DB_GO = """package db

func SelectUsers(table string) string {
    return "select * from " + table
}
"""


def write_repo(root: Path, files: dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def repo_files():
    return {
        "src/auth/jwt.ts": AUTH_TS,
        "src/ui/style.js": STYLE_CSS_JS,
        "lib/math_utils.py": MATH_PY,
        "db/query.go": DB_GO,
        "README.md": "# docs, not code\n",
        "node_modules/pkg/index.js": "export function ignored() { return 1; }\n",
    }


@pytest.fixture
def repo_dir(tmp_path, repo_files):
    return write_repo(tmp_path / "repo", repo_files)


@pytest.fixture
def provider(repo_dir):
    return LocalDirectoryProvider(repo_dir)


@pytest.fixture
def metrics():
    return RagMetricsCollector()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def cache(metrics):
    return EmbeddingCache(InMemoryCacheBackend(), metrics=metrics)


@pytest.fixture
async def vector_store(metrics):
    store = QdrantVectorStore(collection_name="test_chunks", location=":memory:", metrics=metrics)
    await store.ensure_collection(DIMENSIONS)
    yield store
    await store.close()


@pytest.fixture
async def database():
    db = Database("sqlite+aiosqlite://")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def index_store(database):
    return IndexStore(database)


@pytest.fixture
def chunk_store(database):
    return ChunkStore(database)


@pytest.fixture
def log_store(database):
    return RetrievalLogStore(database)


@pytest.fixture
def file_indexer(embedder, vector_store, chunk_store, cache):
    return FileIndexer(
        chunker=CodeChunker(),
        embedder=embedder,
        vector_store=vector_store,
        chunk_store=chunk_store,
        cache=cache,
    )


@pytest.fixture
def repository_indexer(provider, file_indexer, index_store, vector_store, metrics):
    return RepositoryIndexer(
        provider=provider,
        file_indexer=file_indexer,
        index_store=index_store,
        vector_store=vector_store,
        metrics=metrics,
        batch_size=2,
    )


@pytest.fixture
def incremental_indexer(provider, file_indexer, index_store, chunk_store, vector_store):
    return IncrementalIndexer(
        provider=provider,
        file_indexer=file_indexer,
        index_store=index_store,
        chunk_store=chunk_store,
        vector_store=vector_store,
    )


@pytest.fixture
def semantic_retriever(embedder, vector_store, index_store, cache, log_store, metrics):
    return SemanticRetriever(
        embedder=embedder,
        vector_store=vector_store,
        index_store=index_store,
        cache=cache,
        retrieval_log_store=log_store,
        metrics=metrics,
        score_threshold=0.3,
    )


@pytest.fixture
async def indexed_project(repository_indexer):
    """Index the sample repository for project ``proj-1`` and return the index id."""
    return await repository_indexer.index_repository("acme", "shop", "proj-1", commit_sha="abc123")
