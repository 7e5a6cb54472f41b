"""meridian_rag

Meridian code-search RAG package.

This package contains the building blocks for retrieval over source-code
repositories: structure-aware chunking, cached embeddings, a Qdrant-backed
vector store, versioned index snapshots, semantic and hybrid retrieval, and
LLM reranking.

Attributes
----------
__version__ : str
    Package version string. Defaults to ``"0.0.0-dev"`` when package metadata is
    unavailable.

Modules
-------
config
    Global configuration loader and cached accessors.
app
    Application container, composition root and HTTP API.
pipelines
    Query-time orchestration (retrieval → reranking).
retrieval
    Chunking, embedding, caching, vector store, retrievers and rerankers.
indexing
    Full and incremental repository indexing.
storage
    Relational persistence for index snapshots, chunks and retrieval logs.
metrics
    In-process metrics collection.
generation
    LLM interfaces used by the reranker.
common
    Shared schemas, errors and tokenisation utilities.

Exports
-------
GlobalConfig
    Global configuration loader and accessor.
MeridianContainer
    Cached runtime component container for applications.
build_container
    Factory function to construct a configured :class:`~meridian_rag.app.container.MeridianContainer`.
QueryPipeline
    Retrieval with optional reranking.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("meridian-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .app.container import MeridianContainer, build_container
from .pipelines.query_pipeline import QueryPipeline

__all__ = [
    "__version__",
    "GlobalConfig",
    "MeridianContainer",
    "build_container",
    "QueryPipeline",
]
