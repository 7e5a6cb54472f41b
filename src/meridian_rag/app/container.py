"""meridian_rag.app.container

Composition root for Meridian.

This module is the single place where concrete implementations are wired
together from configuration (metrics, embedding cache, embedder, vector store,
relational stores, retrievers, reranker, query pipeline and indexers).
Components are constructed lazily and cached on first access to avoid
repeated expensive initialisation.

Notes
-----
- Keep this module importable with minimal side effects:
  - do not perform network calls at import time
  - do not read files at import time
  - construct expensive objects lazily (cached on first access)

- One :class:`RagMetricsCollector` and one :class:`EmbeddingCache` are shared
  by every component built from the same container.

Examples
--------
>>> from meridian_rag.config import GlobalConfig
>>> from meridian_rag.app.container import build_container
>>> cfg = GlobalConfig.load("config.yaml")
>>> c = build_container(cfg)
>>> await c.startup()
>>> result = await c.pipeline.run("where is the jwt validated?", "proj-1")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeridianContainer:
    """Holds the configured, cached runtime components for the application.

    Parameters
    ----------
    config : Any
        Loaded global configuration object (typically :class:`meridian_rag.config.GlobalConfig`).
    """

    config: Any

    @cached_property
    def metrics(self) -> Any:
        from meridian_rag.metrics.collector import RagMetricsCollector

        return RagMetricsCollector()

    @cached_property
    def token_counter(self) -> Any:
        """Return the token counter configured under ``tokenization``."""
        from meridian_rag.common.tokenisation import create_token_counter

        return create_token_counter(
            _as_mapping(getattr(self.config, "tokenization", {})),
            model_name=_as_mapping(self.config.embedder).get("model_name"),
        )

    @cached_property
    def embedding_cache(self) -> Any:
        from meridian_rag.retrieval.embedding_cache import create_embedding_cache

        return create_embedding_cache(_as_mapping(self.config.cache), metrics=self.metrics)

    @cached_property
    def embedder(self) -> Any:
        """Return the embeddings provider.

        Returns
        -------
        Any
            Configured :class:`meridian_rag.retrieval.embedder.BaseEmbedder`.
        """
        from meridian_rag.retrieval.embedder import create_embedder

        embedder = create_embedder(_as_mapping(self.config.embedder))
        embedder.token_counter = self.token_counter
        return embedder

    @cached_property
    def vector_store(self) -> Any:
        from meridian_rag.retrieval.vector_store import create_vector_store

        return create_vector_store(dict(_as_mapping(self.config.vector_store)), metrics=self.metrics)

    @cached_property
    def database(self) -> Any:
        from meridian_rag.storage.database import Database

        return Database.from_config_dict(_as_mapping(self.config.database))

    @cached_property
    def index_store(self) -> Any:
        from meridian_rag.storage.stores import IndexStore

        return IndexStore(self.database)

    @cached_property
    def chunk_store(self) -> Any:
        from meridian_rag.storage.stores import ChunkStore

        return ChunkStore(self.database)

    @cached_property
    def retrieval_log_store(self) -> Any:
        from meridian_rag.storage.stores import RetrievalLogStore

        return RetrievalLogStore(self.database)

    @cached_property
    def chunker(self) -> Any:
        from meridian_rag.retrieval.chunker import CodeChunker

        return CodeChunker.from_config_dict(_as_mapping(self.config.chunking))

    @cached_property
    def semantic_retriever(self) -> Any:
        from meridian_rag.retrieval.retriever import SemanticRetriever

        section = _as_mapping(self.config.retriever)
        return SemanticRetriever(
            embedder=self.embedder,
            vector_store=self.vector_store,
            index_store=self.index_store,
            cache=self.embedding_cache,
            retrieval_log_store=self.retrieval_log_store,
            metrics=self.metrics,
            score_threshold=float(section.get("score_threshold", 0.3)),
            top_k=int(section.get("top_k", 10)),
        )

    @cached_property
    def retriever(self) -> Any:
        """Return the configured retriever (``retriever.type``).

        Returns
        -------
        Any
            The semantic retriever, or a hybrid retriever wrapping it.
        """
        from meridian_rag.retrieval.retriever_factory import create, hybrid_kwargs

        section = _as_mapping(self.config.retriever)
        kind = str(section.get("type") or "semantic").lower()

        if kind == "hybrid":
            return create(
                kind=kind,
                semantic=self.semantic_retriever,
                top_k=section.get("top_k"),
                chunk_store=self.chunk_store,
                **hybrid_kwargs(_as_mapping(section.get("hybrid") or {})),
            )
        return create(kind=kind, semantic=self.semantic_retriever, top_k=section.get("top_k"))

    @cached_property
    def reranker(self) -> Any:
        """Return the configured reranker, or ``None`` when disabled."""
        from meridian_rag.retrieval.reranker import create_reranker

        return create_reranker(config=_as_mapping(self.config.reranker))

    @cached_property
    def pipeline(self) -> Any:
        from meridian_rag.pipelines.query_pipeline import QueryPipeline

        rerank_cfg = _as_mapping(self.config.reranker)
        return QueryPipeline(
            retriever=self.retriever,
            reranker=self.reranker,
            candidate_multiplier=int(rerank_cfg.get("candidate_multiplier", 2)),
            metrics=self.metrics,
            default_top_k=int(_as_mapping(self.config.retriever).get("top_k", 10)),
        )

    @cached_property
    def file_indexer(self) -> Any:
        from meridian_rag.indexing.file_indexer import FileIndexer

        return FileIndexer(
            chunker=self.chunker,
            embedder=self.embedder,
            vector_store=self.vector_store,
            chunk_store=self.chunk_store,
            cache=self.embedding_cache,
        )

    def repository_indexer(self, provider: Any) -> Any:
        """Return a repository indexer reading snapshots from ``provider``."""
        from meridian_rag.indexing.repository_indexer import RepositoryIndexer

        section = _as_mapping(self.config.indexing)
        return RepositoryIndexer(
            provider=provider,
            file_indexer=self.file_indexer,
            index_store=self.index_store,
            vector_store=self.vector_store,
            metrics=self.metrics,
            batch_size=int(section.get("batch_size", 10)),
            code_extensions=section.get("code_extensions") or (),
            excluded_dirs=section.get("excluded_dirs") or (),
        )

    def incremental_indexer(self, provider: Any) -> Any:
        """Return an incremental indexer reading changed files from ``provider``."""
        from meridian_rag.indexing.incremental_indexer import IncrementalIndexer

        section = _as_mapping(self.config.indexing)
        return IncrementalIndexer(
            provider=provider,
            file_indexer=self.file_indexer,
            index_store=self.index_store,
            chunk_store=self.chunk_store,
            vector_store=self.vector_store,
            code_extensions=section.get("code_extensions") or (),
            excluded_dirs=section.get("excluded_dirs") or (),
        )

    async def startup(self) -> None:
        """Create missing relational tables."""
        await self.database.create_all()

    async def aclose(self) -> None:
        """Release network clients that were created."""
        for name in ("embedding_cache", "vector_store"):
            component = self.__dict__.get(name)
            if component is not None:
                await component.close()
        if "database" in self.__dict__:
            await self.database.dispose()


def build_container(config: Any) -> MeridianContainer:
    """Create a :class:`~meridian_rag.app.container.MeridianContainer`.

    This function is intentionally small so it can serve as a single entry point
    for FastAPI startup hooks, CLI scripts, and tests.
    """
    return MeridianContainer(config=config)


def _as_mapping(obj: Any) -> Mapping[str, Any]:
    """Coerce an object into a mapping.

    Raises
    ------
    TypeError
        If ``obj`` cannot be interpreted as a mapping.
    """
    if isinstance(obj, Mapping):
        return obj

    if hasattr(obj, "__dict__"):
        return dict(vars(obj))

    raise TypeError(f"Expected mapping type but got {type(obj)}")


__all__ = ["MeridianContainer", "build_container"]
