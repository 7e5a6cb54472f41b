"""meridian_rag.retrieval.vector_store

Vector store interfaces and factories for the retrieval layer.

This module defines a small async interface over a vector-store backend and a
concrete implementation on :class:`qdrant_client.AsyncQdrantClient`. Chunks of
every index snapshot share one collection; each point carries its
``codebase_index_id`` in the payload and every search is scoped by it.

Classes
-------
VectorPoint
    A point to upsert: id, vector and payload.
VectorSearchResult
    One similarity hit: id, score and payload.
SearchFilter
    Backend-neutral exact-match filter (AND group plus optional OR group).
BaseVectorStore
    Abstract interface for vector store wrappers.
QdrantVectorStore
    Qdrant-backed implementation.

Functions
---------
create_vector_store
    Create a vector store implementation from a configuration mapping.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from qdrant_client import AsyncQdrantClient, models

logger = logging.getLogger(__name__)


@dataclass
class VectorPoint:
    id: str
    vector: list[float]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorSearchResult:
    id: str
    score: float
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchFilter:
    """Exact-match filter over point payloads.

    Attributes
    ----------
    must : dict[str, Any]
        Every ``key == value`` pair must hold.
    should : list[tuple[str, Any]]
        When non-empty, at least one ``key == value`` pair must hold.
    must_not : dict[str, Any]
        No ``key == value`` pair may hold.
    """
    must: Dict[str, Any] = field(default_factory=dict)
    should: list[tuple[str, Any]] = field(default_factory=list)
    must_not: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_index(
            cls,
            index_id: str,
            *,
            language: Optional[str] = None,
            chunk_type: Optional[str] = None,
            file_paths: Optional[Sequence[str]] = None,
        ) -> "SearchFilter":
        """Scope a filter to one index snapshot, plus optional constraints."""
        must: Dict[str, Any] = {"codebase_index_id": index_id}
        if language:
            must["language"] = language
        if chunk_type:
            must["chunk_type"] = getattr(chunk_type, "value", chunk_type)
        should = [("file_path", p) for p in (file_paths or [])]
        return cls(must=must, should=should)

    def to_qdrant(self) -> models.Filter:
        def _cond(key: str, value: Any) -> models.FieldCondition:
            return models.FieldCondition(key=key, match=models.MatchValue(value=value))

        return models.Filter(
            must=[_cond(k, v) for k, v in self.must.items()] or None,
            should=[_cond(k, v) for k, v in self.should] or None,
            must_not=[_cond(k, v) for k, v in self.must_not.items()] or None,
        )


class BaseVectorStore(ABC):
    """Abstract interface for vector store wrappers."""

    collection_name: str

    @abstractmethod
    async def ensure_collection(self, dimensions: int) -> None:
        """Create the collection if it does not exist yet."""

    @abstractmethod
    async def collection_exists(self) -> bool: ...

    @abstractmethod
    async def upsert(self, points: Sequence[VectorPoint]) -> None:
        """Insert or replace points by id."""

    @abstractmethod
    async def search(
            self,
            vector: Sequence[float],
            limit: int,
            filter: Optional[SearchFilter] = None,
            score_threshold: Optional[float] = None,
        ) -> list[VectorSearchResult]:
        """Return at most ``limit`` hits sorted by descending score."""

    @abstractmethod
    async def delete_by_filter(self, filter: SearchFilter) -> None: ...

    @abstractmethod
    async def delete_by_ids(self, ids: Sequence[str]) -> None: ...

    @abstractmethod
    async def get_point(self, point_id: str) -> Optional[VectorPoint]: ...

    @abstractmethod
    async def count(self, filter: Optional[SearchFilter] = None) -> int: ...

    @abstractmethod
    async def scroll(
            self,
            limit: int = 100,
            offset: Optional[str] = None,
            filter: Optional[SearchFilter] = None,
        ) -> tuple[list[VectorPoint], Optional[str]]: ...

    @abstractmethod
    async def delete_collection(self) -> None: ...

    async def close(self) -> None:
        return None


class QdrantVectorStore(BaseVectorStore):
    """Qdrant-backed vector store.

    Parameters
    ----------
    collection_name : str, optional
        Name of the Qdrant collection. Defaults to ``"codebase_embeddings"``.
    host : str, optional
        Qdrant host address. Defaults to ``"localhost"``.
    port : int, optional
        Qdrant port number. Defaults to ``6333``.
    api_key : str or None, optional
        Qdrant API key.
    location : str or None, optional
        Passed through to the client; ``":memory:"`` runs Qdrant in-process.
    client : AsyncQdrantClient or None, optional
        Pre-built client; overrides the connection parameters.
    indexing_threshold : int, optional
        Optimizer indexing threshold applied when creating the collection.
    metrics : RagMetricsCollector or None, optional
        Receives one event per operation with its latency.
    """

    def __init__(
            self,
            *,
            collection_name: str = "codebase_embeddings",
            host: str = "localhost",
            port: int = 6333,
            api_key: Optional[str] = None,
            location: Optional[str] = None,
            client: Optional[AsyncQdrantClient] = None,
            indexing_threshold: int = 10000,
            metrics: Any = None,
        ):
        if client is None:
            if location:
                client = AsyncQdrantClient(location=location)
            else:
                client = AsyncQdrantClient(host=host, port=int(port), api_key=api_key)
        self.client = client
        self.collection_name = collection_name
        self.indexing_threshold = int(indexing_threshold)
        self.metrics = metrics

    @classmethod
    def from_config_dict(cls, config: dict, *, metrics: Any = None) -> "QdrantVectorStore":
        """Create a QdrantVectorStore from a configuration mapping.

        Parameters
        ----------
        config : dict
            Keys: ``host``, ``port``, ``api_key``, ``location``,
            ``collection_name`` and ``indexing_threshold``; all optional.
        metrics : RagMetricsCollector or None, optional
            Metrics sink.

        Returns
        -------
        QdrantVectorStore
            Initialised store (no network calls are made yet).
        """
        return cls(
            collection_name=config.get("collection_name", "codebase_embeddings"),
            host=config.get("host", "localhost"),
            port=int(config.get("port", 6333)),
            api_key=config.get("api_key") or None,
            location=config.get("location"),
            indexing_threshold=int(config.get("indexing_threshold", 10000)),
            metrics=metrics,
        )

    def _record(self, operation: str, started: float, **kwargs) -> None:
        if self.metrics is None:
            return
        latency_ms = (time.perf_counter() - started) * 1000.0
        self.metrics.record_vector_store_operation(self.collection_name, operation, latency_ms, **kwargs)

    async def collection_exists(self) -> bool:
        return await self.client.collection_exists(self.collection_name)

    async def ensure_collection(self, dimensions: int) -> None:
        if await self.collection_exists():
            return
        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=models.VectorParams(size=int(dimensions), distance=models.Distance.COSINE),
            optimizers_config=models.OptimizersConfigDiff(indexing_threshold=self.indexing_threshold),
        )
        logger.info("Created Qdrant collection %s (%d dims)", self.collection_name, dimensions)

    async def upsert(self, points: Sequence[VectorPoint]) -> None:
        if not points:
            return
        started = time.perf_counter()
        await self.client.upsert(
            collection_name=self.collection_name,
            points=[models.PointStruct(id=p.id, vector=list(p.vector), payload=p.payload) for p in points],
            wait=True,
        )
        self._record("upsert", started, vector_count=len(points))

    async def search(
            self,
            vector: Sequence[float],
            limit: int,
            filter: Optional[SearchFilter] = None,
            score_threshold: Optional[float] = None,
        ) -> list[VectorSearchResult]:
        started = time.perf_counter()
        response = await self.client.query_points(
            collection_name=self.collection_name,
            query=list(vector),
            limit=int(limit),
            query_filter=filter.to_qdrant() if filter else None,
            score_threshold=score_threshold,
            with_payload=True,
        )
        hits = [
            VectorSearchResult(id=str(p.id), score=float(p.score), payload=dict(p.payload or {}))
            for p in response.points
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        self._record("search", started, results_count=len(hits))
        return hits

    async def delete_by_filter(self, filter: SearchFilter) -> None:
        started = time.perf_counter()
        await self.client.delete(
            collection_name=self.collection_name,
            points_selector=models.FilterSelector(filter=filter.to_qdrant()),
            wait=True,
        )
        self._record("delete", started)

    async def delete_by_ids(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        started = time.perf_counter()
        await self.client.delete(
            collection_name=self.collection_name,
            points_selector=models.PointIdsList(points=list(ids)),
            wait=True,
        )
        self._record("delete", started, vector_count=len(ids))

    async def get_point(self, point_id: str) -> Optional[VectorPoint]:
        records = await self.client.retrieve(
            collection_name=self.collection_name,
            ids=[point_id],
            with_payload=True,
            with_vectors=True,
        )
        if not records:
            return None
        record = records[0]
        return VectorPoint(id=str(record.id), vector=list(record.vector or []), payload=dict(record.payload or {}))

    async def count(self, filter: Optional[SearchFilter] = None) -> int:
        result = await self.client.count(
            collection_name=self.collection_name,
            count_filter=filter.to_qdrant() if filter else None,
            exact=True,
        )
        return int(result.count)

    async def scroll(
            self,
            limit: int = 100,
            offset: Optional[str] = None,
            filter: Optional[SearchFilter] = None,
        ) -> tuple[list[VectorPoint], Optional[str]]:
        records, next_offset = await self.client.scroll(
            collection_name=self.collection_name,
            scroll_filter=filter.to_qdrant() if filter else None,
            limit=int(limit),
            offset=offset,
            with_payload=True,
            with_vectors=False,
        )
        points = [VectorPoint(id=str(r.id), vector=[], payload=dict(r.payload or {})) for r in records]
        return points, None if next_offset is None else str(next_offset)

    async def delete_collection(self) -> None:
        await self.client.delete_collection(self.collection_name)
        logger.info("Deleted Qdrant collection %s", self.collection_name)

    async def close(self) -> None:
        await self.client.close()


def _get_vector_store_kind(cfg):
    for key in ("kind", "type", "provider", "backend", "impl"):
        val = cfg.get(key)
        if val is not None:
            return val
    return None

def _normalize_vector_store_kind(kind):
    """Normalise a vector store kind (defaults to ``"qdrant"`` when falsy)."""
    if not kind:
        return "qdrant"
    k = str(kind).lower()
    if k in {"qdrant", "qdrantvectorstore", "qdrant_vector_store"}:
        return "qdrant"
    return k

def create_vector_store(config: dict, *, metrics: Any = None) -> BaseVectorStore:
    """Create a vector store implementation from a configuration mapping.

    Raises
    ------
    ValueError
        If the requested backend kind is not supported.
    """
    kind = _normalize_vector_store_kind(_get_vector_store_kind(config))
    if kind == "qdrant":
        return QdrantVectorStore.from_config_dict(config, metrics=metrics)
    raise ValueError(f"Unknown vector store kind: {kind!r}")


__all__ = [
    "BaseVectorStore",
    "QdrantVectorStore",
    "SearchFilter",
    "VectorPoint",
    "VectorSearchResult",
    "create_vector_store",
]
