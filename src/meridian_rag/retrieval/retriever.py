"""meridian_rag.retrieval.retriever

Retriever implementations for code search.

Both retrievers answer a query against the most recently COMPLETED index of a
project. The semantic retriever embeds the query (through the shared embedding
cache) and runs a scoped similarity search. The hybrid retriever adds a
keyword pass over the persisted chunk text and fuses the two score sets.

Classes
-------
QueryUsage
    Token, cost and cache accounting for one query embedding.
SemanticRetriever
    Vector-similarity retrieval with retrieval logging.
HybridRetriever
    Weighted fusion of semantic and keyword retrieval, one hit per file.

Functions
---------
extract_keywords
    Tokenise a query into lowercase keywords, dropping stop-words.
score_keyword_match
    Score chunk content against a keyword list, clamped to ``1.0``.
fuse_results
    Combine weighted semantic and keyword scores per chunk.
deduplicate_by_file_path
    Keep the best-scoring result per file, sorted by score.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, replace
from typing import Any, Iterable, Optional, Sequence

from meridian_rag.common.errors import NoCompletedIndexError
from meridian_rag.common.schemas import CodeIndex, RetrievalFilter, RetrievalResult
from meridian_rag.config.global_config import DEFAULT_STOP_WORDS
from meridian_rag.metrics.collector import RetrievalEvent
from meridian_rag.retrieval.embedding_cache import CachedEmbedder, EmbeddingCache
from meridian_rag.retrieval.vector_store import BaseVectorStore, SearchFilter, VectorSearchResult
from meridian_rag.storage.stores import ChunkStore, IndexStore, RetrievalLogStore, since_hours

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class QueryUsage:
    tokens: int = 0
    cost: float = 0.0
    cache_hit: bool = False


def _to_search_filter(index_id: str, filter: Optional[RetrievalFilter]) -> SearchFilter:
    if filter is None:
        return SearchFilter.for_index(index_id)
    return SearchFilter.for_index(
        index_id,
        language=filter.language,
        chunk_type=filter.chunk_type,
        file_paths=filter.file_paths,
    )


def _hit_to_result(hit: VectorSearchResult) -> RetrievalResult:
    payload = hit.payload
    return RetrievalResult(
        chunk_id=hit.id,
        file_path=payload.get("file_path", ""),
        content=payload.get("content", ""),
        score=hit.score,
        start_line=int(payload.get("start_line", 0)),
        end_line=int(payload.get("end_line", 0)),
        language=payload.get("language", "text"),
        chunk_type=payload.get("chunk_type", "module"),
        metadata=dict(payload.get("metadata") or {}),
        source="semantic",
    )


class _LoggingMixin:
    """Shared retrieval logging; failures are downgraded to warnings."""

    index_store: IndexStore
    retrieval_log_store: Optional[RetrievalLogStore]
    metrics: Any

    async def _log_retrieval(
            self,
            *,
            project_id: str,
            index: CodeIndex,
            query: str,
            method: str,
            results: Sequence[RetrievalResult],
            elapsed_ms: float,
            total_scanned: int,
            usage: QueryUsage,
        ) -> None:
        scores = [r.score for r in results]
        try:
            if self.retrieval_log_store is not None:
                await self.retrieval_log_store.add(
                    project_id=project_id,
                    codebase_index_id=index.id,
                    query=query,
                    method=method,
                    chunk_ids=[r.chunk_id for r in results],
                    scores=scores,
                    retrieval_time_ms=int(elapsed_ms),
                    total_chunks_scanned=total_scanned,
                    tokens_used=usage.tokens,
                    cost=usage.cost,
                )
            if self.metrics is not None:
                self.metrics.record_retrieval(
                    RetrievalEvent(
                        project_id=project_id,
                        query=query,
                        method=method,
                        results_count=len(results),
                        average_score=sum(scores) / len(scores) if scores else 0.0,
                        retrieval_time_ms=elapsed_ms,
                        cost=usage.cost,
                        cache_hit=usage.cache_hit,
                    )
                )
        except Exception:
            logger.warning("Failed to log %s retrieval for project %s", method, project_id, exc_info=True)

        try:
            await self.index_store.touch_last_used(index.id)
        except Exception:
            logger.warning("Failed to update last_used_at for index %s", index.id, exc_info=True)


class SemanticRetriever(_LoggingMixin):
    """Vector-similarity retrieval over the latest completed index.

    Parameters
    ----------
    embedder : BaseEmbedder
        Provider used to embed queries on a cache miss.
    vector_store : BaseVectorStore
        Store holding chunk vectors.
    index_store : IndexStore
        Index bookkeeping, used to resolve the queried snapshot.
    cache : EmbeddingCache or None, optional
        Shared embedding cache.
    retrieval_log_store : RetrievalLogStore or None, optional
        Destination for retrieval log rows.
    metrics : RagMetricsCollector or None, optional
        Metrics sink.
    score_threshold : float, optional
        Default minimum similarity. Defaults to ``0.3``.
    top_k : int, optional
        Default result count. Defaults to ``10``.
    """

    def __init__(
            self,
            *,
            embedder: Any,
            vector_store: BaseVectorStore,
            index_store: IndexStore,
            cache: Optional[EmbeddingCache] = None,
            retrieval_log_store: Optional[RetrievalLogStore] = None,
            metrics: Any = None,
            score_threshold: float = 0.3,
            top_k: int = 10,
        ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.index_store = index_store
        self.cached_embedder = CachedEmbedder(embedder, cache)
        self.retrieval_log_store = retrieval_log_store
        self.metrics = metrics
        self.score_threshold = float(score_threshold)
        self.top_k = int(top_k)

    async def resolve_index(self, project_id: str) -> CodeIndex:
        """Return the most recently completed index of ``project_id``.

        Raises
        ------
        NoCompletedIndexError
            If the project has no COMPLETED index.
        """
        index = await self.index_store.latest_completed(project_id)
        if index is None:
            raise NoCompletedIndexError(project_id)
        return index

    async def embed_query(self, query: str) -> tuple[list[float], QueryUsage]:
        vector, hit = await self.cached_embedder.embed(query)
        if hit:
            return vector, QueryUsage(cache_hit=True)
        tokens = self.embedder.estimate_tokens(query)
        return vector, QueryUsage(tokens=tokens, cost=self.embedder.estimate_cost(tokens))

    async def search(
            self,
            query: str,
            index: CodeIndex,
            top_k: int,
            filter: Optional[RetrievalFilter] = None,
            score_threshold: Optional[float] = None,
        ) -> tuple[list[RetrievalResult], QueryUsage]:
        """Embed ``query`` and search one index without logging."""
        vector, usage = await self.embed_query(query)
        threshold = self.score_threshold if score_threshold is None else float(score_threshold)
        hits = await self.vector_store.search(
            vector,
            limit=top_k,
            filter=_to_search_filter(index.id, filter),
            score_threshold=threshold,
        )
        return [_hit_to_result(h) for h in hits], usage

    async def retrieve(
            self,
            query: str,
            project_id: str,
            top_k: Optional[int] = None,
            filter: Optional[RetrievalFilter] = None,
            score_threshold: Optional[float] = None,
        ) -> list[RetrievalResult]:
        """Retrieve the chunks most similar to ``query``.

        Parameters
        ----------
        query : str
            Natural-language query.
        project_id : str
            Project whose latest completed index is searched.
        top_k : int or None, optional
            Maximum number of results; the instance default when ``None``.
        filter : RetrievalFilter or None, optional
            Language, chunk type and file path constraints.
        score_threshold : float or None, optional
            Minimum similarity; the instance default when ``None``.

        Returns
        -------
        list[RetrievalResult]
            Hits sorted by descending score. May be empty.

        Raises
        ------
        NoCompletedIndexError
            If the project has no COMPLETED index.
        """
        started = time.perf_counter()
        index = await self.resolve_index(project_id)
        k = self.top_k if top_k is None else int(top_k)
        results, usage = await self.search(query, index, k, filter, score_threshold)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        logger.info(
            "Semantic retrieval for project %s returned %d results in %.1fms",
            project_id, len(results), elapsed_ms,
        )
        await self._log_retrieval(
            project_id=project_id,
            index=index,
            query=query,
            method="semantic",
            results=results,
            elapsed_ms=elapsed_ms,
            total_scanned=index.total_chunks,
            usage=usage,
        )
        return results

    async def retrieve_multiple(
            self,
            queries: Sequence[str],
            project_id: str,
            top_k_per_query: int = 5,
            filter: Optional[RetrievalFilter] = None,
        ) -> list[RetrievalResult]:
        """Union of independent retrievals, one hit per chunk, by descending score."""
        batches = await asyncio.gather(
            *(self.retrieve(q, project_id, top_k_per_query, filter) for q in queries)
        )
        seen: dict[str, RetrievalResult] = {}
        for batch in batches:
            for result in batch:
                seen.setdefault(result.chunk_id, result)
        return sorted(seen.values(), key=lambda r: r.score, reverse=True)

    async def get_stats(self, project_id: str, hours: float = 24) -> dict[str, float]:
        """Aggregate this project's semantic retrievals over the last ``hours``."""
        if self.retrieval_log_store is None:
            raise RuntimeError("Retrieval statistics require a retrieval log store.")
        return await self.retrieval_log_store.stats(project_id, method="semantic", since=since_hours(hours))


# ----------------- Keyword helpers -----------------

def extract_keywords(
        query: str,
        *,
        min_length: int = 3,
        stop_words: Iterable[str] = DEFAULT_STOP_WORDS,
    ) -> list[str]:
    """Lowercase, split on whitespace, strip non-alphanumerics and drop
    stop-words and words shorter than ``min_length``."""
    stop = set(stop_words)
    keywords: list[str] = []
    for word in query.lower().split():
        cleaned = _NON_ALNUM.sub("", word)
        if len(cleaned) >= min_length and cleaned not in stop:
            keywords.append(cleaned)
    return keywords


def score_keyword_match(
        content: str,
        keywords: Sequence[str],
        *,
        occurrence_weight: float = 0.1,
        whole_word_bonus: float = 0.2,
    ) -> float:
    """Score ``content`` against ``keywords``.

    Each keyword contributes ``occurrences * occurrence_weight`` plus
    ``whole_word_bonus`` when it also appears as a whole word. The total is
    clamped to ``1.0``.
    """
    text = content.lower()
    score = 0.0
    for keyword in keywords:
        occurrences = text.count(keyword)
        if not occurrences:
            continue
        score += occurrences * occurrence_weight
        if re.search(rf"\b{re.escape(keyword)}\b", text):
            score += whole_word_bonus
    return min(score, 1.0)


def fuse_results(
        semantic: Sequence[RetrievalResult],
        keyword: Sequence[RetrievalResult],
        semantic_weight: float,
        keyword_weight: float,
    ) -> list[RetrievalResult]:
    """Combine raw scores as ``s * semantic_weight + k * keyword_weight``.

    Chunks present in only one set receive only that set's contribution.
    Each weight is applied exactly once.
    """
    merged: dict[str, RetrievalResult] = {}
    for result in semantic:
        merged[result.chunk_id] = replace(
            result,
            score=result.score * semantic_weight,
            source="semantic",
            semantic_score=result.score,
        )
    for result in keyword:
        existing = merged.get(result.chunk_id)
        if existing is not None:
            existing.score += result.score * keyword_weight
            existing.keyword_score = result.score
            existing.source = "hybrid"
        else:
            merged[result.chunk_id] = replace(
                result,
                score=result.score * keyword_weight,
                source="keyword",
                keyword_score=result.score,
            )
    return sorted(merged.values(), key=lambda r: r.score, reverse=True)


def deduplicate_by_file_path(results: Iterable[RetrievalResult]) -> list[RetrievalResult]:
    """Keep the highest-scoring result per file, sorted by descending score."""
    best: dict[str, RetrievalResult] = {}
    for result in results:
        existing = best.get(result.file_path)
        if existing is None or result.score > existing.score:
            best[result.file_path] = result
    return sorted(best.values(), key=lambda r: r.score, reverse=True)


class HybridRetriever(_LoggingMixin):
    """Hybrid retriever combining vector similarity and keyword matching.

    Parameters
    ----------
    semantic : SemanticRetriever
        Provides index resolution and the semantic pass.
    chunk_store : ChunkStore
        Persisted chunk text searched by the keyword pass.
    semantic_weight, keyword_weight : float, optional
        Fusion weights. Default ``0.7`` and ``0.3``.
    min_keyword_length : int, optional
        Shorter query words are ignored. Defaults to ``3``.
    occurrence_weight, whole_word_bonus : float, optional
        Keyword scoring constants. Default ``0.1`` and ``0.2``.
    stop_words : Iterable[str], optional
        Words never used as keywords.
    """

    def __init__(
            self,
            *,
            semantic: SemanticRetriever,
            chunk_store: ChunkStore,
            semantic_weight: float = 0.7,
            keyword_weight: float = 0.3,
            min_keyword_length: int = 3,
            occurrence_weight: float = 0.1,
            whole_word_bonus: float = 0.2,
            stop_words: Iterable[str] = DEFAULT_STOP_WORDS,
            top_k: Optional[int] = None,
        ):
        self.semantic = semantic
        self.chunk_store = chunk_store
        self.semantic_weight = float(semantic_weight)
        self.keyword_weight = float(keyword_weight)
        self.min_keyword_length = int(min_keyword_length)
        self.occurrence_weight = float(occurrence_weight)
        self.whole_word_bonus = float(whole_word_bonus)
        self.stop_words = frozenset(stop_words)
        self.top_k = semantic.top_k if top_k is None else int(top_k)
        self.index_store = semantic.index_store
        self.retrieval_log_store = semantic.retrieval_log_store
        self.metrics = semantic.metrics

    async def keyword_search(
            self,
            index_id: str,
            keywords: Sequence[str],
            limit: int,
            filter: Optional[RetrievalFilter] = None,
        ) -> list[RetrievalResult]:
        """Score up to ``2 * limit`` keyword candidates and keep the best ``limit``."""
        if not keywords:
            return []
        rows = await self.chunk_store.search_keywords(index_id, keywords, filter=filter, limit=limit * 2)
        scored: list[RetrievalResult] = []
        for row in rows:
            score = score_keyword_match(
                row.content,
                keywords,
                occurrence_weight=self.occurrence_weight,
                whole_word_bonus=self.whole_word_bonus,
            )
            if score <= 0:
                continue
            scored.append(
                RetrievalResult(
                    chunk_id=row.id,
                    file_path=row.file_path,
                    content=row.content,
                    score=score,
                    start_line=row.start_line,
                    end_line=row.end_line,
                    language=row.language,
                    chunk_type=row.chunk_type,
                    metadata=dict(row.chunk_metadata or {}),
                    source="keyword",
                )
            )
        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:limit]

    async def retrieve(
            self,
            query: str,
            project_id: str,
            top_k: Optional[int] = None,
            filter: Optional[RetrievalFilter] = None,
        ) -> list[RetrievalResult]:
        """Retrieve with fused semantic and keyword scores.

        Returns
        -------
        list[RetrievalResult]
            At most ``top_k`` results, one per file, by descending fused score.

        Raises
        ------
        NoCompletedIndexError
            If the project has no COMPLETED index.
        """
        started = time.perf_counter()
        k = self.top_k if top_k is None else int(top_k)
        index = await self.semantic.resolve_index(project_id)

        semantic_results, usage = await self.semantic.search(query, index, k * 2, filter)
        keywords = extract_keywords(query, min_length=self.min_keyword_length, stop_words=self.stop_words)
        keyword_results = await self.keyword_search(index.id, keywords, k, filter)

        merged = fuse_results(semantic_results, keyword_results, self.semantic_weight, self.keyword_weight)
        results = deduplicate_by_file_path(merged)[:k]
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        logger.info(
            "Hybrid retrieval for project %s: %d semantic, %d keyword (%s), %d final in %.1fms",
            project_id, len(semantic_results), len(keyword_results), ",".join(keywords) or "-",
            len(results), elapsed_ms,
        )
        await self._log_retrieval(
            project_id=project_id,
            index=index,
            query=query,
            method="hybrid",
            results=results,
            elapsed_ms=elapsed_ms,
            total_scanned=len(semantic_results) + len(keyword_results),
            usage=usage,
        )
        return results


__all__ = [
    "HybridRetriever",
    "QueryUsage",
    "SemanticRetriever",
    "deduplicate_by_file_path",
    "extract_keywords",
    "fuse_results",
    "score_keyword_match",
]
