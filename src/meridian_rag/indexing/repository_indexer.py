"""meridian_rag.indexing.repository_indexer

Full indexing of one repository snapshot.

Classes
-------
RepositoryIndexer
    Creates an index snapshot, indexes every code file in concurrent batches
    and drives the snapshot through its lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Iterable, Optional

from meridian_rag.common.schemas import IndexStatus, utcnow
from meridian_rag.config.global_config import DEFAULT_CODE_EXTENSIONS, DEFAULT_EXCLUDED_DIRS
from meridian_rag.indexing.file_indexer import FileIndexer, FileIndexResult
from meridian_rag.indexing.source import ContentProvider, TreeEntry, is_code_file, is_excluded
from meridian_rag.metrics.collector import IndexingEvent
from meridian_rag.retrieval.vector_store import BaseVectorStore
from meridian_rag.storage.stores import IndexStore

logger = logging.getLogger(__name__)


class RepositoryIndexer:
    """Index a whole repository snapshot.

    Parameters
    ----------
    provider : ContentProvider
        Source of the snapshot listing and file contents.
    file_indexer : FileIndexer
        Per-file chunk, embed and store step.
    index_store : IndexStore
        Index snapshot bookkeeping.
    vector_store : BaseVectorStore
        Vector store; its collection is ensured before indexing.
    metrics : RagMetricsCollector or None, optional
        Receives one :class:`IndexingEvent` per run.
    batch_size : int, optional
        Number of files processed concurrently. Defaults to ``10``.
    code_extensions, excluded_dirs : Iterable[str], optional
        File selection rules.
    """

    def __init__(
            self,
            *,
            provider: ContentProvider,
            file_indexer: FileIndexer,
            index_store: IndexStore,
            vector_store: BaseVectorStore,
            metrics: Any = None,
            batch_size: int = 10,
            code_extensions: Iterable[str] = DEFAULT_CODE_EXTENSIONS,
            excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS,
        ):
        self.provider = provider
        self.file_indexer = file_indexer
        self.index_store = index_store
        self.vector_store = vector_store
        self.metrics = metrics
        self.batch_size = int(batch_size)
        if self.batch_size <= 0:
            raise ValueError("'batch_size' must be a positive integer.")
        self.code_extensions = list(code_extensions)
        self.excluded_dirs = list(excluded_dirs)

    @property
    def embedder(self) -> Any:
        return self.file_indexer.embedder

    def select_files(self, tree: Iterable[TreeEntry]) -> list[str]:
        return [
            entry.path
            for entry in tree
            if entry.type == "blob"
            and is_code_file(entry.path, self.code_extensions)
            and not is_excluded(entry.path, self.excluded_dirs)
        ]

    async def _process_file(
            self,
            owner: str,
            repo: str,
            index_id: str,
            path: str,
            ref: Optional[str],
        ) -> Optional[FileIndexResult]:
        try:
            content = await self.provider.get_file_content(owner, repo, path, ref)
        except Exception:
            logger.warning("Failed to fetch file %s", path, exc_info=True)
            return None

        try:
            return await self.file_indexer.index_file(index_id, path, content)
        except Exception:
            logger.error("Failed to process file %s", path, exc_info=True)
            return None

    async def index_repository(
            self,
            owner: str,
            repo: str,
            project_id: str,
            commit_sha: Optional[str] = None,
            branch: str = "main",
        ) -> str:
        """Index a repository snapshot and return the new index id.

        Parameters
        ----------
        owner, repo : str
            Repository coordinates passed to the content provider.
        project_id : str
            Project the index belongs to.
        commit_sha : str or None, optional
            Snapshot to index; ``"HEAD"`` is recorded when omitted.
        branch : str, optional
            Branch name recorded on the index. Defaults to ``"main"``.

        Returns
        -------
        str
            Id of the COMPLETED index.

        Raises
        ------
        Exception
            Any fatal error (collection setup, tree listing, bookkeeping). The
            index is marked FAILED and partial writes are kept.
        """
        started = time.perf_counter()
        started_at = utcnow()

        index = await self.index_store.create(
            project_id=project_id,
            commit_sha=commit_sha or "HEAD",
            branch=branch,
            embedding_model=self.embedder.model_name,
            embedding_dimensions=self.embedder.dimensions,
        )
        logger.info(
            "Starting repository indexing of %s/%s for project %s at %s (index %s)",
            owner, repo, project_id, commit_sha or "HEAD", index.id,
        )

        total_chunks = 0
        total_tokens = 0
        cost = 0.0
        indexed_files: list[str] = []

        try:
            await self.index_store.transition(index.id, IndexStatus.INDEXING)
            await self.vector_store.ensure_collection(self.embedder.dimensions)

            tree = await self.provider.get_repository_tree(owner, repo, commit_sha)
            code_files = self.select_files(tree)
            logger.info("Files to index: %d of %d entries", len(code_files), len(tree))

            n_batches = (len(code_files) + self.batch_size - 1) // self.batch_size
            for start in range(0, len(code_files), self.batch_size):
                batch = code_files[start:start + self.batch_size]
                logger.debug("Processing batch %d/%d (%d files)", start // self.batch_size + 1, n_batches, len(batch))

                results = await asyncio.gather(
                    *(self._process_file(owner, repo, index.id, path, commit_sha) for path in batch)
                )
                for result in results:
                    if result is None:
                        continue
                    indexed_files.append(result.file_path)
                    total_chunks += result.chunks
                    total_tokens += result.tokens
                    cost += result.cost

                await self.index_store.update(
                    index.id,
                    total_chunks=total_chunks,
                    total_files=len(indexed_files),
                    total_tokens=total_tokens,
                    cost=cost,
                )

            duration_ms = int((time.perf_counter() - started) * 1000)
            completed_at = utcnow()
            await self.index_store.transition(
                index.id,
                IndexStatus.COMPLETED,
                total_chunks=total_chunks,
                total_files=len(indexed_files),
                indexed_files=indexed_files,
                indexing_duration_ms=duration_ms,
                total_tokens=total_tokens,
                cost=cost,
                completed_at=completed_at,
            )
        except Exception as exc:
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.exception("Indexing failed for %s/%s (index %s)", owner, repo, index.id)
            try:
                await self.index_store.transition(
                    index.id,
                    IndexStatus.FAILED,
                    error=str(exc) or type(exc).__name__,
                    completed_at=utcnow(),
                )
            except Exception:
                logger.warning("Could not mark index %s as FAILED", index.id, exc_info=True)
            self._record(index.id, project_id, "FAILED", 0, 0, duration_ms, 0.0, 0, started_at)
            raise

        self._record(
            index.id, project_id, "COMPLETED", len(indexed_files), total_chunks,
            duration_ms, cost, total_tokens, started_at, completed_at,
        )
        logger.info(
            "Indexing completed for index %s: %d chunks from %d files in %.2fs, cost $%.6f",
            index.id, total_chunks, len(indexed_files), duration_ms / 1000, cost,
        )
        return index.id

    def _record(self, index_id, project_id, status, files, chunks, duration_ms, cost, tokens, started_at, completed_at=None):
        if self.metrics is None:
            return
        self.metrics.record_indexing(
            IndexingEvent(
                index_id=index_id,
                project_id=project_id,
                status=status,
                total_files=files,
                total_chunks=chunks,
                duration_ms=duration_ms,
                cost=cost,
                tokens_used=tokens,
                started_at=started_at,
                completed_at=completed_at or utcnow(),
            )
        )


__all__ = ["RepositoryIndexer"]
