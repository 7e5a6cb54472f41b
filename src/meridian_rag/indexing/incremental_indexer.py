"""meridian_rag.indexing.incremental_indexer

Applying a set of changed files to a COMPLETED index snapshot.

Removed files lose their chunks and vectors. Modified files are deleted and
re-indexed at the new commit. Added files are indexed. Counters move by delta
and the snapshot advances to the new commit.

Classes
-------
IncrementalIndexer
    Updates an existing index with changed files only.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Optional

from meridian_rag.common.schemas import ChangedFiles, IncrementalUpdateResult, IndexStatus, utcnow
from meridian_rag.config.global_config import DEFAULT_CODE_EXTENSIONS, DEFAULT_EXCLUDED_DIRS
from meridian_rag.indexing.file_indexer import FileIndexer, FileIndexResult
from meridian_rag.indexing.source import ContentProvider, is_code_file, is_excluded
from meridian_rag.retrieval.vector_store import BaseVectorStore, SearchFilter
from meridian_rag.storage.stores import ChunkStore, IndexStore

logger = logging.getLogger(__name__)


class IncrementalIndexer:
    """Update an index with added, modified and removed files.

    Parameters
    ----------
    provider : ContentProvider
        Source of file contents at the new commit.
    file_indexer : FileIndexer
        Per-file chunk, embed and store step.
    index_store : IndexStore
        Index snapshot bookkeeping.
    chunk_store : ChunkStore
        Chunk rows, deleted per file.
    vector_store : BaseVectorStore
        Chunk vectors, deleted per file.
    code_extensions, excluded_dirs : Iterable[str], optional
        Changed paths failing these rules are skipped on add and modify.
    """

    def __init__(
            self,
            *,
            provider: ContentProvider,
            file_indexer: FileIndexer,
            index_store: IndexStore,
            chunk_store: ChunkStore,
            vector_store: BaseVectorStore,
            code_extensions: Iterable[str] = DEFAULT_CODE_EXTENSIONS,
            excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS,
        ):
        self.provider = provider
        self.file_indexer = file_indexer
        self.index_store = index_store
        self.chunk_store = chunk_store
        self.vector_store = vector_store
        self.code_extensions = list(code_extensions)
        self.excluded_dirs = list(excluded_dirs)

    def _indexable(self, path: str) -> bool:
        return is_code_file(path, self.code_extensions) and not is_excluded(path, self.excluded_dirs)

    async def _remove_file(self, index_id: str, path: str) -> int:
        await self.vector_store.delete_by_filter(
            SearchFilter(must={"codebase_index_id": index_id, "file_path": path})
        )
        return await self.chunk_store.delete_for_files(index_id, [path])

    async def _index_single_file(
            self,
            owner: str,
            repo: str,
            index_id: str,
            path: str,
            ref: Optional[str],
        ) -> Optional[FileIndexResult]:
        try:
            content = await self.provider.get_file_content(owner, repo, path, ref)
            return await self.file_indexer.index_file(index_id, path, content)
        except Exception:
            logger.warning("Failed to index file %s", path, exc_info=True)
            return None

    async def update_index(
            self,
            owner: str,
            repo: str,
            index_id: str,
            changed_files: ChangedFiles,
            commit_sha: str,
        ) -> IncrementalUpdateResult:
        """Apply ``changed_files`` to index ``index_id`` at ``commit_sha``.

        Returns
        -------
        IncrementalUpdateResult
            Chunk deltas, duration and embedding cost of this update.

        Raises
        ------
        IndexNotFoundError
            If ``index_id`` does not exist.
        InvalidStatusTransition
            If the index is not COMPLETED.
        Exception
            Any fatal error during the update; the index is marked FAILED.
        """
        started = time.perf_counter()
        chunks_added = 0
        chunks_modified = 0
        chunks_removed = 0
        tokens = 0
        cost = 0.0

        logger.info(
            "Starting incremental update of index %s at %s: +%d ~%d -%d files",
            index_id, commit_sha,
            len(changed_files.added), len(changed_files.modified), len(changed_files.removed),
        )
        index = await self.index_store.transition(index_id, IndexStatus.UPDATING)
        indexed = set(index.indexed_files)

        try:
            for path in changed_files.removed:
                chunks_removed += await self._remove_file(index_id, path)
                indexed.discard(path)
            if changed_files.removed:
                logger.info("Removed %d chunks of deleted files", chunks_removed)

            for path in changed_files.modified:
                if not self._indexable(path):
                    logger.debug("Skipping non-code file %s", path)
                    continue
                chunks_removed += await self._remove_file(index_id, path)
                indexed.discard(path)
                result = await self._index_single_file(owner, repo, index_id, path, commit_sha)
                if result is not None:
                    chunks_modified += result.chunks
                    tokens += result.tokens
                    cost += result.cost
                    indexed.add(path)

            for path in changed_files.added:
                if not self._indexable(path):
                    logger.debug("Skipping non-code file %s", path)
                    continue
                result = await self._index_single_file(owner, repo, index_id, path, commit_sha)
                if result is not None:
                    chunks_added += result.chunks
                    tokens += result.tokens
                    cost += result.cost
                    indexed.add(path)

            current = await self.index_store.get(index_id)
            await self.index_store.transition(
                index_id,
                IndexStatus.COMPLETED,
                commit_sha=commit_sha,
                total_chunks=current.total_chunks + chunks_added + chunks_modified - chunks_removed,
                total_files=len(indexed),
                indexed_files=sorted(indexed),
                total_tokens=current.total_tokens + tokens,
                cost=current.cost + cost,
                completed_at=utcnow(),
            )
        except Exception as exc:
            logger.exception("Incremental update failed for index %s", index_id)
            try:
                await self.index_store.transition(index_id, IndexStatus.FAILED, error=str(exc) or type(exc).__name__)
            except Exception:
                logger.warning("Could not mark index %s as FAILED", index_id, exc_info=True)
            raise

        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Incremental update of index %s completed: +%d ~%d -%d chunks in %.2fs, cost $%.6f",
            index_id, chunks_added, chunks_modified, chunks_removed, duration_ms / 1000, cost,
        )
        return IncrementalUpdateResult(
            index_id=index_id,
            chunks_added=chunks_added,
            chunks_modified=chunks_modified,
            chunks_removed=chunks_removed,
            duration_ms=duration_ms,
            cost=cost,
        )


__all__ = ["IncrementalIndexer"]
