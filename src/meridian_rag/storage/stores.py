"""meridian_rag.storage.stores

Repository-style accessors over the relational models.

Each store opens a short-lived session per call so callers never hold a
session across awaits on other services.

Classes
-------
IndexStore
    Create, read and transition index snapshots.
ChunkStore
    Persist chunk text, delete by file, keyword candidate search.
RetrievalLogStore
    Append retrieval log rows and aggregate them.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete, func, or_, select

from meridian_rag.common.errors import IndexNotFoundError, InvalidStatusTransition
from meridian_rag.common.schemas import (
    Chunk,
    CodeIndex,
    IndexStatus,
    IndexStatusReport,
    RetrievalFilter,
    as_utc,
    can_transition,
    utcnow,
)
from meridian_rag.storage.database import Database
from meridian_rag.storage.models import CodebaseIndexRecord, DocumentChunkRecord, RetrievalLogRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_INDEX_AGE_DAYS = 7

_INDEX_FIELDS = frozenset({
    "commit_sha",
    "total_files",
    "total_chunks",
    "total_tokens",
    "cost",
    "indexing_duration_ms",
    "indexed_files",
    "error",
    "completed_at",
    "last_used_at",
})


def _to_code_index(row: CodebaseIndexRecord) -> CodeIndex:
    return CodeIndex(
        id=row.id,
        project_id=row.project_id,
        commit_sha=row.commit_sha,
        branch=row.branch,
        status=IndexStatus(row.status),
        embedding_model=row.embedding_model,
        embedding_dimensions=row.embedding_dimensions,
        total_files=row.total_files,
        total_chunks=row.total_chunks,
        total_tokens=row.total_tokens,
        cost=row.cost,
        indexing_duration_ms=row.indexing_duration_ms,
        indexed_files=list(row.indexed_files or []),
        error=row.error,
        created_at=row.created_at,
        completed_at=row.completed_at,
        last_used_at=row.last_used_at,
    )


class IndexStore:
    """Index snapshot bookkeeping."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
            self,
            *,
            project_id: str,
            commit_sha: str,
            branch: str,
            embedding_model: str,
            embedding_dimensions: int,
        ) -> CodeIndex:
        row = CodebaseIndexRecord(
            id=str(uuid.uuid4()),
            project_id=project_id,
            commit_sha=commit_sha,
            branch=branch,
            status=IndexStatus.PENDING.value,
            embedding_model=embedding_model,
            embedding_dimensions=int(embedding_dimensions),
            indexed_files=[],
            created_at=utcnow(),
        )
        async with self.db.session() as session:
            session.add(row)
            await session.commit()
        return _to_code_index(row)

    async def get(self, index_id: str) -> CodeIndex:
        async with self.db.session() as session:
            row = await session.get(CodebaseIndexRecord, index_id)
            if row is None:
                raise IndexNotFoundError(index_id)
            return _to_code_index(row)

    async def latest_completed(self, project_id: str) -> Optional[CodeIndex]:
        """Return the most recently completed index of ``project_id``, if any."""
        stmt = (
            select(CodebaseIndexRecord)
            .where(
                CodebaseIndexRecord.project_id == project_id,
                CodebaseIndexRecord.status == IndexStatus.COMPLETED.value,
            )
            .order_by(CodebaseIndexRecord.completed_at.desc())
            .limit(1)
        )
        async with self.db.session() as session:
            row = (await session.execute(stmt)).scalars().first()
            return _to_code_index(row) if row else None

    async def check_status(self, project_id: str, max_age_days: float = DEFAULT_MAX_INDEX_AGE_DAYS) -> IndexStatusReport:
        """Report whether ``project_id`` needs a full (re)index.

        A project needs indexing when it has no COMPLETED index, or when its
        newest completed index is more than ``max_age_days`` old.
        """
        index = await self.latest_completed(project_id)
        if index is None:
            logger.info("No completed index for project %s", project_id)
            return IndexStatusReport(project_id=project_id, needs_indexing=True, reason="No index found")

        completed_at = as_utc(index.completed_at or index.created_at)
        age_days = (utcnow() - completed_at).total_seconds() / 86400
        report = IndexStatusReport(
            project_id=project_id,
            needs_indexing=age_days > max_age_days,
            index_id=index.id,
            last_indexed_at=completed_at,
            age_days=age_days,
            total_chunks=index.total_chunks,
        )
        if report.needs_indexing:
            logger.info("Index %s of project %s is stale (%.1f days old)", index.id, project_id, age_days)
            return replace(report, reason=f"Index is stale ({age_days:.1f} days old)")
        logger.debug("Index %s of project %s is fresh (%.1f days old)", index.id, project_id, age_days)
        return report

    async def list_for_project(self, project_id: str) -> list[CodeIndex]:
        stmt = (
            select(CodebaseIndexRecord)
            .where(CodebaseIndexRecord.project_id == project_id)
            .order_by(CodebaseIndexRecord.created_at.desc())
        )
        async with self.db.session() as session:
            return [_to_code_index(r) for r in (await session.execute(stmt)).scalars()]

    async def transition(self, index_id: str, target: IndexStatus, **fields: Any) -> CodeIndex:
        """Move an index to ``target`` and apply ``fields`` atomically.

        Raises
        ------
        IndexNotFoundError
            If the index does not exist.
        InvalidStatusTransition
            If the lifecycle does not allow the change.
        """
        async with self.db.session() as session:
            row = await session.get(CodebaseIndexRecord, index_id)
            if row is None:
                raise IndexNotFoundError(index_id)
            current = IndexStatus(row.status)
            if not can_transition(current, target):
                raise InvalidStatusTransition(index_id, current.value, IndexStatus(target).value)
            row.status = IndexStatus(target).value
            self._apply(row, fields)
            await session.commit()
            logger.debug("Index %s: %s -> %s", index_id, current.value, row.status)
            return _to_code_index(row)

    async def update(self, index_id: str, **fields: Any) -> CodeIndex:
        """Apply progress fields without changing the status."""
        async with self.db.session() as session:
            row = await session.get(CodebaseIndexRecord, index_id)
            if row is None:
                raise IndexNotFoundError(index_id)
            self._apply(row, fields)
            await session.commit()
            return _to_code_index(row)

    async def touch_last_used(self, index_id: str) -> None:
        await self.update(index_id, last_used_at=utcnow())

    @staticmethod
    def _apply(row: CodebaseIndexRecord, fields: dict[str, Any]) -> None:
        unknown = set(fields) - _INDEX_FIELDS
        if unknown:
            raise TypeError(f"Unknown index fields: {sorted(unknown)}")
        for key, value in fields.items():
            setattr(row, key, list(value) if key == "indexed_files" else value)


class ChunkStore:
    """Persisted chunk text, keyed by the vector point id."""

    def __init__(self, db: Database):
        self.db = db

    async def add_many(self, index_id: str, items: Sequence[tuple[str, int, Chunk]]) -> None:
        """Persist ``(chunk_id, chunk_index, chunk)`` triples for one index."""
        if not items:
            return
        now = utcnow()
        rows = [
            DocumentChunkRecord(
                id=chunk_id,
                codebase_index_id=index_id,
                file_path=chunk.file_path,
                chunk_index=chunk_index,
                content=chunk.content,
                start_line=chunk.start_line,
                end_line=chunk.end_line,
                chunk_type=getattr(chunk.chunk_type, "value", chunk.chunk_type),
                language=chunk.language,
                chunk_metadata=dict(chunk.metadata or {}),
                qdrant_point_id=chunk_id,
                created_at=now,
            )
            for chunk_id, chunk_index, chunk in items
        ]
        async with self.db.session() as session:
            session.add_all(rows)
            await session.commit()

    async def delete_for_files(self, index_id: str, file_paths: Iterable[str]) -> int:
        """Delete every chunk of ``file_paths`` in one index; return the row count."""
        paths = list(file_paths)
        if not paths:
            return 0
        stmt = delete(DocumentChunkRecord).where(
            DocumentChunkRecord.codebase_index_id == index_id,
            DocumentChunkRecord.file_path.in_(paths),
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return int(result.rowcount or 0)

    async def count(self, index_id: str, file_paths: Optional[Iterable[str]] = None) -> int:
        stmt = select(func.count()).select_from(DocumentChunkRecord).where(
            DocumentChunkRecord.codebase_index_id == index_id
        )
        if file_paths is not None:
            stmt = stmt.where(DocumentChunkRecord.file_path.in_(list(file_paths)))
        async with self.db.session() as session:
            return int((await session.execute(stmt)).scalar_one())

    async def search_keywords(
            self,
            index_id: str,
            keywords: Sequence[str],
            *,
            filter: Optional[RetrievalFilter] = None,
            limit: int = 20,
        ) -> list[DocumentChunkRecord]:
        """Return chunks whose content contains any keyword (case-insensitive).

        Candidates are the newest ``limit`` matches; scoring happens in the
        caller.
        """
        if not keywords:
            return []
        stmt = select(DocumentChunkRecord).where(
            DocumentChunkRecord.codebase_index_id == index_id,
            or_(*[DocumentChunkRecord.content.ilike(f"%{kw}%") for kw in keywords]),
        )
        if filter is not None:
            if filter.language:
                stmt = stmt.where(DocumentChunkRecord.language == filter.language)
            if filter.chunk_type:
                stmt = stmt.where(DocumentChunkRecord.chunk_type == getattr(filter.chunk_type, "value", filter.chunk_type))
            if filter.file_paths:
                stmt = stmt.where(DocumentChunkRecord.file_path.in_(list(filter.file_paths)))
        stmt = stmt.order_by(DocumentChunkRecord.created_at.desc()).limit(int(limit))
        async with self.db.session() as session:
            return list((await session.execute(stmt)).scalars())


class RetrievalLogStore:
    """Append-only retrieval log."""

    def __init__(self, db: Database):
        self.db = db

    async def add(
            self,
            *,
            project_id: str,
            codebase_index_id: Optional[str],
            query: str,
            method: str,
            chunk_ids: Sequence[str],
            scores: Sequence[float],
            retrieval_time_ms: int,
            total_chunks_scanned: int,
            tokens_used: int,
            cost: float,
        ) -> None:
        row = RetrievalLogRecord(
            project_id=project_id,
            codebase_index_id=codebase_index_id,
            query=query,
            retrieval_method=method,
            retrieved_chunk_ids=list(chunk_ids),
            scores=[float(s) for s in scores],
            retrieval_time_ms=int(retrieval_time_ms),
            total_chunks_scanned=int(total_chunks_scanned),
            tokens_used=int(tokens_used),
            cost=float(cost),
            created_at=utcnow(),
        )
        async with self.db.session() as session:
            session.add(row)
            await session.commit()

    async def stats(self, project_id: str, *, method: str, since: datetime) -> dict[str, float]:
        """Aggregate retrievals of one method since ``since``.

        Returns
        -------
        dict[str, float]
            ``total_retrievals``, ``average_results``, ``average_score``,
            ``average_time_ms`` and ``total_cost``.
        """
        stmt = select(RetrievalLogRecord).where(
            RetrievalLogRecord.project_id == project_id,
            RetrievalLogRecord.retrieval_method == method,
            RetrievalLogRecord.created_at >= since,
        )
        async with self.db.session() as session:
            rows = list((await session.execute(stmt)).scalars())

        if not rows:
            return {
                "total_retrievals": 0,
                "average_results": 0.0,
                "average_score": 0.0,
                "average_time_ms": 0.0,
                "total_cost": 0.0,
            }

        all_scores = [s for r in rows for s in (r.scores or [])]
        return {
            "total_retrievals": len(rows),
            "average_results": sum(len(r.retrieved_chunk_ids or []) for r in rows) / len(rows),
            "average_score": sum(all_scores) / len(all_scores) if all_scores else 0.0,
            "average_time_ms": sum(r.retrieval_time_ms for r in rows) / len(rows),
            "total_cost": sum(r.cost for r in rows),
        }


def since_hours(hours: float) -> datetime:
    return utcnow() - timedelta(hours=hours)


__all__ = [
    "ChunkStore",
    "IndexStore",
    "RetrievalLogStore",
    "since_hours",
]
