"""meridian_rag.common.schemas

Core data schemas shared across the code-search RAG pipeline.

These lightweight dataclasses describe the canonical shapes passed between
chunking, embedding, indexing, retrieval and reranking components.

Classes
-------
ChunkType
    Structural category of a chunk (function, class, module).
IndexStatus
    Lifecycle state of a codebase index snapshot.
Chunk
    A contiguous span of one source file, suitable for embedding/retrieval.
CodeIndex
    A versioned snapshot index of one repository at one commit.
RetrievalFilter
    Optional constraints applied to a retrieval call.
RetrievalResult
    One ranked hit returned by a retriever.
ChangedFiles
    Added, modified and removed paths for an incremental update.
IncrementalUpdateResult
    Summary of an incremental index update.
IndexStatusReport
    Whether a project needs (re)indexing, and why.

Notes
-----
``metadata`` is intentionally untyped (``dict[str, Any]``) to allow arbitrary
key-value pairs (e.g., the extracted symbol ``name``). Downstream code should
treat missing keys defensively.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ChunkType(str, Enum):
    FUNCTION = "function"
    CLASS = "class"
    MODULE = "module"


class IndexStatus(str, Enum):
    PENDING = "PENDING"
    INDEXING = "INDEXING"
    UPDATING = "UPDATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# FAILED is terminal. A COMPLETED index only moves forward through UPDATING.
ALLOWED_TRANSITIONS: dict[IndexStatus, frozenset[IndexStatus]] = {
    IndexStatus.PENDING: frozenset({IndexStatus.INDEXING, IndexStatus.FAILED}),
    IndexStatus.INDEXING: frozenset({IndexStatus.COMPLETED, IndexStatus.FAILED}),
    IndexStatus.COMPLETED: frozenset({IndexStatus.UPDATING}),
    IndexStatus.UPDATING: frozenset({IndexStatus.COMPLETED, IndexStatus.FAILED}),
    IndexStatus.FAILED: frozenset(),
}


def can_transition(current: IndexStatus, target: IndexStatus) -> bool:
    """Return ``True`` when ``current -> target`` is an allowed status change."""
    return IndexStatus(target) in ALLOWED_TRANSITIONS[IndexStatus(current)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


@dataclass(frozen=True)
class Chunk:
    """A contiguous span of one source file.

    Attributes
    ----------
    content : str
        Exact substring of the source file.
    file_path : str
        Repository-relative path of the file the chunk came from.
    start_line : int
        First line of the span (1-based, inclusive).
    end_line : int
        Last line of the span (1-based, inclusive).
    chunk_type : ChunkType
        Structural category of the chunk.
    language : str
        Language tag derived from the file extension (``"text"`` if unknown).
    metadata : Dict[str, Any]
        Extra attributes, e.g. ``{"name": "getUserById"}`` for structural chunks.
    """
    content: str
    file_path: str
    start_line: int
    end_line: int
    chunk_type: ChunkType
    language: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CodeIndex:
    """A versioned snapshot index of one repository at one commit.

    Mirrors the persisted ``codebase_indexes`` row; see
    :mod:`meridian_rag.storage.models`.
    """
    id: str
    project_id: str
    commit_sha: str
    branch: str
    status: IndexStatus
    embedding_model: str
    embedding_dimensions: int
    total_files: int = 0
    total_chunks: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    indexing_duration_ms: int = 0
    indexed_files: list[str] = field(default_factory=list)
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None


@dataclass(frozen=True)
class RetrievalFilter:
    """Optional constraints applied to a retrieval call.

    Attributes
    ----------
    language : str or None
        Only return chunks with this language tag.
    chunk_type : ChunkType or None
        Only return chunks of this structural category.
    file_paths : list[str] or None
        Only return chunks from one of these files.
    """
    language: Optional[str] = None
    chunk_type: Optional[ChunkType] = None
    file_paths: Optional[list[str]] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["RetrievalFilter"]:
        if not data:
            return None
        chunk_type = data.get("chunk_type")
        return cls(
            language=data.get("language"),
            chunk_type=ChunkType(chunk_type) if chunk_type else None,
            file_paths=list(data["file_paths"]) if data.get("file_paths") else None,
        )


@dataclass
class RetrievalResult:
    """One ranked hit returned by a retriever.

    Attributes
    ----------
    chunk_id : str
        Identifier shared by the vector point and the persisted chunk row.
    score : float
        Relevance score; higher is better.
    source : str
        Provenance of the score: ``"semantic"``, ``"keyword"`` or ``"hybrid"``.
    semantic_score, keyword_score : float or None
        Component scores, populated by the hybrid retriever.
    """
    chunk_id: str
    file_path: str
    content: str
    score: float
    start_line: int
    end_line: int
    language: str
    chunk_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    source: str = "semantic"
    semantic_score: Optional[float] = None
    keyword_score: Optional[float] = None


@dataclass
class ChangedFiles:
    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class IncrementalUpdateResult:
    index_id: str
    chunks_added: int
    chunks_modified: int
    chunks_removed: int
    duration_ms: int
    cost: float


@dataclass(frozen=True)
class IndexStatusReport:
    """Freshness of a project's latest completed index.

    ``needs_indexing`` is set when the project has no completed index or the
    newest one is older than the allowed age; ``reason`` then says which.
    """

    project_id: str
    needs_indexing: bool
    reason: Optional[str] = None
    index_id: Optional[str] = None
    last_indexed_at: Optional[datetime] = None
    age_days: Optional[float] = None
    total_chunks: Optional[int] = None


__all__ = [
    "ALLOWED_TRANSITIONS",
    "ChangedFiles",
    "Chunk",
    "ChunkType",
    "CodeIndex",
    "IncrementalUpdateResult",
    "IndexStatus",
    "IndexStatusReport",
    "RetrievalFilter",
    "RetrievalResult",
    "as_utc",
    "can_transition",
    "utcnow",
]
