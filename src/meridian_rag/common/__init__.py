"""
Common building blocks shared across the code-search RAG stack.

This package provides small, widely-used primitives (chunk and index schemas,
retrieval results, error types and ID aliases) intended to be imported by
multiple layers of the system.

Classes
-------
Chunk
    A contiguous span of one source file.
CodeIndex
    A versioned snapshot index of one repository.
RetrievalResult
    One ranked retrieval hit.

Attributes
----------
ChunkId : TypeAlias
    Type alias for chunk identifiers.
IndexId : TypeAlias
    Type alias for index identifiers.

See Also
--------
meridian_rag.common.schemas
    Defines the dataclasses re-exported here.
meridian_rag.common.errors
    Defines the package exception hierarchy.
"""
from __future__ import annotations
from typing import TypeAlias

from .errors import (
    IndexNotFoundError,
    InvalidStatusTransition,
    MeridianError,
    NoCompletedIndexError,
)
from .schemas import (
    ChangedFiles,
    Chunk,
    ChunkType,
    CodeIndex,
    IncrementalUpdateResult,
    IndexStatus,
    IndexStatusReport,
    RetrievalFilter,
    RetrievalResult,
)

ChunkId: TypeAlias = str
IndexId: TypeAlias = str

__all__ = [
    "ChangedFiles",
    "Chunk",
    "ChunkId",
    "ChunkType",
    "CodeIndex",
    "IncrementalUpdateResult",
    "IndexId",
    "IndexNotFoundError",
    "IndexStatus",
    "IndexStatusReport",
    "InvalidStatusTransition",
    "MeridianError",
    "NoCompletedIndexError",
    "RetrievalFilter",
    "RetrievalResult",
]
