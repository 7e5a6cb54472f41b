"""meridian_rag.storage

Relational persistence for index snapshots, chunk text and retrieval logs,
built on SQLAlchemy's asyncio extension.

Modules
-------
models
    Declarative ORM models.
database
    Async engine and session factory.
stores
    Repository-style accessors used by indexers and retrievers.
"""
from .database import Database
from .stores import ChunkStore, IndexStore, RetrievalLogStore

__all__ = ["ChunkStore", "Database", "IndexStore", "RetrievalLogStore"]
