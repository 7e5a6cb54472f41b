"""meridian_rag.storage.models

Relational ORM models for index bookkeeping.

Vectors live in the vector store; these tables hold everything else about an
index snapshot: its lifecycle and totals, the text of every chunk (used by
keyword search and incremental deletes), and a log of retrievals.

Classes
-------
Base
    Declarative base shared by all models.
CodebaseIndexRecord
    One row per index snapshot.
DocumentChunkRecord
    One row per chunk; ``id`` equals the vector point id.
RetrievalLogRecord
    One row per retrieval call.
"""

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase

from meridian_rag.common.schemas import utcnow


class Base(DeclarativeBase):
    pass


class CodebaseIndexRecord(Base):
    __tablename__ = "codebase_indexes"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(255), nullable=False)
    commit_sha = Column(String(64), nullable=False, default="HEAD")
    branch = Column(String(255), nullable=False, default="main")
    status = Column(String(16), nullable=False)

    total_files = Column(Integer, nullable=False, default=0)
    total_chunks = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    cost = Column(Float, nullable=False, default=0.0)
    indexing_duration_ms = Column(Integer, nullable=False, default=0)
    indexed_files = Column(JSON, nullable=False, default=list)

    embedding_model = Column(String(255), nullable=False)
    embedding_dimensions = Column(Integer, nullable=False)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_codebase_indexes_project_status", "project_id", "status"),
    )


class DocumentChunkRecord(Base):
    __tablename__ = "document_chunks"

    id = Column(String(36), primary_key=True)
    codebase_index_id = Column(String(36), ForeignKey("codebase_indexes.id", ondelete="CASCADE"), nullable=False)
    file_path = Column(String(1024), nullable=False)
    chunk_index = Column(Integer, nullable=False, default=0)   # position within the file
    content = Column(Text, nullable=False)
    start_line = Column(Integer, nullable=False)
    end_line = Column(Integer, nullable=False)
    chunk_type = Column(String(16), nullable=False)
    language = Column(String(32), nullable=False)
    chunk_metadata = Column("metadata", JSON, nullable=False, default=dict)
    qdrant_point_id = Column(String(36), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_document_chunks_index_file", "codebase_index_id", "file_path"),
    )


class RetrievalLogRecord(Base):
    __tablename__ = "rag_retrievals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(255), nullable=False)
    codebase_index_id = Column(String(36), nullable=True)
    query = Column(Text, nullable=False)
    retrieval_method = Column(String(16), nullable=False)
    retrieved_chunk_ids = Column(JSON, nullable=False, default=list)
    scores = Column(JSON, nullable=False, default=list)
    retrieval_time_ms = Column(Integer, nullable=False, default=0)
    total_chunks_scanned = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)
    cost = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_rag_retrievals_project_created", "project_id", "created_at"),
    )


__all__ = [
    "Base",
    "CodebaseIndexRecord",
    "DocumentChunkRecord",
    "RetrievalLogRecord",
]
