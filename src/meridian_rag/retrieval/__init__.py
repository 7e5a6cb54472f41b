"""
Retrieval layer of Meridian.

This package covers everything needed to turn source files into searchable
vectors and to fetch the most relevant chunks for a query.

Submodules
----------
chunker
    Structure-aware (TS/JS) and line-window chunking of source files.
embedding_cache
    Content-addressed embedding cache with in-memory and Redis backends.
embedder
    Embedding model wrappers, cost estimation and factory.
vector_store
    Qdrant-backed vector store.
retriever
    Semantic and hybrid retrievers.
retriever_factory
    Registry of retriever kinds.
reranker
    LLM-based second-stage reranking.
types
    Retriever and reranker protocols.
"""
