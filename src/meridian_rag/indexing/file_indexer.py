"""meridian_rag.indexing.file_indexer

The per-file step shared by the repository and incremental indexers:
chunk a file, embed every chunk through the cache, and write the vector
points and chunk rows under a shared uuid4 id.

Classes
-------
FileIndexResult
    Chunk, token and cost accounting for one file.
FileIndexer
    Chunk, embed and store one file.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from meridian_rag.retrieval.chunker import CodeChunker
from meridian_rag.retrieval.embedding_cache import CachedEmbedder, EmbeddingCache
from meridian_rag.retrieval.vector_store import BaseVectorStore, VectorPoint
from meridian_rag.storage.stores import ChunkStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileIndexResult:
    file_path: str
    chunks: int
    tokens: int
    embedded_tokens: int
    cost: float


class FileIndexer:
    """Chunk, embed and store single files.

    Parameters
    ----------
    chunker : CodeChunker
        Splits file content into chunks.
    embedder : BaseEmbedder
        Embeddings provider; also estimates tokens and cost.
    vector_store : BaseVectorStore
        Destination of the chunk vectors.
    chunk_store : ChunkStore
        Destination of the chunk rows.
    cache : EmbeddingCache or None, optional
        Shared embedding cache consulted before the provider.
    """

    def __init__(
            self,
            *,
            chunker: CodeChunker,
            embedder: Any,
            vector_store: BaseVectorStore,
            chunk_store: ChunkStore,
            cache: Optional[EmbeddingCache] = None,
        ):
        self.chunker = chunker
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunk_store = chunk_store
        self.cached_embedder = CachedEmbedder(embedder, cache)

    async def index_file(self, index_id: str, file_path: str, content: str) -> FileIndexResult:
        """Index one file into ``index_id``.

        Returns
        -------
        FileIndexResult
            ``tokens`` counts every chunk; ``cost`` covers only chunks that
            missed the cache and went to the provider.
        """
        chunks = self.chunker.chunk_code(content, file_path)
        logger.debug("Chunked %s into %d chunks", file_path, len(chunks))

        points: list[VectorPoint] = []
        rows = []
        tokens = 0
        embedded_tokens = 0
        for idx, chunk in enumerate(chunks):
            vector, cache_hit = await self.cached_embedder.embed(chunk.content)
            chunk_tokens = self.embedder.estimate_tokens(chunk.content)
            tokens += chunk_tokens
            if not cache_hit:
                embedded_tokens += chunk_tokens

            chunk_id = str(uuid.uuid4())
            points.append(
                VectorPoint(
                    id=chunk_id,
                    vector=list(vector),
                    payload={
                        "codebase_index_id": index_id,
                        "file_path": file_path,
                        "start_line": chunk.start_line,
                        "end_line": chunk.end_line,
                        "chunk_type": chunk.chunk_type.value,
                        "language": chunk.language,
                        "content": chunk.content,
                        "metadata": dict(chunk.metadata),
                    },
                )
            )
            rows.append((chunk_id, idx, chunk))

        await self.vector_store.upsert(points)
        await self.chunk_store.add_many(index_id, rows)

        return FileIndexResult(
            file_path=file_path,
            chunks=len(chunks),
            tokens=tokens,
            embedded_tokens=embedded_tokens,
            cost=self.embedder.estimate_cost(embedded_tokens),
        )
