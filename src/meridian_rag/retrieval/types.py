"""meridian_rag.retrieval.types

Shared type definitions for the retrieval layer.

Classes
-------
Retriever
    Protocol defining the minimal retriever interface.
Reranker
    Protocol defining the second-stage reranker interface.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Protocol, Tuple

from meridian_rag.common.schemas import RetrievalFilter, RetrievalResult

if TYPE_CHECKING:
    from meridian_rag.retrieval.reranker import RerankUsage


class Retriever(Protocol):
    """Protocol defining the retriever interface.

    A retriever takes a natural-language query and a project, and returns a
    ranked list of chunks from that project's latest completed index.
    Concrete implementations may use vector similarity search, keyword
    search, or a fusion of both.

    Methods
    -------
    retrieve
        Retrieve chunks relevant to a query.
    """
    async def retrieve(
        self,
        query: str,
        project_id: str,
        top_k: Optional[int] = None,
        filter: Optional[RetrievalFilter] = None,
    ) -> List[RetrievalResult]:
        """Retrieve chunks for a query.

        Parameters
        ----------
        query : str
            Natural-language query string.
        project_id : str
            Project whose latest completed index is searched.
        top_k : int or None, optional
            Maximum number of results.
        filter : RetrievalFilter or None, optional
            Optional result constraints.

        Returns
        -------
        list[RetrievalResult]
            Ranked list of retrieved chunks, highest score first.
        """
        ...


class Reranker(Protocol):
    """Second-stage reordering of retrieved candidates.

    Implementations return at most ``top_k`` results and report whether the
    order was actually changed, with the time and cost spent deciding.
    """

    async def rerank(self, query: str, results: List[RetrievalResult], top_k: int = 5) -> List[RetrievalResult]:
        ...

    async def rerank_with_usage(
        self,
        query: str,
        results: List[RetrievalResult],
        top_k: int = 5,
    ) -> Tuple[List[RetrievalResult], RerankUsage]:
        ...
