"""meridian_rag.pipelines

Pipeline orchestration components for Meridian.

Pipelines are lightweight and stateless beyond their configured components,
making them safe to reuse across requests.

Modules
-------
query_pipeline
    Retrieval followed by optional second-stage reranking.
"""
from .query_pipeline import QueryPipeline, QueryResult

__all__ = ["QueryPipeline", "QueryResult"]
