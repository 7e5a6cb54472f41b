# meridian_rag/app/api.py
from __future__ import annotations

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from meridian_rag.config import GlobalConfig
from meridian_rag.app.container import build_container
from meridian_rag.common.errors import IndexNotFoundError, NoCompletedIndexError
from meridian_rag.common.schemas import RetrievalFilter, RetrievalResult
from meridian_rag.metrics.exporter import PROMETHEUS_CONTENT_TYPE, render_prometheus, summarize
import logging
import traceback
from datetime import datetime
from typing import Any, Optional

app = FastAPI(title="Meridian Code Search API", version="0.1.0")
logger = logging.getLogger("meridian_rag.api")


class QueryFilter(BaseModel):
    language: Optional[str] = None
    chunk_type: Optional[str] = None
    file_paths: Optional[list[str]] = None


class QueryRequest(BaseModel):
    query: str
    project_id: str
    top_k: int = Field(default=10, ge=1, le=100)
    filter: Optional[QueryFilter] = None


class RetrievedChunk(BaseModel):
    rank: int
    chunk_id: str
    file_path: str
    start_line: int
    end_line: int
    language: str
    chunk_type: str
    content: str
    score: float
    source: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class QueryResponse(BaseModel):
    query: str
    project_id: str
    results: list[RetrievedChunk] = Field(default_factory=list)
    reranked: bool = False
    rerank_time_ms: float | None = None


class IndexStatusResponse(BaseModel):
    project_id: str
    needs_indexing: bool
    reason: str | None = None
    index_id: str | None = None
    last_indexed_at: datetime | None = None
    age_days: float | None = None
    total_chunks: int | None = None


class IndexResponse(BaseModel):
    id: str
    project_id: str
    status: str
    commit_sha: str
    branch: str
    embedding_model: str
    embedding_dimensions: int
    total_files: int
    total_chunks: int
    total_tokens: int
    cost: float
    indexing_duration_ms: int
    error: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    last_used_at: datetime | None = None


def _serialize_results(results: list[RetrievalResult]) -> list[RetrievedChunk]:
    return [
        RetrievedChunk(
            rank=idx,
            chunk_id=r.chunk_id,
            file_path=r.file_path,
            start_line=r.start_line,
            end_line=r.end_line,
            language=r.language,
            chunk_type=str(r.chunk_type),
            content=r.content,
            score=float(r.score),
            source=r.source,
            metadata=dict(r.metadata or {}),
        )
        for idx, r in enumerate(results, start=1)
    ]


def _internal_error(e: Exception, where: str) -> HTTPException:
    # Log full traceback to container logs for debugging
    logger.exception("Error while handling %s", where)
    return HTTPException(
        status_code=500,
        detail={
            "error": f"{type(e).__name__}: {e}",
            "traceback": traceback.format_exc(),
        },
    )


@app.on_event("startup")
async def startup():
    # Use env var so Docker can pass config location
    import os
    cfg_path = os.environ.get("MERIDIAN_CONFIG", "/app/config/config.yaml")
    cfg = GlobalConfig.load(cfg_path)
    container = build_container(cfg)
    await container.startup()
    app.state.container = container


@app.on_event("shutdown")
async def shutdown():
    container = getattr(app.state, "container", None)
    if container is not None:
        await container.aclose()


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/v1/query", response_model=QueryResponse)
async def query(req: QueryRequest):
    try:
        filter = RetrievalFilter.from_dict(req.filter.model_dump(exclude_none=True) if req.filter else None)
    except ValueError as e:
        raise HTTPException(status_code=422, detail={"error": str(e)})

    try:
        result = await app.state.container.pipeline.run(req.query, req.project_id, req.top_k, filter)
        return QueryResponse(
            query=req.query,
            project_id=req.project_id,
            results=_serialize_results(result.results),
            reranked=result.reranked,
            rerank_time_ms=result.rerank_time_ms,
        )
    except NoCompletedIndexError as e:
        raise HTTPException(status_code=404, detail={"error": str(e)})
    except Exception as e:
        raise _internal_error(e, "/v1/query")


@app.get("/v1/indexes/{index_id}", response_model=IndexResponse)
async def get_index(index_id: str):
    try:
        index = await app.state.container.index_store.get(index_id)
        return IndexResponse(
            id=index.id,
            project_id=index.project_id,
            status=index.status.value,
            commit_sha=index.commit_sha,
            branch=index.branch,
            embedding_model=index.embedding_model,
            embedding_dimensions=index.embedding_dimensions,
            total_files=index.total_files,
            total_chunks=index.total_chunks,
            total_tokens=index.total_tokens,
            cost=index.cost,
            indexing_duration_ms=index.indexing_duration_ms,
            error=index.error,
            created_at=index.created_at,
            completed_at=index.completed_at,
            last_used_at=index.last_used_at,
        )
    except IndexNotFoundError as e:
        raise HTTPException(status_code=404, detail={"error": str(e)})
    except Exception as e:
        raise _internal_error(e, f"/v1/indexes/{index_id}")


@app.get("/v1/metrics")
def metrics():
    container = app.state.container
    return {
        **container.metrics.get_metrics(),
        "vector_store": container.metrics.get_vector_store_metrics(),
    }


@app.get("/v1/metrics/prometheus", response_class=PlainTextResponse)
def metrics_prometheus():
    return PlainTextResponse(render_prometheus(app.state.container.metrics), media_type=PROMETHEUS_CONTENT_TYPE)


@app.get("/v1/metrics/summary")
def metrics_summary():
    return summarize(app.state.container.metrics)


@app.get("/v1/projects/{project_id}/index-status", response_model=IndexStatusResponse)
async def index_status(project_id: str, max_age_days: float = Query(default=7, gt=0)):
    try:
        report = await app.state.container.index_store.check_status(project_id, max_age_days=max_age_days)
        return IndexStatusResponse(**vars(report))
    except Exception as e:
        raise _internal_error(e, f"/v1/projects/{project_id}/index-status")
