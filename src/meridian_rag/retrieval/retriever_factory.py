"""meridian_rag.retrieval.retriever_factory

Factory and registry for retriever implementations.

Retriever constructors are registered under a string key and instantiated
via a single factory function, so the configured ``retriever.type`` selects
the implementation.

Functions
---------
register
    Decorator used to register a retriever builder under a name.
create
    Construct a retriever instance by kind.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

from meridian_rag.retrieval.retriever import HybridRetriever, SemanticRetriever
from meridian_rag.retrieval.types import Retriever

_BUILDERS: Dict[str, Callable[..., Retriever]] = {}


def register(name: str):
    """Register a retriever builder under a name.

    Parameters
    ----------
    name : str
        Name under which the retriever builder should be registered.

    Returns
    -------
    Callable
        Decorator that registers the wrapped builder function.
    """
    def _wrap(fn: Callable[..., Retriever]):
        _BUILDERS[name] = fn
        return fn
    return _wrap


def create(
    *,
    kind: str,
    semantic: SemanticRetriever,
    top_k: Optional[int] = None,
    **kwargs,
) -> Retriever:
    """Create a retriever instance by kind.

    Parameters
    ----------
    kind : str
        Registered retriever kind (``"semantic"`` or ``"hybrid"``).
    semantic : SemanticRetriever
        Semantic retriever; returned as-is for ``"semantic"`` and wrapped by
        the other kinds.
    top_k : int or None, optional
        Default number of results. Forwarded when provided.
    **kwargs : Any
        Additional keyword arguments forwarded to the retriever builder.

    Returns
    -------
    Retriever
        Instantiated retriever.

    Raises
    ------
    ValueError
        If ``kind`` does not correspond to a registered retriever.
    """
    if kind not in _BUILDERS:
        raise ValueError(f"Unknown retriever kind: {kind}. Available: {list(_BUILDERS)}")

    call_kwargs = dict(kwargs)
    if top_k is not None:
        call_kwargs["top_k"] = top_k
    return _BUILDERS[kind](semantic=semantic, **call_kwargs)


def hybrid_kwargs(config: Mapping[str, Any]) -> dict[str, Any]:
    """Translate a ``retriever.hybrid`` config mapping into constructor kwargs."""
    keys = (
        "semantic_weight",
        "keyword_weight",
        "min_keyword_length",
        "occurrence_weight",
        "whole_word_bonus",
        "stop_words",
    )
    return {k: config[k] for k in keys if k in config}


@register("semantic")
def _build_semantic(*, semantic: SemanticRetriever, top_k: Optional[int] = None, **_) -> Retriever:
    if top_k is not None:
        semantic.top_k = int(top_k)
    return semantic


@register("hybrid")
def _build_hybrid(*, semantic: SemanticRetriever, chunk_store, **kw) -> Retriever:
    return HybridRetriever(semantic=semantic, chunk_store=chunk_store, **kw)
