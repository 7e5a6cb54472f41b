"""meridian_rag.config.global_config

Global configuration loader and accessors.

This module defines a lightweight wrapper around a raw YAML configuration
dictionary, providing validated, cached access to the configuration sections
used across the code-search pipeline. Sections that are optional fall back to
the documented defaults, merged key by key with whatever the file provides.

Environment variables of the form ``${VAR}`` are expanded recursively in all
string values at load time.

Classes
-------
GlobalConfig
    Loader and accessor for global project configuration.
"""

import os
import warnings
import yaml
from pathlib import Path
from functools import cached_property

DEFAULT_EXCLUDED_DIRS = [
    "node_modules",
    "dist",
    "build",
    ".git",
    "vendor",
    "__pycache__",
    ".next",
    "coverage",
    ".cache",
]

DEFAULT_CODE_EXTENSIONS = [
    "ts", "tsx", "js", "jsx", "py", "go", "rs", "java",
    "php", "rb", "c", "cpp", "cs", "swift", "kt",
]

DEFAULT_STOP_WORDS = [
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "should", "could", "may", "might", "must", "can", "this", "that",
    "these", "those",
]

def _expand_env(obj):
    """Recursively expand environment variables in a nested structure.

    Parameters
    ----------
    obj : Any
        Object to expand. Supported types are dictionaries, lists, and strings.
        Other types are returned unchanged.

    Returns
    -------
    Any
        A structure of the same shape as ``obj`` with environment variables
        expanded in all string values.
    """
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj

def _merge(defaults: dict, override) -> dict:
    """Return ``defaults`` updated recursively with ``override``."""
    if override is None:
        return dict(defaults)
    if not isinstance(override, dict):
        raise TypeError(f"Expected a mapping, got {type(override)}")
    merged = dict(defaults)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged

class GlobalConfig:
    """Loader and accessor for global project configuration.

    This class wraps a raw configuration dictionary (typically loaded from YAML)
    and exposes validated, cached accessors for each configuration section.

    Parameters
    ----------
    raw : dict
        Raw configuration data as loaded from a YAML file.
    config_path : Path or None, optional
        Absolute path of the loaded file, used to resolve relative paths.
    """

    def __init__(
            self,
            raw: dict | None = None,
            config_path: Path | None = None,
        ):
        self.raw = raw or {}
        self.config_path = config_path

    @classmethod
    def load(
            cls,
            path: str | Path,
        ) -> "GlobalConfig":
        """Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        GlobalConfig
            An instance initialised with the loaded and environment-expanded data.

        Notes
        -----
        All string values in the loaded YAML are processed with recursive
        environment-variable expansion (``${VAR}``) via :func:`os.path.expandvars`.
        """
        cfg_path = Path(path).expanduser().resolve()
        with cfg_path.open("r") as f:
            data = yaml.safe_load(f) or {}
        data = _expand_env(data)
        return cls(data, config_path=cfg_path)

    @cached_property
    def embedder(self) -> dict:
        """Return the embedder configuration section.

        Returns
        -------
        dict
            The ``embedder`` section merged over OpenAI-compatible defaults
            (``text-embedding-3-large``, 3072 dimensions, batches of 100).
        """
        return _merge(
            {
                "type": "openai_like",
                "model_name": "text-embedding-3-large",
                "api_base": "https://openrouter.ai/api/v1",
                "dimensions": 3072,
                "max_batch_size": 100,
            },
            self.raw.get("embedder"),
        )

    @cached_property
    def vector_store(self) -> dict:
        """Return the vector-store configuration section.

        Returns
        -------
        dict
            The ``vector_store`` section merged over local Qdrant defaults.

        Raises
        ------
        ValueError
            If ``collection_name`` is empty.
        """
        section = _merge(
            {
                "type": "qdrant",
                "host": "localhost",
                "port": 6333,
                "collection_name": "codebase_embeddings",
                "indexing_threshold": 10000,
            },
            self.raw.get("vector_store"),
        )
        if not str(section.get("collection_name") or "").strip():
            raise ValueError("'vector_store.collection_name' must be a non-empty string.")
        return section

    @cached_property
    def cache(self) -> dict:
        """Return the embedding-cache configuration section.

        Returns
        -------
        dict
            ``backend`` (``redis`` or ``memory``), ``url``, ``ttl_seconds`` and
            ``key_prefix``.
        """
        return _merge(
            {
                "backend": "memory",
                "url": "redis://localhost:6379/0",
                "ttl_seconds": 86400,
                "key_prefix": "emb:",
            },
            self.raw.get("cache"),
        )

    @cached_property
    def database(self) -> dict:
        """Return the relational storage configuration section.

        Returns
        -------
        dict
            ``url`` (SQLAlchemy async URL) and ``echo``.
        """
        return _merge(
            {"url": "sqlite+aiosqlite:///./meridian.db", "echo": False},
            self.raw.get("database"),
        )

    @cached_property
    def chunking(self) -> dict:
        """Return the chunker configuration section.

        Returns
        -------
        dict
            ``max_chunk_size`` and ``overlap`` in characters.

        Raises
        ------
        ValueError
            If sizes are not positive or the overlap is negative.
        """
        section = _merge({"max_chunk_size": 1500, "overlap": 200}, self.raw.get("chunking"))
        if int(section["max_chunk_size"]) <= 0:
            raise ValueError("'chunking.max_chunk_size' must be a positive integer.")
        if int(section["overlap"]) < 0:
            raise ValueError("'chunking.overlap' must be non-negative.")
        return section

    @cached_property
    def indexing(self) -> dict:
        """Return the indexing configuration section.

        Returns
        -------
        dict
            ``batch_size`` (files processed concurrently), ``code_extensions``
            and ``excluded_dirs``.
        """
        section = _merge(
            {
                "batch_size": 10,
                "code_extensions": list(DEFAULT_CODE_EXTENSIONS),
                "excluded_dirs": list(DEFAULT_EXCLUDED_DIRS),
            },
            self.raw.get("indexing"),
        )
        if int(section["batch_size"]) <= 0:
            raise ValueError("'indexing.batch_size' must be a positive integer.")
        return section

    @cached_property
    def retriever(self) -> dict:
        """Return the retriever configuration section.

        Returns
        -------
        dict
            ``type`` (``semantic`` or ``hybrid``), ``top_k``,
            ``score_threshold`` and the ``hybrid`` sub-section holding fusion
            weights and keyword-matching constants.

        Notes
        -----
        ``score_threshold`` may also be supplied through the
        ``RAG_SCORE_THRESHOLD`` environment variable when the file omits it.
        """
        threshold = float(os.environ.get("RAG_SCORE_THRESHOLD", 0.3))
        section = _merge(
            {
                "type": "semantic",
                "top_k": 10,
                "score_threshold": threshold,
                "hybrid": {
                    "semantic_weight": 0.7,
                    "keyword_weight": 0.3,
                    "min_keyword_length": 3,
                    "occurrence_weight": 0.1,
                    "whole_word_bonus": 0.2,
                    "stop_words": list(DEFAULT_STOP_WORDS),
                },
            },
            self.raw.get("retriever"),
        )

        hybrid = section.get("hybrid") or {}
        total = float(hybrid.get("semantic_weight", 0.7)) + float(hybrid.get("keyword_weight", 0.3))
        if abs(total - 1.0) > 1e-6:
            warnings.warn(f"retriever.hybrid weights sum to {total:.3f}; fused scores will not be in [0, 1].")
        return section

    @cached_property
    def reranker(self) -> dict:
        """Return the reranker configuration section.

        Returns
        -------
        dict
            ``enabled``, ``type``, ``max_tokens``, ``preview_chars`` and the
            ``llm`` sub-section passed to :func:`~meridian_rag.generation.llm_interface.create_llm`.
        """
        return _merge(
            {
                "enabled": False,
                "type": "llm",
                "max_tokens": 1000,
                "preview_chars": 400,
                "candidate_multiplier": 2,
                "llm": {
                    "type": "openai_chat",
                    "model_name": "anthropic/claude-3-haiku",
                    "api_base": "https://openrouter.ai/api/v1",
                },
            },
            self.raw.get("reranker"),
        )

    @cached_property
    def tokenization(self) -> dict:
        """Return the tokenization section (heuristic by default)."""
        return _merge({"type": "heuristic", "chars_per_token": 4}, self.raw.get("tokenization"))
