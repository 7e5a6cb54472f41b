"""meridian_rag.retrieval.embedder

Embedding interfaces and factories for the retrieval layer.

This module defines a small provider-agnostic interface for producing vector
embeddings from code chunks and queries, along with concrete implementations
backed by LlamaIndex embedding wrappers. Every provider reports its model
name, vector dimensions and a per-token price so indexing runs can account
for cost. A factory function constructs an embedder from configuration.

Classes
-------
BaseEmbedder
    Abstract interface specifying the API used by indexers and retrievers.
OpenAILikeEmbedder
    Embedder backed by an OpenAI-compatible HTTP API via LlamaIndex.
HuggingFaceEmbedder
    Embedder backed by a local Hugging Face model via LlamaIndex.

Functions
---------
create_embedder
    Create an embedder implementation from a configuration mapping.
"""

import math
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Sequence

from llama_index.core.base.embeddings.base import BaseEmbedding as LlamaIndexBaseEmbedding
from llama_index.core.callbacks import CallbackManager

from meridian_rag.common.tokenisation import TokenCounter

# USD per one million input tokens, matched by substring of the model name.
EMBEDDING_PRICES_PER_MILLION: dict[str, float] = {
    "text-embedding-3-small": 0.02,
    "text-embedding-3-large": 0.13,
    "text-embedding-ada-002": 0.10,
}
DEFAULT_PRICE_PER_MILLION = 0.13


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return bool(value)


def lookup_price_per_million(model_name: str) -> float:
    """Return the USD price per 1M tokens for ``model_name``.

    Unknown models are priced at ``DEFAULT_PRICE_PER_MILLION``.
    """
    name = (model_name or "").lower()
    for key, price in EMBEDDING_PRICES_PER_MILLION.items():
        if key in name:
            return price
    return DEFAULT_PRICE_PER_MILLION


class BaseEmbedder(ABC):
    """Abstract interface for text embedding.

    Concrete implementations wrap a provider-specific LlamaIndex embedding and
    expose a small async API used by the indexing and retrieval layers.

    Parameters
    ----------
    model_name : str
        Provider model identifier.
    dimensions : int
        Length of every vector the provider returns.
    max_batch_size : int, optional
        Largest number of texts sent in one provider request. Defaults to ``100``.
    price_per_million_tokens : float or None, optional
        Price override; looked up from the model name when ``None``.
    chars_per_token : int, optional
        Ratio used by :meth:`estimate_tokens`. Defaults to ``4``.
    """

    def __init__(
            self,
            model_name: str,
            dimensions: int,
            *,
            max_batch_size: int = 100,
            price_per_million_tokens: Optional[float] = None,
            chars_per_token: int = 4,
        ):
        if int(dimensions) <= 0:
            raise ValueError("Embedding 'dimensions' must be a positive integer.")
        if int(max_batch_size) <= 0:
            raise ValueError("Embedding 'max_batch_size' must be a positive integer.")
        self._model_name = model_name
        self._dimensions = int(dimensions)
        self.max_batch_size = int(max_batch_size)
        self.price_per_million_tokens = (
            lookup_price_per_million(model_name)
            if price_per_million_tokens is None
            else float(price_per_million_tokens)
        )
        self.chars_per_token = max(1, int(chars_per_token))
        # When set, replaces the chars-per-token estimate.
        self.token_counter: Optional[TokenCounter] = None

    @abstractmethod
    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        """
        Return the LlamaIndex embedding instance.

        Returns
        -------
        LlamaIndexBaseEmbedding
            The underlying LlamaIndex embedding.
        """
        pass

    @classmethod
    @abstractmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: Optional[CallbackManager] = None
        ) -> "BaseEmbedder":
        """Create an embedder from a configuration mapping.

        Parameters
        ----------
        config : dict[str, Any]
            Configuration mapping.
        callback_manager : CallbackManager, optional
            LlamaIndex callback manager forwarded to the wrapped embedding.

        Returns
        -------
        BaseEmbedder
            An initialised embedder implementation.

        Raises
        ------
        KeyError
            If required configuration keys are missing.
        """
        pass

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def generate_embedding(self, text: str) -> list[float]:
        """Embed a single text.

        Parameters
        ----------
        text : str
            Chunk content or query string.

        Returns
        -------
        list[float]
            Embedding vector of length :attr:`dimensions`.
        """
        vector = await self.get_embedder().aget_text_embedding(text)
        return [float(x) for x in vector]

    async def generate_embeddings(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed many texts, preserving input order.

        Texts are sent in sequential requests of at most :attr:`max_batch_size`.

        Parameters
        ----------
        texts : Sequence[str]
            Texts to embed.

        Returns
        -------
        list[list[float]]
            One vector per input text, in input order.
        """
        vectors: list[list[float]] = []
        texts = list(texts)
        for start in range(0, len(texts), self.max_batch_size):
            batch = texts[start:start + self.max_batch_size]
            result = await self.get_embedder().aget_text_embedding_batch(batch)
            vectors.extend([float(x) for x in vec] for vec in result)
        return vectors

    def estimate_tokens(self, text: str) -> int:
        """Token count from :attr:`token_counter`, else ``ceil(len(text) / chars_per_token)``."""
        if not text:
            return 0
        if self.token_counter is not None:
            return self.token_counter.count(text)
        return math.ceil(len(text) / self.chars_per_token)

    def estimate_cost(self, tokens: int) -> float:
        """Return the USD cost of embedding ``tokens`` tokens."""
        return (max(0, int(tokens)) / 1_000_000) * self.price_per_million_tokens


class OpenAILikeEmbedder(BaseEmbedder):
    """Embedder backed by an OpenAI-compatible embedding API via LlamaIndex.

    This implementation wraps :class:`llama_index.embeddings.openai_like.OpenAILikeEmbedding`.

    Parameters
    ----------
    model_name : str
        Model identifier for the embedding endpoint.
    api_base : str
        Base URL for the OpenAI-compatible embedding API endpoint.
    dimensions : int
        Requested vector length (forwarded to the endpoint).
    api_key : str or None, optional
        Credential for the endpoint.
    """

    def __init__(
            self,
            model_name: str,
            *,
            api_base: str,
            dimensions: int = 3072,
            api_key: str = None,
            callback_manager: Optional[CallbackManager] = None,
            model_kwargs: dict[str, Any] = None,
            timeout: float = 60.0,
            max_retries: int = 3,
            max_batch_size: int = 100,
            price_per_million_tokens: Optional[float] = None,
            reuse_client: bool = True,
        ):
        super().__init__(
            model_name,
            dimensions,
            max_batch_size=max_batch_size,
            price_per_million_tokens=price_per_million_tokens,
        )
        from llama_index.embeddings.openai_like import OpenAILikeEmbedding

        self.embedder = OpenAILikeEmbedding(
            model_name=model_name,
            api_base=api_base,
            api_key=api_key,
            dimensions=int(dimensions),
            callback_manager=callback_manager,
            additional_kwargs=model_kwargs or {},
            timeout=timeout,
            max_retries=max_retries,
            embed_batch_size=max_batch_size,
            reuse_client=reuse_client,
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: Optional[CallbackManager] = None
        ) -> "OpenAILikeEmbedder":
        """Create an OpenAI-compatible embedder from a configuration mapping.

        Raises
        ------
        KeyError
            If ``model_name`` or ``api_base`` is missing.
        """
        price = config.get("price_per_million_tokens")
        return cls(
            model_name=config["model_name"],
            api_base=config["api_base"],
            dimensions=int(config.get("dimensions", 3072)),
            api_key=config.get("api_key"),
            callback_manager=callback_manager,
            model_kwargs=config.get("model_kwargs", {}),
            timeout=float(config.get("timeout", config.get("request_timeout", 60.0))),
            max_retries=int(config.get("max_retries", 3)),
            max_batch_size=int(config.get("max_batch_size", 100)),
            price_per_million_tokens=None if price is None else float(price),
            reuse_client=_as_bool(config.get("reuse_client"), True),
        )


class HuggingFaceEmbedder(BaseEmbedder):
    """Embedder backed by a local Hugging Face model via LlamaIndex.

    Requires the ``huggingface`` extra. Local inference is priced at zero.
    """

    def __init__(
            self,
            model_name: str,
            *,
            dimensions: int,
            device: str = "cpu",
            trust_remote_code: bool = False,
            callback_manager: Optional[CallbackManager] = None,
            max_batch_size: int = 100,
        ):
        super().__init__(
            model_name,
            dimensions,
            max_batch_size=max_batch_size,
            price_per_million_tokens=0.0,
        )
        from llama_index.embeddings.huggingface import HuggingFaceEmbedding

        self.embedder = HuggingFaceEmbedding(
            model_name=model_name,
            trust_remote_code=trust_remote_code,
            device=device,
            callback_manager=callback_manager,
            embed_batch_size=max_batch_size,
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: Optional[CallbackManager] = None
        ) -> "HuggingFaceEmbedder":
        return cls(
            model_name=config["model_name"],
            dimensions=int(config["dimensions"]),
            device=config.get("device", "cpu"),
            trust_remote_code=_as_bool(config.get("trust_remote_code"), False),
            callback_manager=callback_manager,
            max_batch_size=int(config.get("max_batch_size", 100)),
        )


# ----------------- Factory helpers -----------------

def _get_embedder_kind(cfg: Mapping[str, Any]) -> str:
    """Return the first non-empty ``kind``/``type``/``provider`` discriminator."""
    for key in ("kind", "type", "provider", "backend", "impl"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_embedder_kind(kind: str) -> str:
    """Normalise an embedder kind/type string to a stable registry key.

    CamelCase becomes snake_case, hyphens and spaces become underscores, and
    ``OpenAILike`` spellings collapse to ``openai_like``.
    """
    k = kind.strip()
    if not k:
        return ""

    out: list[str] = []
    prev = ""
    for ch in k:
        if prev and prev.islower() and ch.isupper():
            out.append("_")
        out.append(ch)
        prev = ch

    k2 = "".join(out).replace("-", "_").replace(" ", "_")
    while "__" in k2:
        k2 = k2.replace("__", "_")
    k2 = k2.lower()

    for alias in ("openailike", "open_ailike", "open_ai_like"):
        k2 = k2.replace(alias, "openai_like")
    return k2


_REGISTRY: dict[str, type[BaseEmbedder]] = {
    "openai_like": OpenAILikeEmbedder,
    "openai": OpenAILikeEmbedder,
    "huggingface": HuggingFaceEmbedder,
    "hugging_face": HuggingFaceEmbedder,
    "hf": HuggingFaceEmbedder,
}


def create_embedder(
    config: Mapping[str, Any],
    callback_manager: Optional[CallbackManager] = None,
) -> BaseEmbedder:
    """Create an embedder implementation from a configuration mapping.

    The implementation is selected by a discriminator field (``kind``,
    ``type``, ``provider``, ``backend`` or ``impl``); without one the
    OpenAI-compatible embedder is used.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the discriminator selects an unsupported implementation.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_embedder expected a mapping/dict, got {type(config)}")

    kind_raw = _get_embedder_kind(config)
    kind = _normalize_embedder_kind(kind_raw) or "openai_like"

    cls = _REGISTRY.get(kind)
    if cls is None:
        raise ValueError(
            f"Unknown embedder kind '{kind_raw}' (normalized to '{kind}'). "
            f"Supported kinds: {sorted(_REGISTRY.keys())}."
        )

    return cls.from_config_dict(dict(config), callback_manager=callback_manager)


__all__ = [
    "BaseEmbedder",
    "DEFAULT_PRICE_PER_MILLION",
    "HuggingFaceEmbedder",
    "OpenAILikeEmbedder",
    "create_embedder",
    "lookup_price_per_million",
]
