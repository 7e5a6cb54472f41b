"""meridian_rag.common.tokenisation

Token counting utilities.

Token counts feed embedding cost estimates and indexing totals. Components
depend only on the minimal :class:`TokenCounter` interface so the concrete
implementation can be selected via configuration (``tokenization`` section).

Classes
-------
TokenCounter
    Minimal protocol defining the token-counting interface.
HeuristicTokenCounter
    Dependency-free approximate counter (``ceil(len / chars_per_token)``).
TiktokenTokenCounter
    Exact token counter backed by the ``tiktoken`` library.

Functions
---------
create_token_counter
    Build a token counter from a ``tokenization`` config mapping.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import tiktoken

DEFAULT_ENCODING = "cl100k_base"


class TokenCounter(Protocol):
    """A minimal interface for token-based sizing."""

    def count(self, text: str) -> int:
        """Return the number of tokens in ``text``."""


@dataclass(frozen=True)
class HeuristicTokenCounter:
    """Dependency-free, approximate token counter.

    Estimates token counts using a fixed characters-per-token ratio, rounding
    up so any non-empty text counts as at least one token.

    Attributes
    ----------
    chars_per_token : int
        Approximate number of characters per token. Defaults to ``4``.
    """

    chars_per_token: int = 4

    def count(self, text: str) -> int:
        if not text:
            return 0
        cpt = max(1, int(self.chars_per_token))
        return math.ceil(len(text) / cpt)


@dataclass(frozen=True)
class TiktokenTokenCounter:
    """Exact counts for OpenAI-family embedding models.

    Attributes
    ----------
    encoding : tiktoken.Encoding
        Loaded encoding.
    """

    encoding: Any

    @property
    def encoding_name(self) -> str:
        return self.encoding.name

    @classmethod
    def for_model(cls, model_name: Optional[str], fallback: str = DEFAULT_ENCODING) -> "TiktokenTokenCounter":
        """Use the encoding ``tiktoken`` maps ``model_name`` to, else ``fallback``.

        Provider-prefixed names (``"openai/text-embedding-3-small"``) are
        looked up by their last path segment.
        """
        if model_name:
            try:
                return cls(tiktoken.encoding_for_model(model_name.rsplit("/", 1)[-1]))
            except KeyError:
                pass
        return cls(tiktoken.get_encoding(fallback))

    def count(self, text: str) -> int:
        if not text:
            return 0
        # Special-token text inside source files is counted as plain text.
        return len(self.encoding.encode(text, disallowed_special=()))


def create_token_counter(cfg: Mapping[str, Any] | None, model_name: Optional[str] = None) -> TokenCounter:
    """Build a token counter from a ``tokenization`` config mapping.

    Parameters
    ----------
    cfg : Mapping[str, Any] or None
        Section with a ``type`` of ``heuristic`` (default) or ``tiktoken``.
        A tiktoken section may name an ``encoding``; otherwise the encoding is
        resolved from ``model_name``.
    model_name : str or None, optional
        Embedding model the counts are for.

    Returns
    -------
    TokenCounter
        The configured counter.

    Raises
    ------
    ValueError
        If an unknown tokenization type is configured.
    """
    cfg = dict(cfg or {})
    kind = str(cfg.get("type") or "heuristic").lower().replace("-", "_")

    if kind in {"heuristic", "char", "chars"}:
        cpt = cfg.get("chars_per_token", 4)
        try:
            cpt = int(cpt)
        except (TypeError, ValueError):
            cpt = 4
        return HeuristicTokenCounter(chars_per_token=cpt)

    if kind in {"tiktoken", "openai", "openai_like"}:
        encoding = cfg.get("encoding")
        if encoding:
            return TiktokenTokenCounter(tiktoken.get_encoding(str(encoding)))
        return TiktokenTokenCounter.for_model(model_name)

    raise ValueError(f"Unknown tokenization type: {kind!r}")


__all__ = [
    "TokenCounter",
    "HeuristicTokenCounter",
    "TiktokenTokenCounter",
    "create_token_counter",
]
