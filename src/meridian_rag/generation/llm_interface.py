"""meridian_rag.generation.llm_interface

Chat model access for the reranker.

Reranking needs exactly one operation from a language model: send a prompt,
get text back, asynchronously. Everything here wraps LangChain's
``ChatOpenAI`` so any OpenAI-compatible endpoint (OpenRouter, vLLM, a local
gateway) can serve it.

Classes
-------
BaseLLM
    Minimal async completion interface.
OpenAIChatLikeLLM
    ``ChatOpenAI``-backed implementation.

Functions
---------
create_llm
    Construct an LLM implementation from a configuration mapping.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from langchain_core.callbacks import BaseCallbackHandler
from langchain_openai import ChatOpenAI

logger = logging.getLogger(__name__)


class BaseLLM(ABC):
    """Async text completion used by second-stage rerankers."""

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: Mapping[str, Any], callback_manager: Optional[BaseCallbackHandler] = None):
        """Build an instance from the ``reranker.llm`` config mapping."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass

    @abstractmethod
    def get_llm(self) -> Any:
        """Return the wrapped LangChain model."""

    @abstractmethod
    async def acomplete(self, prompt: str, **kwargs) -> str:
        """Return the model's reply to ``prompt``.

        Parameters
        ----------
        prompt : str
            Full prompt text.
        **kwargs
            Per-call options forwarded to the model, e.g. ``max_tokens``.
        """


class OpenAIChatLikeLLM(BaseLLM):
    """Chat completions against an OpenAI-compatible API.

    Parameters
    ----------
    model_name : str
        Model identifier, e.g. ``"anthropic/claude-3-haiku"``.
    api_base : str or None
        Endpoint base URL. ``None`` uses the OpenAI default.
    api_key : str or None, optional
        Defaults to ``"fake"`` for gateways without authentication.
    callback_manager : BaseCallbackHandler, optional
        Attached to the model as its only callback.
    **model_kwargs
        Extra ``ChatOpenAI`` options such as ``temperature``.

    Raises
    ------
    ValueError
        If ``model_name`` is empty.
    """

    def __init__(
        self,
        model_name: str,
        api_base: Optional[str],
        api_key: Optional[str] = "fake",
        callback_manager: Optional[BaseCallbackHandler] = None,
        **model_kwargs: Any,
    ):
        if not model_name:
            raise ValueError("'model_name' is required for an OpenAI-compatible chat LLM.")

        self._model_name = model_name
        self.api_base = api_base
        self.model_kwargs = dict(model_kwargs)

        init_kwargs: dict[str, Any] = {"model": model_name, **self.model_kwargs}
        if api_base:
            init_kwargs["base_url"] = api_base
        if api_key is not None:
            init_kwargs["api_key"] = api_key
        if callback_manager is not None:
            init_kwargs["callbacks"] = [callback_manager]

        self.llm = ChatOpenAI(**init_kwargs)

    @property
    def model_name(self) -> str:
        return self._model_name

    @classmethod
    def from_config_dict(
        cls,
        config: Mapping[str, Any],
        callback_manager: Optional[BaseCallbackHandler] = None,
    ) -> "OpenAIChatLikeLLM":
        return cls(
            model_name=config.get("model_name"),
            api_base=config.get("api_base"),
            api_key=config.get("api_key", "fake"),
            callback_manager=callback_manager,
            **dict(config.get("model_kwargs") or {}),
        )

    def get_llm(self) -> Any:
        return self.llm

    async def acomplete(self, prompt: str, **kwargs) -> str:
        message = await self.llm.ainvoke(prompt, **kwargs)
        content = getattr(message, "content", message)
        # Structured content (a list of parts) is flattened to its repr.
        return content if isinstance(content, str) else str(content)


# ----------------- Factory helpers -----------------

_LLM_REGISTRY: dict[str, type[BaseLLM]] = {
    "openai_chat": OpenAIChatLikeLLM,
    "openai": OpenAIChatLikeLLM,
    "openrouter": OpenAIChatLikeLLM,
    "open_router": OpenAIChatLikeLLM,
}

_CHAT_ALIASES = ("chatopenai", "chat_openai", "openai_chat_like", "open_ai_chat_like")


def _get_llm_kind(cfg: Mapping[str, Any]) -> str:
    for key in ("type", "kind", "provider"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_llm_kind(kind: str) -> str:
    """Snake-case ``kind`` and fold chat-backend spellings into ``openai_chat``."""
    chars: list[str] = []
    for i, ch in enumerate(kind.strip()):
        if i and ch.isupper() and chars[-1].islower():
            chars.append("_")
        chars.append(ch)

    key = "_".join(part for part in "".join(chars).replace("-", " ").replace("_", " ").split())
    key = key.lower()
    for alias in _CHAT_ALIASES:
        key = key.replace(alias, "openai_chat")
    return key


def create_llm(config: Mapping[str, Any], callback_manager: Optional[BaseCallbackHandler] = None) -> BaseLLM:
    """Create an LLM from ``config`` using its ``type`` (or ``kind``/``provider``).

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the discriminator is missing or unknown, or the backend rejects the
        remaining settings.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_llm expected a mapping/dict, got {type(config)}")

    kind_raw = _get_llm_kind(config)
    kind = _normalize_llm_kind(kind_raw)
    if not kind:
        raise ValueError("LLM config is missing a discriminator field (type/kind/provider). Add e.g. type: openai_chat.")

    cls = _LLM_REGISTRY.get(kind)
    if cls is None:
        raise ValueError(f"Unknown LLM kind '{kind_raw}'. Supported kinds: {sorted(_LLM_REGISTRY)}.")

    logger.debug("Creating %s LLM for model %s", kind, config.get("model_name"))
    return cls.from_config_dict(config, callback_manager=callback_manager)


__all__ = ["BaseLLM", "OpenAIChatLikeLLM", "create_llm"]
