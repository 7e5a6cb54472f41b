"""meridian_rag.retrieval.embedding_cache

Content-addressed cache for embedding vectors.

Entries are keyed by ``key_prefix + sha256(text)`` and hold the JSON-encoded
vector with a TTL. An entry is written once: a second write for a live key is
a no-op, and only expiry or explicit invalidation removes it. Cache failures
never propagate: reads degrade to misses and writes are dropped with an error
log.

Classes
-------
CacheBackend
    Protocol implemented by storage backends.
InMemoryCacheBackend
    Process-local dictionary backend with expiry.
RedisCacheBackend
    Backend on ``redis.asyncio``.
CacheStats
    Hit/miss counters snapshot.
EmbeddingCache
    Hashing, serialisation, statistics and failure isolation over a backend.
CachedEmbedder
    Cache-then-provider lookup used by retrievers and indexers.

Functions
---------
create_embedding_cache
    Build an :class:`EmbeddingCache` from the ``cache`` config section.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    async def get_many(self, keys: Sequence[str]) -> list[Optional[str]]: ...

    async def set_many(self, items: Mapping[str, str], ttl_seconds: int) -> None: ...

    async def delete_many(self, keys: Sequence[str]) -> int: ...

    async def clear(self, prefix: str) -> int: ...

    async def ttl(self, key: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class InMemoryCacheBackend:
    """Dictionary backend with per-key expiry.

    Parameters
    ----------
    clock : Callable[[], float], optional
        Monotonic time source, injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[tuple[str, float]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._data[key]
            return None
        return entry

    async def get_many(self, keys: Sequence[str]) -> list[Optional[str]]:
        out: list[Optional[str]] = []
        for key in keys:
            entry = self._live(key)
            out.append(entry[0] if entry else None)
        return out

    async def set_many(self, items: Mapping[str, str], ttl_seconds: int) -> None:
        expires_at = self._clock() + ttl_seconds
        for key, value in items.items():
            if self._live(key) is None:
                self._data[key] = (value, expires_at)

    async def delete_many(self, keys: Sequence[str]) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def clear(self, prefix: str) -> int:
        doomed = [k for k in self._data if k.startswith(prefix)]
        for key in doomed:
            del self._data[key]
        return len(doomed)

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        return int(entry[1] - self._clock())

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()


class RedisCacheBackend:
    """Backend on ``redis.asyncio``.

    Parameters
    ----------
    url : str, optional
        Redis connection URL. Ignored when ``client`` is given.
    client : redis.asyncio.Redis, optional
        Pre-built client.
    """

    def __init__(self, url: str = "redis://localhost:6379/0", *, client: Any = None):
        if client is None:
            import redis.asyncio as aioredis

            client = aioredis.Redis.from_url(url, decode_responses=True)
        self.client = client

    async def get_many(self, keys: Sequence[str]) -> list[Optional[str]]:
        if not keys:
            return []
        return list(await self.client.mget(list(keys)))

    async def set_many(self, items: Mapping[str, str], ttl_seconds: int) -> None:
        async with self.client.pipeline(transaction=False) as pipe:
            for key, value in items.items():
                pipe.set(key, value, ex=ttl_seconds, nx=True)
            await pipe.execute()

    async def delete_many(self, keys: Sequence[str]) -> int:
        if not keys:
            return 0
        return int(await self.client.delete(*keys))

    async def clear(self, prefix: str) -> int:
        keys = [key async for key in self.client.scan_iter(match=f"{prefix}*")]
        if not keys:
            return 0
        return int(await self.client.delete(*keys))

    async def ttl(self, key: str) -> int:
        return int(await self.client.ttl(key))

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    hit_rate: float


class EmbeddingCache:
    """Embedding cache with statistics and failure isolation.

    Parameters
    ----------
    backend : CacheBackend
        Storage backend.
    ttl_seconds : int, optional
        Entry lifetime. Defaults to one day.
    key_prefix : str, optional
        Namespace prepended to every content hash. Defaults to ``"emb:"``.
    metrics : RagMetricsCollector or None, optional
        Receives one hit or miss event (with latency) per looked-up text.
    """

    def __init__(
            self,
            backend: CacheBackend,
            *,
            ttl_seconds: int = 86400,
            key_prefix: str = "emb:",
            metrics: Any = None,
        ):
        self.backend = backend
        self.ttl_seconds = int(ttl_seconds)
        self.key_prefix = key_prefix
        self.metrics = metrics
        self._hits = 0
        self._misses = 0

    def make_key(self, text: str) -> str:
        return self.key_prefix + hashlib.sha256(text.encode("utf-8")).hexdigest()

    def _record(self, hit: bool, latency_ms: float) -> None:
        if hit:
            self._hits += 1
        else:
            self._misses += 1
        if self.metrics is not None:
            if hit:
                self.metrics.record_cache_hit(latency_ms)
            else:
                self.metrics.record_cache_miss(latency_ms)

    async def get(self, text: str) -> Optional[list[float]]:
        """Return the cached vector for ``text``, or ``None`` on a miss or failure."""
        return (await self.mget([text]))[0]

    async def mget(self, texts: Sequence[str]) -> list[Optional[list[float]]]:
        """Return cached vectors positionally aligned with ``texts``."""
        if not texts:
            return []
        started = time.perf_counter()
        try:
            raw = await self.backend.get_many([self.make_key(t) for t in texts])
        except Exception:
            logger.exception("Embedding cache read failed; treating %d lookups as misses", len(texts))
            raw = [None] * len(texts)

        latency_ms = (time.perf_counter() - started) * 1000.0
        out: list[Optional[list[float]]] = []
        for value in raw:
            vector = None
            if value is not None:
                try:
                    vector = [float(x) for x in json.loads(value)]
                except (TypeError, ValueError):
                    logger.warning("Discarding undecodable embedding cache entry")
            self._record(vector is not None, latency_ms)
            out.append(vector)
        return out

    async def set(self, text: str, embedding: Sequence[float]) -> None:
        await self.mset([(text, embedding)])

    async def mset(self, items: Sequence[tuple[str, Sequence[float]]]) -> None:
        """Store several vectors. Existing live entries are left untouched."""
        if not items:
            return
        payload = {self.make_key(text): json.dumps(list(vector)) for text, vector in items}
        try:
            await self.backend.set_many(payload, self.ttl_seconds)
        except Exception:
            logger.exception("Embedding cache write failed for %d entries", len(payload))

    async def delete(self, text: str) -> None:
        await self.mdelete([text])

    async def mdelete(self, texts: Sequence[str]) -> None:
        if not texts:
            return
        try:
            await self.backend.delete_many([self.make_key(t) for t in texts])
        except Exception:
            logger.exception("Embedding cache delete failed")

    async def clear(self) -> None:
        """Remove every entry under this cache's key prefix."""
        try:
            removed = await self.backend.clear(self.key_prefix)
            logger.info("Embedding cache cleared (%d keys)", removed)
        except Exception:
            logger.exception("Embedding cache clear failed")

    def get_stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / total if total else 0.0,
        )

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0

    async def is_connected(self) -> bool:
        try:
            return await self.backend.ping()
        except Exception:
            return False

    async def get_ttl(self, text: str) -> int:
        """Return seconds until expiry, ``-2`` if absent, ``-1`` on failure."""
        try:
            return await self.backend.ttl(self.make_key(text))
        except Exception:
            logger.exception("Embedding cache TTL lookup failed")
            return -1

    async def close(self) -> None:
        try:
            await self.backend.close()
        except Exception:
            logger.exception("Embedding cache close failed")


class CachedEmbedder:
    """Cache-then-provider embedding lookup.

    Parameters
    ----------
    embedder : BaseEmbedder
        Provider consulted on a cache miss.
    cache : EmbeddingCache or None
        Shared cache. When ``None`` every lookup goes to the provider.
    """

    def __init__(self, embedder: Any, cache: Optional[EmbeddingCache] = None):
        self.embedder = embedder
        self.cache = cache

    async def embed(self, text: str) -> tuple[list[float], bool]:
        """Return ``(vector, cache_hit)`` for ``text``."""
        if self.cache is not None:
            cached = await self.cache.get(text)
            if cached is not None:
                return cached, True

        vector = await self.embedder.generate_embedding(text)
        if self.cache is not None:
            await self.cache.set(text, vector)
        return vector, False


def create_embedding_cache(config: Mapping[str, Any] | None, *, metrics: Any = None) -> EmbeddingCache:
    """Build an :class:`EmbeddingCache` from the ``cache`` config section.

    Raises
    ------
    ValueError
        If ``backend`` is neither ``redis`` nor ``memory``.
    """
    cfg = dict(config or {})
    kind = str(cfg.get("backend") or cfg.get("type") or "memory").lower().strip()

    if kind in {"memory", "in_memory", "inmemory"}:
        backend: CacheBackend = InMemoryCacheBackend()
    elif kind == "redis":
        backend = RedisCacheBackend(str(cfg.get("url") or "redis://localhost:6379/0"))
    else:
        raise ValueError(f"Unsupported cache backend {kind!r}. Supported backends: ['memory', 'redis'].")

    return EmbeddingCache(
        backend,
        ttl_seconds=int(cfg.get("ttl_seconds", 86400)),
        key_prefix=str(cfg.get("key_prefix", "emb:")),
        metrics=metrics,
    )


__all__ = [
    "CacheBackend",
    "CacheStats",
    "CachedEmbedder",
    "EmbeddingCache",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "create_embedding_cache",
]
