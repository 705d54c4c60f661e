"""
RagChat - RedisEmbeddingCache
==============================
Content-addressed cache of query embeddings.

Key layout::

    {prefix}embedding:{model_id}:{sha256(text)}

The embedding model identity is part of the key, so switching
``EMBEDDING_MODEL`` can never serve a vector produced by another model.

The stored value is JSON holding the source text *and* the vector.
``get`` compares the stored text with the requested one and treats a
mismatch as a miss, which rules out digest collisions merging two
distinct strings.

Entries are immutable and keyed deterministically, so no locking is
needed: two tasks embedding the same text may both ``put``; the last
write wins and both values are equal.
"""

from __future__ import annotations

import json

from redis.exceptions import RedisError

from ragchat.config.settings import settings
from ragchat.src.core.errors import CacheDegraded
from ragchat.src.utils.logger import get_logger
from ragchat.src.utils.text_utils import preview, text_digest

logger = get_logger(__name__)

Vector = list[float]


class RedisEmbeddingCache:
    """
    Parameters
    ----------
    client
        A ``redis.asyncio.Redis`` client (``decode_responses=True``).
    model_id
        Identity of the embedding model whose vectors are cached.
    ttl_seconds
        Default expiry for ``put``.
    key_prefix
        Namespace prepended to every key.
    """

    __slots__ = ("_client", "_model_id", "_ttl", "_prefix")

    def __init__(self, client: object, model_id: str, ttl_seconds: int | None = None, key_prefix: str | None = None) -> None:
        self._client = client
        self._model_id = model_id
        self._ttl = settings.EMBEDDING_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        if self._ttl <= 0:
            raise ValueError(f"embedding cache ttl must be positive, got {self._ttl}")
        self._prefix = settings.REDIS_KEY_PREFIX if key_prefix is None else key_prefix


    @property
    def model_id(self) -> str:
        return self._model_id


    def key_for(self, text: str) -> str:
        return f"{self._prefix}embedding:{self._model_id}:{text_digest(text)}"


    async def get(self, text: str) -> Vector | None:
        """
        Return the cached vector for *text*, or ``None`` on a miss.

        Raises
        ------
        CacheDegraded
            If Redis is unreachable.
        """
        try:
            raw = await self._client.get(self.key_for(text))  # type: ignore[attr-defined]
        except RedisError as exc:
            raise CacheDegraded(f"embedding cache unavailable: {exc}") from exc

        if raw is None:
            logger.debug("[CACHE] MISS: '%s'", preview(text))
            return None

        try:
            entry = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("[CACHE] Corrupt entry for '%s' — treating as miss.", preview(text))
            return None

        if entry.get("text") != text:
            logger.warning("[CACHE] Digest collision for '%s' — treating as miss.", preview(text))
            return None

        logger.debug("[CACHE] HIT: '%s'", preview(text))
        return [float(x) for x in entry["vector"]]


    async def put(self, text: str, vector: Vector, ttl: int | None = None) -> None:
        """
        Store *vector* for *text* with an expiry.

        Raises
        ------
        ValueError
            If the effective ttl is not positive.
        CacheDegraded
            If Redis is unreachable.
        """
        expiry = self._ttl if ttl is None else ttl
        if expiry <= 0:
            raise ValueError(f"embedding cache ttl must be positive, got {expiry}")
        payload = json.dumps({"text": text, "model": self._model_id, "vector": list(vector)}, ensure_ascii=False)
        try:
            await self._client.set(self.key_for(text), payload, ex=expiry)  # type: ignore[attr-defined]
        except RedisError as exc:
            raise CacheDegraded(f"embedding cache unavailable: {exc}") from exc
        logger.debug("[CACHE] STORED: '%s' (dim=%d)", preview(text), len(vector))


    def __repr__(self) -> str:
        return f"RedisEmbeddingCache(model='{self._model_id}', ttl={self._ttl}s)"
