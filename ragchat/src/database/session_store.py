"""
RagChat - RedisSessionStore
============================
Ordered turn history per conversation, with a sliding expiry.  This is
the single source of truth for "what has been said so far".

Key layout::

    {prefix}session:{session_id}   →  Redis LIST of JSON-encoded turns

Guarantees
----------
- **Atomic pairs** — ``append_pair`` pushes the user and assistant turns
  with one ``RPUSH`` inside a ``MULTI/EXEC`` transaction, so no reader
  can ever observe one without the other.
- **Sliding TTL** — every read and every write re-arms ``EXPIRE``.
- **Unknown is empty** — reading or clearing a session that does not
  exist is not an error.

Concurrency
-----------
All operations are single-key, so concurrent tasks need no external
locking.  Two queries on the same session may interleave; each pair
lands in the order its transaction executes.
"""

from __future__ import annotations

from redis.exceptions import RedisError

from ragchat.config.settings import settings
from ragchat.src.core.errors import CacheDegraded
from ragchat.src.core.models import Turn
from ragchat.src.utils.logger import get_logger

logger = get_logger(__name__)


class RedisSessionStore:
    """
    Parameters
    ----------
    client
        A ``redis.asyncio.Redis`` client (``decode_responses=True``).
    ttl_seconds
        Sliding session expiry.  Defaults to ``settings.SESSION_TTL_SECONDS``.
    key_prefix
        Namespace prepended to every key.
    """

    __slots__ = ("_client", "_ttl", "_prefix")

    def __init__(self, client: object, ttl_seconds: int | None = None, key_prefix: str | None = None) -> None:
        self._client = client
        self._ttl = settings.SESSION_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        if self._ttl <= 0:
            raise ValueError(f"session ttl must be positive, got {self._ttl}")
        self._prefix = settings.REDIS_KEY_PREFIX if key_prefix is None else key_prefix


    def _key(self, session_id: str) -> str:
        return f"{self._prefix}session:{session_id}"


    async def read(self, session_id: str) -> list[Turn]:
        """Return the session's turns in conversational order (empty if unknown)."""
        key = self._key(session_id)
        try:
            async with self._client.pipeline(transaction=True) as pipe:  # type: ignore[attr-defined]
                pipe.lrange(key, 0, -1)
                pipe.expire(key, self._ttl)
                raw_turns, _ = await pipe.execute()
        except RedisError as exc:
            raise CacheDegraded(f"session store unavailable: {exc}") from exc

        try:
            turns = [Turn.from_json(raw) for raw in raw_turns]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise CacheDegraded(f"corrupt history for session {session_id!r}: {exc}") from exc
        logger.debug("[SESSION] Read %d turn(s) for '%s'.", len(turns), session_id)
        return turns


    async def append_pair(self, session_id: str, user_turn: Turn, assistant_turn: Turn) -> None:
        """Append the user turn and the assistant turn as one unit; refresh TTL."""
        key = self._key(session_id)
        try:
            async with self._client.pipeline(transaction=True) as pipe:  # type: ignore[attr-defined]
                pipe.rpush(key, user_turn.to_json(), assistant_turn.to_json())
                pipe.expire(key, self._ttl)
                length, _ = await pipe.execute()
        except RedisError as exc:
            raise CacheDegraded(f"session store unavailable: {exc}") from exc
        logger.info("[SESSION] Committed turn pair to '%s' (%d turns total).", session_id, length)


    async def clear(self, session_id: str) -> None:
        """Remove all turns and the expiry.  Idempotent."""
        try:
            removed = await self._client.delete(self._key(session_id))  # type: ignore[attr-defined]
        except RedisError as exc:
            raise CacheDegraded(f"session store unavailable: {exc}") from exc
        logger.info("[SESSION] Cleared '%s' (existed=%s).", session_id, bool(removed))


    async def list_active_session_ids(self) -> set[str]:
        """Best-effort enumeration of sessions that have not expired."""
        pattern = self._key("*")
        strip = len(self._key(""))
        try:
            return {key[strip:] async for key in self._client.scan_iter(match=pattern)}  # type: ignore[attr-defined]
        except RedisError as exc:
            raise CacheDegraded(f"session store unavailable: {exc}") from exc


    def __repr__(self) -> str:
        return f"RedisSessionStore(ttl={self._ttl}s, prefix='{self._prefix}')"
