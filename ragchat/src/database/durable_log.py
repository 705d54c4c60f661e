"""
RagChat - MongoTurnLog
=======================
Append-only, best-effort persistence of committed turns, backed by
MongoDB via ``motor``.  It is decoupled from the hot path: the
orchestrator never waits on it to answer, and its failures are logged,
never surfaced.

The log is not a source for the session cache; rebuilding Redis from
it is outside this module.

Collection schema (one document per turn)::

    {
        "session_id": str,
        "role": "user" | "assistant",
        "content": str,
        "timestamp": datetime
    }
"""

from __future__ import annotations

from datetime import datetime

from ragchat.src.core.models import Turn, utc_now
from ragchat.src.utils.logger import get_logger

logger = get_logger(__name__)


class MongoTurnLog:
    """
    Parameters
    ----------
    collection
        A ``motor`` collection (``AsyncIOMotorCollection``).
    """

    __slots__ = ("_collection",)

    def __init__(self, collection: object) -> None:
        self._collection = collection


    async def append(self, session_id: str, role: str, content: str, timestamp: datetime | None = None) -> None:
        """Insert one turn row."""
        doc = {"session_id": session_id, "role": role, "content": content, "timestamp": timestamp or utc_now()}
        await self._collection.insert_one(doc)  # type: ignore[attr-defined]
        logger.debug("[LOG] Appended %s turn for '%s'.", role, session_id)


    async def history(self, session_id: str) -> list[Turn]:
        """Every logged turn of a session, oldest first."""
        cursor = self._collection.find({"session_id": session_id}, {"_id": 0, "role": 1, "content": 1, "timestamp": 1}).sort("timestamp", 1)  # type: ignore[attr-defined]
        rows = await cursor.to_list(length=None)
        return [Turn(role=row["role"], content=row["content"], created_at=row["timestamp"]) for row in rows]


    async def delete_session(self, session_id: str) -> int:
        """Remove every row of a session.  Returns the number removed."""
        result = await self._collection.delete_many({"session_id": session_id})  # type: ignore[attr-defined]
        logger.info("[LOG] Deleted %d row(s) for '%s'.", result.deleted_count, session_id)
        return result.deleted_count


    def __repr__(self) -> str:
        return f"MongoTurnLog(collection='{getattr(self._collection, 'name', '?')}')"
