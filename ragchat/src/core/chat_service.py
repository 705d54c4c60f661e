"""
RagChat - ChatService
======================
The caller-facing surface of the query core: session creation, blocking
and streaming queries, history, clearing and enumeration.  Transport
layers (the websocket channel, the CLI) talk to this class only.
"""

from __future__ import annotations

import uuid

from ragchat.src.core.errors import InvalidInput
from ragchat.src.core.models import QueryResult, Turn
from ragchat.src.core.orchestrator import QueryOrchestrator, SessionStore
from ragchat.src.core.streaming import QueryStream
from ragchat.src.utils.logger import get_logger

logger = get_logger(__name__)


def _require_session_id(session_id: str | None) -> str:
    if not isinstance(session_id, str) or not session_id.strip():
        raise InvalidInput("session id is required")
    return session_id


class ChatService:
    """
    Parameters
    ----------
    orchestrator
        Runs the queries.
    session_store
        The store the orchestrator commits to; read for history.
    durable_log
        Optional; anything with ``delete_session(session_id)``.  Cleared
        alongside the session, best-effort.
    """

    __slots__ = ("_orchestrator", "_sessions", "_log")

    def __init__(self, orchestrator: QueryOrchestrator, session_store: SessionStore, durable_log: object | None = None) -> None:
        self._orchestrator = orchestrator
        self._sessions = session_store
        self._log = durable_log


    @staticmethod
    def create_session() -> str:
        return str(uuid.uuid4())


    async def send_query(self, session_id: str, text: str) -> QueryResult:
        return await self._orchestrator.process(session_id, text)


    def send_query_streaming(self, session_id: str, text: str) -> QueryStream:
        return self._orchestrator.process_stream(session_id, text)


    async def get_history(self, session_id: str) -> list[Turn]:
        """
        Raises
        ------
        CacheDegraded
            If the session store is unreachable.
        """
        return await self._sessions.read(_require_session_id(session_id))


    async def clear_session(self, session_id: str) -> None:
        """Remove the session's turns, then its durable-log rows (best-effort)."""
        session_id = _require_session_id(session_id)
        await self._sessions.clear(session_id)
        if self._log is None:
            return
        try:
            await self._log.delete_session(session_id)  # type: ignore[attr-defined]
        except Exception:
            logger.exception("[LOG] Could not delete durable rows for '%s'.", session_id)


    async def list_sessions(self) -> list[str]:
        return sorted(await self._sessions.list_active_session_ids())


    async def aclose(self) -> None:
        """Wait for background durable-log writes."""
        await self._orchestrator.drain()
