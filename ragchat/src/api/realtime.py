"""
RagChat - RealtimeChannel
==========================
Per-connection delivery of streamed answers and session requests to one
remote listener (a websocket in production).

Inbound messages::

    {"type": "join" | "leave" | "send" | "get_history" | "clear",
     "session_id": str, "message": str}

Outbound events::

    {"event": "joined" | "left" | "received" | "fragment" | "complete"
              | "error" | "history" | "cleared",
     "session_id": str, ...}

A ``send`` produces ``received``, zero or more ``fragment{text}`` and
then exactly one of ``complete{answer, sources, timestamp}`` or
``error{reason}``.  It runs as its own task, so ``get_history`` and
``clear`` are answered while a stream is in flight.  Writes to the
listener are serialised by a lock; events of one stream keep their
order.

When the listener goes away, in-flight streams are detached: nothing
more is delivered, but generation completes and the turn is committed.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from ragchat.src.core.chat_service import ChatService
from ragchat.src.core.errors import InvalidInput, RagChatError
from ragchat.src.core.models import utc_now
from ragchat.src.core.streaming import QueryStream
from ragchat.src.utils.logger import get_logger
from ragchat.src.utils.text_utils import preview

logger = get_logger(__name__)

Payload = dict[str, Any]


class Listener(Protocol):
    """The remote end of one connection.  ``fastapi.WebSocket`` satisfies this."""

    async def send_json(self, data: Any) -> None: ...


class RealtimeChannel:

    __slots__ = ("_service", "_listener", "_send_lock", "_joined", "_streams", "_tasks", "_closed")

    def __init__(self, service: ChatService, listener: Listener) -> None:
        self._service = service
        self._listener = listener
        self._send_lock = asyncio.Lock()
        self._joined: set[str] = set()
        self._streams: set[QueryStream] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False


    @property
    def joined_sessions(self) -> frozenset[str]:
        return frozenset(self._joined)


    @property
    def closed(self) -> bool:
        return self._closed


    async def handle(self, payload: Payload) -> None:
        """Process a single inbound message."""
        message_type = payload.get("type")
        session_id = payload.get("session_id")
        try:
            if message_type == "join":
                await self._join(session_id)
            elif message_type == "leave":
                await self._leave(session_id)
            elif message_type == "send":
                self._start_send(session_id, payload.get("message"))
            elif message_type == "get_history":
                await self._history(session_id)
            elif message_type == "clear":
                await self._clear(session_id)
            else:
                raise InvalidInput(f"unsupported message type: {message_type!r}")
        except RagChatError as exc:
            logger.warning("[CHANNEL] '%s' rejected: %s", message_type, exc.reason)
            await self._emit("error", session_id, reason=exc.reason)


    async def reject(self, reason: str) -> None:
        """Report a frame that could not be parsed into a message."""
        await self._emit("error", None, reason=reason)


    async def close(self) -> None:
        """The listener is gone: detach in-flight streams and stop delivering."""
        if self._closed:
            return
        self._closed = True
        self._detach_all()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("[CHANNEL] Closed (sessions=%s).", sorted(self._joined))


    async def wait_idle(self) -> None:
        """Wait until every ``send`` issued so far has delivered its terminal event."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


    # ── Requests ───────────────────────────────────────────────────────

    async def _join(self, session_id: str | None) -> None:
        if not session_id:
            raise InvalidInput("session id is required")
        self._joined.add(session_id)
        logger.info("[CHANNEL] Joined '%s'.", session_id)
        await self._emit("joined", session_id)


    async def _leave(self, session_id: str | None) -> None:
        if not session_id:
            raise InvalidInput("session id is required")
        self._joined.discard(session_id)
        await self._emit("left", session_id)


    async def _history(self, session_id: str | None) -> None:
        turns = await self._service.get_history(session_id)  # type: ignore[arg-type]
        await self._emit("history", session_id, turns=[t.to_dict() for t in turns])


    async def _clear(self, session_id: str | None) -> None:
        await self._service.clear_session(session_id)  # type: ignore[arg-type]
        await self._emit("cleared", session_id)


    def _start_send(self, session_id: str | None, message: str | None) -> None:
        session_id = session_id or self._service.create_session()
        stream = self._service.send_query_streaming(session_id, message)  # type: ignore[arg-type]
        logger.info("[CHANNEL] Streaming '%s' for '%s'.", preview(message or ""), session_id)

        task = asyncio.create_task(self._deliver(stream))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


    async def _deliver(self, stream: QueryStream) -> None:
        session_id = stream.session_id
        self._streams.add(stream)
        try:
            await self._emit("received", session_id)
            async for fragment in stream:
                await self._emit("fragment", session_id, text=fragment)
            if stream.result is None:
                return
            result = stream.result
            await self._emit("complete", session_id, answer=result.answer, sources=[s.to_dict() for s in result.sources], timestamp=utc_now().isoformat())
        except RagChatError as exc:
            await self._emit("error", session_id, reason=exc.reason)
        finally:
            self._streams.discard(stream)


    # ── Delivery ───────────────────────────────────────────────────────

    async def _emit(self, event: str, session_id: str | None, **fields: Any) -> None:
        if self._closed:
            return
        payload: Payload = {"event": event, "session_id": session_id, **fields}
        async with self._send_lock:
            if self._closed:
                return
            try:
                await self._listener.send_json(payload)
            except Exception as exc:
                logger.warning("[CHANNEL] Send of '%s' failed, treating listener as gone: %s", event, exc)
                self._closed = True
                self._detach_all()


    def _detach_all(self) -> None:
        for stream in list(self._streams):
            stream.detach()
        self._streams.clear()
