"""
RagChat - Fragment Streaming
=============================
The hand-off between the task that drives generation and the task that
delivers fragments to a listener.

``FragmentChannel``
    One producer, one consumer.  Fragments are buffered up to
    ``capacity``; the producer never waits on the consumer, so a slow
    consumer cannot stall generation.  When the buffer is full the
    producer gets ``DeliveryOverrun`` and aborts the query.  The stream
    ends with exactly one terminal signal, ``complete`` or ``fail``,
    which bypasses the bound.
``QueryStream``
    What ``QueryOrchestrator.process_stream`` hands back: an async
    iterator of text fragments, finite and not restartable.  The
    producer task starts on first iteration.  After the last fragment,
    ``result`` holds the ``QueryResult``; a failure is raised from the
    iterator instead.

Detaching
---------
``QueryStream.detach()`` is for a consumer that goes away mid-stream.
Fragments stop being buffered, but generation continues to the end and
the turn is still committed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ragchat.src.core.errors import DeliveryOverrun, RagChatError
from ragchat.src.core.models import QueryResult

# Producer tasks outlive detached consumers; hold them until they finish.
_running_producers: set[asyncio.Task[None]] = set()


@dataclass(frozen=True, slots=True)
class _Complete:
    result: QueryResult


@dataclass(frozen=True, slots=True)
class _Failed:
    error: RagChatError


class FragmentChannel:

    __slots__ = ("_queue", "_capacity", "_closed", "_detached")

    def __init__(self, capacity: int) -> None:
        self._queue: asyncio.Queue[str | _Complete | _Failed] = asyncio.Queue()
        self._capacity = capacity
        self._closed = False
        self._detached = False


    @property
    def detached(self) -> bool:
        return self._detached


    def push(self, fragment: str) -> None:
        """
        Buffer one fragment for the consumer.

        Raises
        ------
        DeliveryOverrun
            If ``capacity`` fragments are already waiting.
        """
        if self._closed:
            raise RuntimeError("channel already closed")
        if self._detached:
            return
        if self._queue.qsize() >= self._capacity:
            raise DeliveryOverrun(f"consumer fell {self._capacity} fragments behind")
        self._queue.put_nowait(fragment)


    def complete(self, result: QueryResult) -> None:
        self._finish(_Complete(result))


    def fail(self, error: RagChatError) -> None:
        self._finish(_Failed(error))


    def _finish(self, signal: _Complete | _Failed) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(signal)


    def detach(self) -> None:
        """Stop buffering; drop anything not yet delivered."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()


    async def receive(self) -> str | _Complete | _Failed:
        return await self._queue.get()


class QueryStream:
    """
    Lazy sequence of fragments for one streaming query.

    Usage::

        stream = orchestrator.process_stream(session_id, "What happened today?")
        async for fragment in stream:
            print(fragment, end="")
        print(stream.result.sources)
    """

    __slots__ = ("session_id", "_channel", "_producer", "_task", "_result", "_finished")

    def __init__(self, session_id: str, producer: Callable[[FragmentChannel], Awaitable[None]], capacity: int) -> None:
        self.session_id = session_id
        self._channel = FragmentChannel(capacity)
        self._producer = producer
        self._task: asyncio.Task[None] | None = None
        self._result: QueryResult | None = None
        self._finished = False


    @property
    def result(self) -> QueryResult | None:
        """The completed query, available once iteration has ended normally."""
        return self._result


    def start(self) -> None:
        """Start the producer task (idempotent).  Iteration calls this implicitly."""
        if self._task is None:
            self._task = asyncio.create_task(self._producer(self._channel), name=f"query-stream:{self.session_id}")
            _running_producers.add(self._task)
            self._task.add_done_callback(_running_producers.discard)


    def __aiter__(self) -> QueryStream:
        return self


    async def __anext__(self) -> str:
        if self._finished:
            raise StopAsyncIteration
        self.start()
        item = await self._channel.receive()
        if isinstance(item, str):
            return item

        self._finished = True
        if isinstance(item, _Complete):
            self._result = item.result
            raise StopAsyncIteration
        raise item.error


    def detach(self) -> None:
        """The consumer is gone: keep generating and commit, but deliver nothing."""
        self._finished = True
        self._channel.detach()


    async def wait_closed(self) -> None:
        """Wait until the producer task (generation and commit) has finished."""
        if self._task is not None:
            await self._task


    async def collect(self) -> QueryResult:
        """Drain the stream and return the completed result."""
        async for _ in self:
            pass
        assert self._result is not None
        return self._result
