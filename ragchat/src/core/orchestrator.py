"""
RagChat - Query Orchestrator
=============================
Composes the embedding cache, embedding provider, vector index, session
store, generation engine and durable log into a single query lifecycle,
in blocking and streaming modes.

Architecture
------------
``QueryOrchestrator``
    Stateless across queries: each call owns its own ``StreamState``.
    Collaborators are injected through the constructor, so tests hand
    in fakes and production hands in the Redis / LanceDB / Gemini /
    Mongo adapters.

Flow (both modes):
    1. Normalise the query; reject empty input before any I/O.
    2. Embedding → cache lookup, provider on miss, best-effort cache fill.
    3. Retrieve → top-k passages, highest relevance first.
    4. History → session turns (store failure → empty history).
    5. Build prompt → passages in rank order, turns in order, question.
    6. Generate → full answer, or fragments through a ``QueryStream``.
    7. Commit → user + assistant turn as one unit, then the durable log
       in the background.
    8. Return ``QueryResult``.

Failure policy
--------------
- ``InvalidInput``, ``UpstreamUnavailable``, ``DeliveryOverrun`` and
  ``QueryTimeout`` fail the query; nothing is committed.
- ``CacheDegraded`` never fails a query: no cache, empty history, or a
  logged commit failure.
- Durable-log failures are logged only.

Concurrency
-----------
Queries on the same session are not serialised here.  A query's
history may miss a sibling query that is committing at the same time;
pairs land in the order their commits execute.

Usage:
    orchestrator = QueryOrchestrator(embedder, cache, index, sessions, generator, durable_log)
    result = await orchestrator.process("s1", "What happened in AI today?")
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, TypeVar, runtime_checkable

from ragchat.config.prompt_templates import HISTORY_LINE_TEMPLATE, NO_CONTEXT_PLACEHOLDER, NO_HISTORY_PLACEHOLDER, PASSAGE_TEMPLATE, RAG_PROMPT_TEMPLATE
from ragchat.config.settings import settings
from ragchat.src.core.errors import CacheDegraded, InvalidInput, QueryTimeout, RagChatError, UpstreamUnavailable
from ragchat.src.core.models import QueryResult, QueryState, RetrievedPassage, Source, StreamState, Turn, utc_now
from ragchat.src.core.streaming import FragmentChannel, QueryStream
from ragchat.src.utils.logger import get_logger
from ragchat.src.utils.text_utils import normalize_query, preview

logger = get_logger(__name__)

T = TypeVar("T")


# ══════════════════════════════════════════════════════════════════════
#  COLLABORATOR PROTOCOLS
# ══════════════════════════════════════════════════════════════════════


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that can produce embedding vectors from text."""

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


@runtime_checkable
class EmbeddingCache(Protocol):

    async def get(self, text: str) -> list[float] | None: ...

    async def put(self, text: str, vector: list[float], ttl: int | None = None) -> None: ...


@runtime_checkable
class VectorIndex(Protocol):

    async def search(self, vector: list[float], k: int) -> list[RetrievedPassage]: ...


@runtime_checkable
class SessionStore(Protocol):

    async def read(self, session_id: str) -> list[Turn]: ...

    async def append_pair(self, session_id: str, user_turn: Turn, assistant_turn: Turn) -> None: ...

    async def clear(self, session_id: str) -> None: ...

    async def list_active_session_ids(self) -> set[str]: ...


@runtime_checkable
class DurableLog(Protocol):

    async def append(self, session_id: str, role: str, content: str, timestamp: datetime | None = None) -> None: ...


@runtime_checkable
class GenerationEngine(Protocol):

    async def generate(self, prompt: str) -> str: ...

    def generate_stream(self, prompt: str) -> AsyncIterator[str]: ...


# ══════════════════════════════════════════════════════════════════════
#  QUERY ORCHESTRATOR
# ══════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class _Prepared:
    """Output of steps 1–5: everything generation and commit need."""

    question: str
    asked_at: datetime
    passages: list[RetrievedPassage]
    prompt: str

    @property
    def sources(self) -> list[Source]:
        return [Source.from_passage(p) for p in self.passages]


class QueryOrchestrator:
    """
    Parameters
    ----------
    embedder, embedding_cache, vector_index, session_store, generator
        Collaborators; see the protocols above.  ``embedding_cache`` may
        be ``None`` to always embed.
    durable_log
        Optional best-effort turn log.
    top_k, max_context_chars, history_window, stream_buffer_size, timeout_seconds
        Overrides for the corresponding settings.
    """

    __slots__ = ("_embedder", "_cache", "_index", "_sessions", "_generator", "_log", "_top_k", "_max_context_chars", "_history_window", "_buffer_size", "_timeout", "_pending")

    def __init__(
        self,
        embedder: EmbeddingProvider,
        embedding_cache: EmbeddingCache | None,
        vector_index: VectorIndex,
        session_store: SessionStore,
        generator: GenerationEngine,
        durable_log: DurableLog | None = None,
        *,
        top_k: int | None = None,
        max_context_chars: int | None = None,
        history_window: int | None = None,
        stream_buffer_size: int | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._embedder = embedder
        self._cache = embedding_cache
        self._index = vector_index
        self._sessions = session_store
        self._generator = generator
        self._log = durable_log
        self._top_k = settings.TOP_K if top_k is None else top_k
        self._max_context_chars = settings.MAX_CONTEXT_CHARS if max_context_chars is None else max_context_chars
        self._history_window = settings.HISTORY_WINDOW if history_window is None else history_window
        self._buffer_size = settings.STREAM_BUFFER_SIZE if stream_buffer_size is None else stream_buffer_size
        self._timeout = settings.QUERY_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self._pending: set[asyncio.Task[None]] = set()
        logger.info("QueryOrchestrator ready (top_k=%d, buffer=%d, timeout=%s).", self._top_k, self._buffer_size, self._timeout)


    # ── Public API ─────────────────────────────────────────────────────

    async def process(self, session_id: str, query: str) -> QueryResult:
        """
        Answer *query* in one piece and commit the turn pair.

        Raises
        ------
        InvalidInput
            Empty query or missing session id (before any I/O).
        UpstreamUnavailable
            Embedding, retrieval or generation failed.
        QueryTimeout
            The configured deadline elapsed before generation completed.
        """
        question = self._validate(session_id, query)
        state = StreamState(session_id=session_id)
        logger.info("[QUERY] Session '%s': '%s'", session_id, preview(question))

        try:
            prepared, answer = await self._with_deadline(self._answer(state, question))
        except RagChatError as exc:
            state.fail(exc.reason)
            logger.error("[QUERY] Session '%s' failed after %.0fms: %s", session_id, state.elapsed_ms, exc.reason)
            raise

        await asyncio.shield(self._commit(state, prepared, answer))
        logger.info("[QUERY] Session '%s' done in %.0fms (%d sources, %d chars).", session_id, state.elapsed_ms, len(prepared.passages), len(answer))
        return QueryResult(answer=answer, sources=prepared.sources)


    def process_stream(self, session_id: str, query: str) -> QueryStream:
        """
        Return a lazy stream of answer fragments.

        Input is validated immediately, so ``InvalidInput`` is raised
        here rather than from the first iteration.  Generation starts on
        first iteration; the turn pair is committed once, after the last
        fragment.
        """
        question = self._validate(session_id, query)
        state = StreamState(session_id=session_id)
        logger.info("[STREAM] Session '%s': '%s'", session_id, preview(question))

        async def produce(channel: FragmentChannel) -> None:
            await self._drive_stream(state, question, channel)

        return QueryStream(session_id, produce, self._buffer_size)


    def build_prompt(self, passages: list[RetrievedPassage], history: list[Turn], question: str) -> str:
        """Assemble the generation prompt: passages in rank order, turns in order, then the question."""
        context = self._format_context(passages, self._max_context_chars)
        conversation = self._format_history(history, self._history_window)
        return RAG_PROMPT_TEMPLATE.format(context=context, history=conversation, question=question)


    async def drain(self) -> None:
        """Wait for background durable-log writes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))


    @property
    def pending_writes(self) -> int:
        return len(self._pending)


    # ── Steps 1–6 ──────────────────────────────────────────────────────

    @staticmethod
    def _validate(session_id: str | None, query: str | None) -> str:
        if not isinstance(session_id, str) or not session_id.strip():
            raise InvalidInput("session id is required")
        if query is not None and not isinstance(query, str):
            raise InvalidInput("query must be text")
        question = normalize_query(query)
        if not question:
            raise InvalidInput("query must not be empty")
        return question


    async def _with_deadline(self, work: Awaitable[T]) -> T:
        if self._timeout is None:
            return await work
        try:
            return await asyncio.wait_for(work, self._timeout)
        except asyncio.TimeoutError as exc:
            raise QueryTimeout() from exc


    async def _answer(self, state: StreamState, question: str) -> tuple[_Prepared, str]:
        prepared = await self._prepare(state, question)
        state.advance(QueryState.GENERATING)
        t0 = time.perf_counter()
        try:
            answer = await self._generator.generate(prepared.prompt)
        except RagChatError:
            raise
        except Exception as exc:
            raise UpstreamUnavailable(f"generation failed: {exc}") from exc
        logger.debug("[QUERY] Generated %d chars in %.0fms.", len(answer), (time.perf_counter() - t0) * 1000)
        return prepared, answer


    async def _prepare(self, state: StreamState, question: str) -> _Prepared:
        asked_at = utc_now()

        state.advance(QueryState.EMBEDDING)
        vector = await self._resolve_embedding(question)

        state.advance(QueryState.RETRIEVING)
        passages = await self._retrieve(vector)
        history = await self._read_history(state.session_id)

        prompt = self.build_prompt(passages, history, question)
        logger.debug("[QUERY] Prompt built: %d passages, %d turns, %d chars.", len(passages), len(history), len(prompt))
        return _Prepared(question=question, asked_at=asked_at, passages=passages, prompt=prompt)


    async def _resolve_embedding(self, text: str) -> list[float]:
        if self._cache is not None:
            try:
                cached = await self._cache.get(text)
            except CacheDegraded as exc:
                logger.warning("[CACHE] Lookup degraded, embedding without cache: %s", exc.reason)
                cached = None
            if cached is not None:
                return cached

        t0 = time.perf_counter()
        try:
            vector = await self._embedder.embed(text)
        except RagChatError:
            raise
        except Exception as exc:
            raise UpstreamUnavailable(f"embedding failed: {exc}") from exc
        logger.debug("[QUERY] Embedded in %.0fms (dim=%d).", (time.perf_counter() - t0) * 1000, len(vector))

        if self._cache is not None:
            try:
                await self._cache.put(text, vector)
            except CacheDegraded as exc:
                logger.warning("[CACHE] Store degraded, vector not cached: %s", exc.reason)
        return vector


    async def _retrieve(self, vector: list[float]) -> list[RetrievedPassage]:
        try:
            passages = await self._index.search(vector, self._top_k)
        except RagChatError:
            raise
        except Exception as exc:
            raise UpstreamUnavailable(f"retrieval failed: {exc}") from exc
        # Stable sort: equal scores keep the index's order.
        return sorted(passages, key=lambda p: p.relevance_score, reverse=True)[: self._top_k]


    async def _read_history(self, session_id: str) -> list[Turn]:
        try:
            return await self._sessions.read(session_id)
        except CacheDegraded as exc:
            logger.warning("[SESSION] History unavailable for '%s', answering statelessly: %s", session_id, exc.reason)
            return []


    @staticmethod
    def _format_context(passages: list[RetrievedPassage], max_chars: int) -> str:
        """Passages in rank order, whole, until *max_chars* of passage text is reached (the first always fits)."""
        blocks: list[str] = []
        used = 0
        for passage in passages:
            if blocks and used + len(passage.text) > max_chars:
                break
            used += len(passage.text)
            blocks.append(PASSAGE_TEMPLATE.format(rank=len(blocks) + 1, text=passage.text, title=passage.source_title, url=passage.source_url))
        return "\n\n".join(blocks) if blocks else NO_CONTEXT_PLACEHOLDER


    @staticmethod
    def _format_history(turns: list[Turn], window: int) -> str:
        recent = turns[-window:] if window else turns
        if not recent:
            return NO_HISTORY_PLACEHOLDER
        return "\n".join(HISTORY_LINE_TEMPLATE.format(role=t.role, content=t.content) for t in recent)


    # ── Streaming ──────────────────────────────────────────────────────

    async def _drive_stream(self, state: StreamState, question: str, channel: FragmentChannel) -> None:
        try:
            prepared = await self._with_deadline(self._stream_answer(state, question, channel))
        except RagChatError as exc:
            state.fail(exc.reason)
            logger.error("[STREAM] Session '%s' failed after %.0fms: %s", state.session_id, state.elapsed_ms, exc.reason)
            channel.fail(exc)
            return
        except asyncio.CancelledError:
            channel.fail(UpstreamUnavailable("stream cancelled"))
            raise

        answer = state.accumulated_text
        await asyncio.shield(self._commit(state, prepared, answer))
        logger.info("[STREAM] Session '%s' done in %.0fms (%d fragments, %d chars, detached=%s).", state.session_id, state.elapsed_ms, len(state.fragments), len(answer), channel.detached)
        channel.complete(QueryResult(answer=answer, sources=prepared.sources))


    async def _stream_answer(self, state: StreamState, question: str, channel: FragmentChannel) -> _Prepared:
        prepared = await self._prepare(state, question)
        state.advance(QueryState.GENERATING)

        fragments = self._generator.generate_stream(prepared.prompt)
        try:
            async for fragment in fragments:
                if not fragment:
                    continue
                state.fragments.append(fragment)
                channel.push(fragment)
                # Let a waiting consumer take the fragment before the next one.
                await asyncio.sleep(0)
        except RagChatError:
            raise
        except Exception as exc:
            raise UpstreamUnavailable(f"stream generation failed: {exc}") from exc
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()
        return prepared


    # ── Step 7: commit ─────────────────────────────────────────────────

    async def _commit(self, state: StreamState, prepared: _Prepared, answer: str) -> None:
        state.advance(QueryState.COMMITTING)
        user_turn = Turn(role="user", content=prepared.question, created_at=prepared.asked_at)
        assistant_turn = Turn(role="assistant", content=answer)

        try:
            await self._sessions.append_pair(state.session_id, user_turn, assistant_turn)
        except CacheDegraded as exc:
            logger.error("[SESSION] Commit failed for '%s'; answer delivered without history: %s", state.session_id, exc.reason)

        self._log_in_background(state.session_id, (user_turn, assistant_turn))
        state.advance(QueryState.DONE)


    def _log_in_background(self, session_id: str, turns: tuple[Turn, ...]) -> None:
        if self._log is None:
            return
        task = asyncio.create_task(self._write_durable(session_id, turns))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


    async def _write_durable(self, session_id: str, turns: tuple[Turn, ...]) -> None:
        for turn in turns:
            try:
                await self._log.append(session_id, turn.role, turn.content, turn.created_at)  # type: ignore[union-attr]
            except Exception:
                logger.exception("[LOG] Durable append failed for '%s' (%s turn).", session_id, turn.role)
