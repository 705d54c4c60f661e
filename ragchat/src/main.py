"""
RagChat - Application Entry Point
==================================
Wires the production collaborators into a ``ChatService`` and exposes it
over a websocket.

``build_service(settings)``
    Redis embedding cache + session store, LanceDB index, Gemini
    embedder and generator, optional Mongo turn log.  Store clients are
    process-wide singletons (see ``ragchat.src.database.clients``).
``create_app(service=None)``
    FastAPI application.  ``/ws`` binds one ``RealtimeChannel`` per
    connection; ``/health`` reports liveness.  When *service* is not
    given it is built on startup and drained on shutdown.

Usage:
    uvicorn ragchat.src.main:app --port 8000
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from ragchat.config.settings import Settings, settings as default_settings
from ragchat.src.api.realtime import RealtimeChannel
from ragchat.src.core.chat_service import ChatService
from ragchat.src.core.embedder import GeminiEmbeddingProvider
from ragchat.src.core.generator import GeminiGenerationEngine
from ragchat.src.core.orchestrator import QueryOrchestrator
from ragchat.src.database.clients import close_clients, get_mongo_client, get_redis_client
from ragchat.src.database.durable_log import MongoTurnLog
from ragchat.src.database.embedding_cache import RedisEmbeddingCache
from ragchat.src.database.session_store import RedisSessionStore
from ragchat.src.database.vector_store import LanceVectorIndex
from ragchat.src.utils.logger import get_logger

logger = get_logger(__name__)


def build_service(config: Settings | None = None) -> ChatService:
    """Construct the production ``ChatService`` from *config*."""
    config = config or default_settings
    redis_client = get_redis_client()

    embedder = GeminiEmbeddingProvider(model_id=config.EMBEDDING_MODEL)
    cache = RedisEmbeddingCache(redis_client, model_id=embedder.model_id, ttl_seconds=config.EMBEDDING_CACHE_TTL_SECONDS, key_prefix=config.REDIS_KEY_PREFIX)
    sessions = RedisSessionStore(redis_client, ttl_seconds=config.SESSION_TTL_SECONDS, key_prefix=config.REDIS_KEY_PREFIX)
    index = LanceVectorIndex(db_path=str(config.LANCEDB_PATH), table_name=config.LANCEDB_TABLE_NAME)

    durable_log = None
    if config.DURABLE_LOG_ENABLED:
        collection = get_mongo_client()[config.MONGO_DB_NAME][config.MONGO_COLLECTION]
        durable_log = MongoTurnLog(collection)

    orchestrator = QueryOrchestrator(
        embedder,
        cache,
        index,
        sessions,
        GeminiGenerationEngine(),
        durable_log,
        top_k=config.TOP_K,
        max_context_chars=config.MAX_CONTEXT_CHARS,
        history_window=config.HISTORY_WINDOW,
        stream_buffer_size=config.STREAM_BUFFER_SIZE,
        timeout_seconds=config.QUERY_TIMEOUT_SECONDS,
    )
    logger.info("ChatService built (index=%r, sessions=%r, durable_log=%r).", index, sessions, durable_log)
    return ChatService(orchestrator, sessions, durable_log)


def create_app(service: ChatService | None = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = service is None
        app.state.chat_service = service or build_service()
        try:
            yield
        finally:
            await app.state.chat_service.aclose()
            if owned:
                await close_clients()

    app = FastAPI(title="RagChat", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.websocket("/ws")
    async def realtime_socket(websocket: WebSocket) -> None:
        """One ``RealtimeChannel`` per connection."""
        await websocket.accept()
        channel = RealtimeChannel(websocket.app.state.chat_service, websocket)
        try:
            while not channel.closed:
                try:
                    raw = await websocket.receive_text()
                except WebSocketDisconnect:
                    break
                try:
                    payload = json.loads(raw)
                except ValueError:
                    await channel.reject("payload must be JSON")
                    continue
                if not isinstance(payload, dict):
                    await channel.reject("payload must be a JSON object")
                    continue
                await channel.handle(payload)
        finally:
            await channel.close()

    return app


app = create_app()
