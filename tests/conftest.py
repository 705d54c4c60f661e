"""Pytest fixtures and in-memory fakes for RagChat tests."""

import asyncio
import fnmatch
import os
from types import SimpleNamespace

os.environ.setdefault("GOOGLE_API_KEY", "test-key")

import pytest
from pymongo.errors import PyMongoError
from redis.exceptions import ConnectionError as RedisConnectionError

from ragchat.src.core.chat_service import ChatService
from ragchat.src.core.errors import UpstreamUnavailable
from ragchat.src.core.models import RetrievedPassage
from ragchat.src.core.orchestrator import QueryOrchestrator
from ragchat.src.database.durable_log import MongoTurnLog
from ragchat.src.database.embedding_cache import RedisEmbeddingCache
from ragchat.src.database.session_store import RedisSessionStore


# ── Redis ──────────────────────────────────────────────────────────────


class FakePipeline:
    """Buffers commands and applies them all-or-nothing on ``execute``."""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self._commands.clear()
        return False

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self._commands.append((name, args, kwargs))
            return self

        return queue

    async def execute(self):
        for name, _, _ in self._commands:
            self._redis.check(name)
        results = [await getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in self._commands]
        self._commands.clear()
        return results


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` (decode_responses=True)."""

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.ttls: dict[str, int] = {}
        self.fail_on: set[str] = set()

    def check(self, op: str) -> None:
        if op in self.fail_on or "*" in self.fail_on:
            raise RedisConnectionError(f"{op}: connection refused")

    def _exists(self, key: str) -> bool:
        return key in self.strings or key in self.lists

    async def get(self, key):
        self.check("get")
        return self.strings.get(key)

    async def set(self, key, value, ex=None):
        self.check("set")
        self.strings[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        self.check("delete")
        removed = 0
        for key in keys:
            if self._exists(key):
                removed += 1
            self.strings.pop(key, None)
            self.lists.pop(key, None)
            self.ttls.pop(key, None)
        return removed

    async def expire(self, key, seconds):
        self.check("expire")
        if not self._exists(key):
            return False
        self.ttls[key] = seconds
        return True

    async def rpush(self, key, *values):
        self.check("rpush")
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def lrange(self, key, start, end):
        self.check("lrange")
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start:end + 1])

    async def scan_iter(self, match=None):
        self.check("scan")
        for key in list(self.strings) + list(self.lists):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self, transaction=True):
        return FakePipeline(self)


# ── MongoDB ────────────────────────────────────────────────────────────


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        self._docs = sorted(self._docs, key=lambda d: d[key], reverse=direction == -1)
        return self

    async def to_list(self, length=None):
        return list(self._docs if length is None else self._docs[:length])


class FakeCollection:
    """Subset of ``motor.AsyncIOMotorCollection``."""

    name = "chat_messages"

    def __init__(self) -> None:
        self.docs: list[dict] = []
        self.fail = False

    async def insert_one(self, doc):
        if self.fail:
            raise PyMongoError("mongo down")
        self.docs.append(dict(doc))
        return SimpleNamespace(inserted_id=len(self.docs))

    async def delete_many(self, query):
        if self.fail:
            raise PyMongoError("mongo down")
        keep = [d for d in self.docs if d["session_id"] != query["session_id"]]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        return SimpleNamespace(deleted_count=deleted)

    def find(self, query, projection=None):
        return FakeCursor([dict(d) for d in self.docs if d["session_id"] == query["session_id"]])


# ── Embedding / retrieval / generation ─────────────────────────────────


class ScriptedEmbedder:
    model_id = "fake-embed"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text):
        self.calls.append(text)
        if self.fail:
            raise UpstreamUnavailable("embedding provider unavailable")
        return [float(len(text)), 1.0, 0.5]

    async def embed_batch(self, texts):
        return [await self.embed(t) for t in texts]


class FakeVectorIndex:
    def __init__(self, passages=None, fail: bool = False) -> None:
        self.passages = list(passages or [])
        self.fail = fail
        self.calls: list[tuple[list[float], int]] = []

    async def search(self, vector, k):
        self.calls.append((vector, k))
        if self.fail:
            raise UpstreamUnavailable("vector index unavailable")
        return self.passages[:k]


class ScriptedGenerator:
    """
    Returns *answer* from ``generate`` and yields *fragments* from
    ``generate_stream``.  ``fail_after=n`` raises after *n* fragments;
    ``gate`` (an ``asyncio.Event``) is awaited before every fragment but
    the first.
    """

    def __init__(self, answer="AI is advancing rapidly [1].", fragments=None, fail_after=None, fail_generate=False, gate=None, delay=0.0) -> None:
        self.answer = answer
        self.fragments = list(fragments) if fragments is not None else [answer]
        self.fail_after = fail_after
        self.fail_generate = fail_generate
        self.gate = gate
        self.delay = delay
        self.prompts: list[str] = []
        self.yielded = 0
        self.closed = False

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_generate:
            raise UpstreamUnavailable("generation failed")
        return self.answer

    async def generate_stream(self, prompt):
        self.prompts.append(prompt)
        try:
            for i, fragment in enumerate(self.fragments):
                if self.fail_after is not None and i == self.fail_after:
                    raise UpstreamUnavailable("stream generation failed")
                if self.gate is not None and i > 0:
                    await self.gate.wait()
                if self.delay:
                    await asyncio.sleep(self.delay)
                self.yielded += 1
                yield fragment
        finally:
            self.closed = True


class FakeListener:
    """Records what a ``RealtimeChannel`` sends; can simulate a dropped socket."""

    def __init__(self, fail_after=None) -> None:
        self.sent: list[dict] = []
        self.fail_after = fail_after

    async def send_json(self, data):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self) -> list[str]:
        return [m["event"] for m in self.sent]

    def of(self, event: str) -> list[dict]:
        return [m for m in self.sent if m["event"] == event]


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def passages() -> list[RetrievedPassage]:
    return [
        RetrievedPassage(text="Labs released new multimodal models this week.", source_title="AI Weekly", source_url="https://news.example/ai-weekly", relevance_score=0.91),
        RetrievedPassage(text="Chip makers expand capacity for AI accelerators.", source_title="Tech Daily", source_url="https://news.example/chips", relevance_score=0.77),
    ]


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_collection() -> FakeCollection:
    return FakeCollection()


@pytest.fixture
def session_store(fake_redis: FakeRedis) -> RedisSessionStore:
    return RedisSessionStore(fake_redis, ttl_seconds=3600, key_prefix="test:")


@pytest.fixture
def embedding_cache(fake_redis: FakeRedis) -> RedisEmbeddingCache:
    return RedisEmbeddingCache(fake_redis, model_id="fake-embed", ttl_seconds=86400, key_prefix="test:")


@pytest.fixture
def durable_log(fake_collection: FakeCollection) -> MongoTurnLog:
    return MongoTurnLog(fake_collection)


@pytest.fixture
def embedder() -> ScriptedEmbedder:
    return ScriptedEmbedder()


@pytest.fixture
def vector_index(passages) -> FakeVectorIndex:
    return FakeVectorIndex(passages)


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def make_orchestrator(embedder, embedding_cache, vector_index, session_store, durable_log):
    """Factory: an orchestrator over the fakes, with per-test overrides."""

    def _make(generator=None, **overrides) -> QueryOrchestrator:
        parts = {
            "embedder": embedder,
            "embedding_cache": embedding_cache,
            "vector_index": vector_index,
            "session_store": session_store,
            "generator": generator or ScriptedGenerator(),
            "durable_log": durable_log,
        }
        options = {"top_k": 5, "max_context_chars": 4000, "history_window": 20, "stream_buffer_size": 64}
        for key, value in overrides.items():
            (parts if key in parts else options)[key] = value
        return QueryOrchestrator(**parts, **options)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator, generator) -> QueryOrchestrator:
    return make_orchestrator(generator)


@pytest.fixture
def chat_service(orchestrator, session_store, durable_log) -> ChatService:
    return ChatService(orchestrator, session_store, durable_log)
