"""
RagChat - Centralized Configuration
====================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Security
--------
- ``GOOGLE_API_KEY`` is typed as ``SecretStr`` and has **no default value**.
  If the key is missing at startup, Pydantic will raise a ``ValidationError``
  with a clear error message.  The raw value is never exposed in repr,
  logs, or tracebacks.
- ``REDIS_URL`` and ``MONGO_URI`` are also ``SecretStr`` — connection
  strings contain credentials and must never leak into logs.

Stores
------
Three backing stores with different guarantees are configured here:
Redis (session history + embedding cache, both with TTL), MongoDB
(best-effort durable turn log) and LanceDB (read-only vector index).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).
    Fields *without* a default are **required** — the app will refuse
    to start until they are provided.

    Attributes
    ----------
    GOOGLE_API_KEY : SecretStr
        API key for Google AI Studio (Gemini embeddings + generation).
        **Required.**
    REDIS_URL : SecretStr
        Redis connection URL for the session store and embedding cache.
    SESSION_TTL_SECONDS : int
        Sliding expiry of a conversation; refreshed on every read/write.
    EMBEDDING_CACHE_TTL_SECONDS : int
        Expiry of cached query embeddings.
    DURABLE_LOG_ENABLED : bool
        When false, turns are only kept in Redis.
    TOP_K : int
        Number of passages retrieved per query.
    MAX_CONTEXT_CHARS : int
        Upper bound on passage text placed into the prompt.
    HISTORY_WINDOW : int
        Most recent turns placed into the prompt (``0`` = all).
    STREAM_BUFFER_SIZE : int
        Fragments a slow consumer may fall behind before the stream aborts.
    QUERY_TIMEOUT_SECONDS : float | None
        Optional deadline for embedding + retrieval + generation.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    LANCEDB_PATH: Path = BASE_DIR / "data" / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"

    # ── API Keys (REQUIRED, no default) ───────────────────────────────
    GOOGLE_API_KEY: SecretStr

    # ── Redis (sessions + embedding cache) ─────────────────────────────
    REDIS_URL: SecretStr = SecretStr("redis://localhost:6379/0")
    REDIS_KEY_PREFIX: str = ""
    SESSION_TTL_SECONDS: int = 3600
    EMBEDDING_CACHE_TTL_SECONDS: int = 86400

    # ── MongoDB (durable turn log) ─────────────────────────────────────
    MONGO_URI: SecretStr = SecretStr("mongodb://localhost:27017")
    MONGO_DB_NAME: str = "rag_chat"
    MONGO_COLLECTION: str = "chat_messages"
    DURABLE_LOG_ENABLED: bool = True

    # ── LanceDB ────────────────────────────────────────────────────────
    LANCEDB_TABLE_NAME: str = "news_embeddings"

    # ── Model Configuration ────────────────────────────────────────────
    EMBEDDING_MODEL: str = "gemini-embedding-001"
    LLM_MODEL: str = "gemini-2.0-flash"
    LLM_TEMPERATURE: float = 0.3

    # ── Retrieval & Prompt ─────────────────────────────────────────────
    TOP_K: int = 5
    MAX_CONTEXT_CHARS: int = 4000
    HISTORY_WINDOW: int = 20

    # ── Streaming ──────────────────────────────────────────────────────
    STREAM_BUFFER_SIZE: int = 256
    QUERY_TIMEOUT_SECONDS: float | None = None

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("TOP_K")
    @classmethod
    def _top_k_range(cls, v: int) -> int:
        if not 1 <= v <= 50:
            raise ValueError(f"TOP_K must be 1–50, got {v}")
        return v


    @field_validator("STREAM_BUFFER_SIZE")
    @classmethod
    def _buffer_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"STREAM_BUFFER_SIZE must be ≥ 1, got {v}")
        return v


    @field_validator("SESSION_TTL_SECONDS")
    @classmethod
    def _session_ttl_floor(cls, v: int) -> int:
        if v < 60:
            raise ValueError(f"SESSION_TTL_SECONDS must be ≥ 60, got {v}")
        return v


    @field_validator("QUERY_TIMEOUT_SECONDS")
    @classmethod
    def _timeout_positive(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError(f"QUERY_TIMEOUT_SECONDS must be > 0, got {v}")
        return v

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from ragchat.config.settings import settings
settings = Settings()
