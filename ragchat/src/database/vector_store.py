"""
RagChat - LanceVectorIndex
===========================
Read-only nearest-neighbour search over the news passage table that the
ingestion job fills.  The query core never writes to the index.

Design decisions:
  • **Singleton DB connection** — ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per path to avoid file-lock issues.
  • **Off-loop I/O** — LanceDB calls are synchronous, so ``search``
    runs them in a worker thread via ``asyncio.to_thread``; a slow
    search never stalls other queries.
  • **Scores, not distances** — rows are searched with cosine distance
    and reported as ``relevance_score = 1 - distance``, highest first.
    Equal scores keep the order LanceDB returned them in.
  • **Missing table is an empty index** — a fresh deployment answers
    with no passages instead of failing every query.

Expected columns: ``vector``, ``text``, ``title``, ``url`` (``source``
is used as a title fallback).

Usage:
    index = LanceVectorIndex()
    passages = await index.search(query_vector, k=5)
"""

from __future__ import annotations

import asyncio
import threading

import lancedb

from ragchat.config.settings import settings
from ragchat.src.core.errors import UpstreamUnavailable
from ragchat.src.core.models import RetrievedPassage
from ragchat.src.utils.logger import get_logger

logger = get_logger(__name__)

SearchRow = dict[str, str | int | float | list[float]]

_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


def _get_connection(db_path: str) -> lancedb.DBConnection:
    """
    Return a **singleton** ``lancedb.DBConnection`` for *db_path*.

    Thread-safe via ``_DB_LOCK``.
    """
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("Opening new LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


def rows_to_passages(rows: list[SearchRow]) -> list[RetrievedPassage]:
    """
    Convert LanceDB rows (with ``_distance``) to passages ranked by score.

    The sort is stable, so rows with equal scores stay in input order.
    """
    passages = [
        RetrievedPassage(
            text=str(row.get("text", "")),
            source_title=str(row.get("title") or row.get("source") or ""),
            source_url=str(row.get("url") or ""),
            relevance_score=round(1.0 - float(row.get("_distance", 1.0)), 6),
        )
        for row in rows
    ]
    passages.sort(key=lambda p: p.relevance_score, reverse=True)
    return passages


class LanceVectorIndex:
    """
    Parameters
    ----------
    db_path
        Override the database directory.  Defaults to ``settings.LANCEDB_PATH``.
    table_name
        Override the table name.  Defaults to ``settings.LANCEDB_TABLE_NAME``.
    table
        An already-open table handle (skips connecting).
    """

    __slots__ = ("_db_path", "_table_name", "_table")

    def __init__(self, db_path: str | None = None, table_name: str | None = None, table: object | None = None) -> None:
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self._table_name: str = table_name or settings.LANCEDB_TABLE_NAME
        self._table = table


    def _open_table(self) -> object | None:
        """Lazily open the table if it exists, caching the handle."""
        if self._table is None:
            db = _get_connection(self._db_path)
            if self._table_name in db.table_names():
                self._table = db.open_table(self._table_name)
                logger.info("[INDEX] Opened table '%s'.", self._table_name)
        return self._table


    def _search_sync(self, vector: list[float], k: int) -> list[SearchRow]:
        table = self._open_table()
        if table is None:
            logger.warning("[INDEX] Table '%s' does not exist — returning no passages.", self._table_name)
            return []
        return table.search(vector).distance_type("cosine").limit(k).to_list()  # type: ignore[attr-defined]


    async def search(self, vector: list[float], k: int) -> list[RetrievedPassage]:
        """
        Return up to *k* passages, highest relevance first.

        Raises
        ------
        UpstreamUnavailable
            If LanceDB fails (I/O error, schema mismatch, …).
        """
        try:
            rows = await asyncio.to_thread(self._search_sync, vector, k)
        except Exception as exc:
            logger.exception("[INDEX] Search failed.")
            raise UpstreamUnavailable(f"vector index unavailable: {exc}") from exc

        passages = rows_to_passages(rows)[:k]
        logger.info("[INDEX] Search returned %d passage(s) (k=%d).", len(passages), k)
        return passages


    def count(self) -> int:
        """Return the number of indexed passages (0 if the table is missing)."""
        table = self._open_table()
        return table.count_rows() if table is not None else 0  # type: ignore[attr-defined]


    def __repr__(self) -> str:
        return f"LanceVectorIndex(db='{self._db_path}', table='{self._table_name}')"
