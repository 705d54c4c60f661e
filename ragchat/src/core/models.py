"""
RagChat - Data Model
=====================
Value types shared by the orchestrator, the stores and the realtime
channel.

``Turn``
    One committed message.  Immutable; serialised to JSON for Redis.
``RetrievedPassage``
    One search hit.  Transient, never persisted by the core.
``Source``
    The caller-facing attribution of a passage.
``QueryResult``
    What a completed query returns (blocking) or delivers (streaming).
``QueryState`` / ``StreamState``
    Per-query lifecycle, owned by the single task driving that query.
"""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

Role = Literal["user", "assistant"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Turn:
    role: Role
    content: str
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content, "createdAt": self.created_at.isoformat()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> Turn:
        created = data.get("createdAt")
        return cls(role=data["role"], content=data["content"], created_at=datetime.fromisoformat(created) if created else utc_now())  # type: ignore[arg-type]

    @classmethod
    def from_json(cls, raw: str | bytes) -> Turn:
        return cls.from_dict(json.loads(raw))


@dataclass(frozen=True, slots=True)
class RetrievedPassage:
    text: str
    source_title: str
    source_url: str
    relevance_score: float


@dataclass(frozen=True, slots=True)
class Source:
    title: str
    url: str
    score: float

    @classmethod
    def from_passage(cls, passage: RetrievedPassage) -> Source:
        return cls(title=passage.source_title, url=passage.source_url, score=passage.relevance_score)

    def to_dict(self) -> dict[str, str | float]:
        return {"title": self.title, "url": self.url, "score": self.score}


@dataclass(frozen=True, slots=True)
class QueryResult:
    answer: str
    sources: list[Source]

    def to_dict(self) -> dict[str, object]:
        return {"answer": self.answer, "sources": [s.to_dict() for s in self.sources]}


class QueryState(enum.Enum):
    """Lifecycle of one query attempt.  States are only ever entered once."""

    IDLE = 0
    EMBEDDING = 1
    RETRIEVING = 2
    GENERATING = 3
    COMMITTING = 4
    DONE = 5
    FAILED = 6


_TERMINAL = frozenset({QueryState.DONE, QueryState.FAILED})


@dataclass(slots=True)
class StreamState:
    """
    Mutable bookkeeping for one in-flight query.

    Never shared between queries: the task that drives the query is the
    only writer.
    """

    session_id: str
    started_at: float = field(default_factory=time.perf_counter)
    state: QueryState = QueryState.IDLE
    fragments: list[str] = field(default_factory=list)
    failure: str | None = None

    @property
    def accumulated_text(self) -> str:
        return "".join(self.fragments)

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000

    def advance(self, target: QueryState) -> None:
        """
        Move forward to *target*.

        Raises
        ------
        RuntimeError
            If *target* would revisit a state, skip backwards, or leave a
            terminal state.
        """
        if self.state in _TERMINAL:
            raise RuntimeError(f"query already finished in {self.state.name}")
        if target is not QueryState.FAILED and target.value <= self.state.value:
            raise RuntimeError(f"illegal transition {self.state.name} → {target.name}")
        self.state = target

    def fail(self, reason: str) -> None:
        self.advance(QueryState.FAILED)
        self.failure = reason
        self.fragments.clear()
