"""
RagChat - Error Kinds
======================
Every failure the query core reports is a ``RagChatError`` carrying a
human-readable ``reason``.  Backend exceptions are translated into
these at the adapter boundary (``raise ... from exc``).

Propagation policy
------------------
Surfaced to callers:
    ``InvalidInput``, ``UpstreamUnavailable``, ``DeliveryOverrun``,
    ``QueryTimeout``.
Recovered locally by the orchestrator:
    ``CacheDegraded`` (no cache / empty history).

Operations on an unknown session id are never errors; they behave as
if the session were empty.
"""

from __future__ import annotations


class RagChatError(Exception):
    """Base class for all query-core failures."""

    kind: str = "error"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class InvalidInput(RagChatError):
    """Rejected before any I/O: empty query, missing session id."""

    kind = "invalid_input"


class UpstreamUnavailable(RagChatError):
    """Embedding, retrieval or generation backend failed."""

    kind = "upstream_unavailable"


class CacheDegraded(RagChatError):
    """Embedding cache or session store unreachable."""

    kind = "cache_degraded"


class DeliveryOverrun(RagChatError):
    """Streaming consumer fell further behind than the fragment buffer allows."""

    kind = "delivery_overrun"


class QueryTimeout(RagChatError):
    """The configured deadline elapsed before generation completed."""

    kind = "timeout"

    def __init__(self, reason: str = "timeout") -> None:
        super().__init__(reason)
