"""
RagChat - Ask From The Terminal
================================
CLI entry point that streams one answer through the full query path
(Redis cache + sessions, LanceDB, Gemini, Mongo log) and prints it as it
arrives.

    1. Load settings (fail-fast on a missing ``GOOGLE_API_KEY``).
    2. Build the ``ChatService``.
    3. Stream the answer for ``--session`` (a new session if omitted).
    4. Print sources and a timing summary.

Flags:
    --session ID   Continue an existing conversation.
    --history      Print the session's turns after answering.
    --clear        Clear the session and exit (no question needed).

Usage:
    python -m ragchat.scripts.ask "What happened in AI this week?"
    python -m ragchat.scripts.ask --session 42 "And in Europe?"
    python -m ragchat.scripts.ask --session 42 --clear
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


# ── CLI Argument Parsing ───────────────────────────────────────────────

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ask", description="RagChat — ask a question grounded in the indexed news corpus.")
    parser.add_argument("question", nargs="?", default="", help="The question to ask.")
    parser.add_argument("--session", default=None, help="Session id to continue (a new one is created if omitted).")
    parser.add_argument("--history", action="store_true", default=False, help="Print the session history after answering.")
    parser.add_argument("--clear", action="store_true", default=False, help="Clear the session and exit.")
    args = parser.parse_args(argv)
    if args.clear and not args.session:
        parser.error("--clear requires --session")
    if not args.clear and not args.question.strip():
        parser.error("a question is required")
    return args


# ── Main Orchestration ─────────────────────────────────────────────────

async def _run(args: argparse.Namespace) -> int:
    t_start = time.perf_counter()

    try:
        from ragchat.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error — check your .env file:\n")
        print(f"  {exc}")
        print()
        return 1

    from ragchat.src.core.errors import RagChatError
    from ragchat.src.database.clients import close_clients
    from ragchat.src.main import build_service

    t_build = time.perf_counter()
    service = build_service(settings)
    build_ms = (time.perf_counter() - t_build) * 1000

    session_id = args.session or service.create_session()
    _print_header(settings, session_id)

    try:
        if args.clear:
            await service.clear_session(session_id)
            print(f"  Session '{session_id}' cleared.")
            return 0

        t_query = time.perf_counter()
        first_fragment_ms: float | None = None
        stream = service.send_query_streaming(session_id, args.question)
        try:
            async for fragment in stream:
                if first_fragment_ms is None:
                    first_fragment_ms = (time.perf_counter() - t_query) * 1000
                print(fragment, end="", flush=True)
        except RagChatError as exc:
            print(f"\n\n[ERROR] {exc.kind}: {exc.reason}")
            return 2
        query_ms = (time.perf_counter() - t_query) * 1000
        print()

        result = stream.result
        if result is not None and result.sources:
            print("\n  Sources:")
            for rank, source in enumerate(result.sources, start=1):
                print(f"    [{rank}] {source.title} ({source.score:.2f}) {source.url}")

        if args.history:
            print("\n  History:")
            for turn in await service.get_history(session_id):
                print(f"    {turn.role:>9}: {turn.content}")

        _print_footer(build_ms, first_fragment_ms, query_ms, time.perf_counter() - t_start)
        return 0
    finally:
        await service.aclose()
        await close_clients()


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object, session_id: str) -> None:
    print()
    print("=" * 60)
    print("  RAGCHAT — Ask")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                   # type: ignore[attr-defined]
    print(f"  LLM          : {settings.LLM_MODEL}")             # type: ignore[attr-defined]
    print(f"  Embedding    : {settings.EMBEDDING_MODEL}")       # type: ignore[attr-defined]
    print(f"  LanceDB path : {settings.LANCEDB_PATH}")          # type: ignore[attr-defined]
    print(f"  Session      : {session_id}")
    print("=" * 60)
    print()


def _print_footer(build_ms: float, first_fragment_ms: float | None, query_ms: float, elapsed: float) -> None:
    first = f"{first_fragment_ms:>8.1f}ms" if first_fragment_ms is not None else "       —"
    print()
    print("=" * 60)
    print("  TIMING BREAKDOWN")
    print("-" * 60)
    print(f"  Service build        : {build_ms:>8.1f}ms")
    print(f"  First fragment       : {first}")
    print(f"  Query (total)        : {query_ms:>8.1f}ms")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


def main(argv: list[str] | None = None) -> None:
    sys.exit(asyncio.run(_run(_parse_args(argv))))


# ── Entry point ────────────────────────────────────────────────────────

if __name__ == "__main__":
    main()
