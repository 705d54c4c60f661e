"""
RagChat - Prompt Templates
===========================
Centralised prompt text for the query orchestrator.  All prompts live
here so they can be versioned and reviewed independently of
application logic.

The assembled prompt is deterministic: passages appear in rank order,
turns in conversational order, followed by the current question.  Tests
rely on this layout.

Exports
-------
SYSTEM_PROMPT, RAG_PROMPT_TEMPLATE, PASSAGE_TEMPLATE, HISTORY_LINE_TEMPLATE,
NO_CONTEXT_PLACEHOLDER, NO_HISTORY_PLACEHOLDER.
"""

# ══════════════════════════════════════════════════════════════════════
#  SYSTEM PROMPT
# ══════════════════════════════════════════════════════════════════════

SYSTEM_PROMPT: str = """You are a helpful AI assistant with access to recent news articles.

• Answer accurately using the provided context.
• Cite passages by their bracketed number, e.g. [1], when you rely on them.
• If the context does not contain the answer, say so clearly.
• Keep answers concise."""


# ══════════════════════════════════════════════════════════════════════
#  RAG PROMPT TEMPLATE
# ══════════════════════════════════════════════════════════════════════

PASSAGE_TEMPLATE: str = "[{rank}] {text}\nSource: {title} ({url})"

HISTORY_LINE_TEMPLATE: str = "{role}: {content}"

NO_CONTEXT_PLACEHOLDER: str = "(No relevant articles found.)"

NO_HISTORY_PLACEHOLDER: str = "(No previous conversation.)"

RAG_PROMPT_TEMPLATE: str = """Context from news articles:
{context}

Previous conversation:
{history}

User query: {question}

Provide a concise, accurate answer based on the context. Cite sources when relevant."""
