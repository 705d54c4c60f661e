"""
RagChat - GeminiGenerationEngine
=================================
Produces answers from an assembled prompt with LangChain's
``ChatGoogleGenerativeAI``, either in one piece (``ainvoke``) or as a
finite sequence of text fragments (``astream``).

Failures, including ones raised part-way through a stream, surface as
``UpstreamUnavailable``.  Nothing is retried here.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from ragchat.config.prompt_templates import SYSTEM_PROMPT
from ragchat.config.settings import settings
from ragchat.src.core.errors import UpstreamUnavailable
from ragchat.src.utils.logger import get_logger

logger = get_logger(__name__)


def _chunk_text(content: object) -> str:
    """Flatten a LangChain message ``content`` (str or list of parts) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)


class GeminiGenerationEngine:

    __slots__ = ("_llm", "_system_prompt")

    def __init__(self, llm: object | None = None, system_prompt: str = SYSTEM_PROMPT) -> None:
        self._llm = llm or self._init_llm()
        self._system_prompt = system_prompt


    @staticmethod
    def _init_llm() -> object:
        """Initialise the Gemini LLM via LangChain."""
        from langchain_google_genai import ChatGoogleGenerativeAI

        llm = ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=settings.LLM_TEMPERATURE, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
        logger.info("LLM initialised: %s (temperature=%.1f)", settings.LLM_MODEL, settings.LLM_TEMPERATURE)
        return llm


    def _messages(self, prompt: str) -> list[object]:
        from langchain_core.messages import HumanMessage, SystemMessage

        return [SystemMessage(content=self._system_prompt), HumanMessage(content=prompt)]


    async def generate(self, prompt: str) -> str:
        try:
            response = await self._llm.ainvoke(self._messages(prompt))  # type: ignore[attr-defined]
        except Exception as exc:
            logger.error("[LLM] Generation failed: %s", exc)
            raise UpstreamUnavailable(f"generation failed: {exc}") from exc
        return _chunk_text(getattr(response, "content", response))


    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        try:
            async for chunk in self._llm.astream(self._messages(prompt)):  # type: ignore[attr-defined]
                text = _chunk_text(getattr(chunk, "content", chunk))
                if text:
                    yield text
        except Exception as exc:
            logger.error("[LLM] Stream generation failed: %s", exc)
            raise UpstreamUnavailable(f"stream generation failed: {exc}") from exc
