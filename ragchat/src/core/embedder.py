"""
RagChat - GeminiEmbeddingProvider
==================================
Turns text into fixed-dimension vectors through LangChain's
``GoogleGenerativeAIEmbeddings``.  Any backend failure becomes
``UpstreamUnavailable``; a batch either yields one vector per input or
fails as a whole.
"""

from __future__ import annotations

from ragchat.config.settings import settings
from ragchat.src.core.errors import UpstreamUnavailable
from ragchat.src.utils.logger import get_logger

logger = get_logger(__name__)


class GeminiEmbeddingProvider:

    __slots__ = ("_model_id", "_client")

    def __init__(self, model_id: str | None = None, client: object | None = None) -> None:
        self._model_id = model_id or settings.EMBEDDING_MODEL
        self._client = client or self._init_client(self._model_id)


    @staticmethod
    def _init_client(model_id: str) -> object:
        from langchain_google_genai import GoogleGenerativeAIEmbeddings

        client = GoogleGenerativeAIEmbeddings(model=model_id, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
        logger.info("Embedder initialised: %s", model_id)
        return client


    @property
    def model_id(self) -> str:
        return self._model_id


    async def embed(self, text: str) -> list[float]:
        try:
            return list(await self._client.aembed_query(text))  # type: ignore[attr-defined]
        except Exception as exc:
            logger.error("[EMBED] Query embedding failed: %s", exc)
            raise UpstreamUnavailable(f"embedding provider unavailable: {exc}") from exc


    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Order-preserving batch embedding; all-or-nothing."""
        if not texts:
            return []
        try:
            vectors = await self._client.aembed_documents(texts)  # type: ignore[attr-defined]
        except Exception as exc:
            logger.error("[EMBED] Batch of %d failed: %s", len(texts), exc)
            raise UpstreamUnavailable(f"embedding provider unavailable: {exc}") from exc

        if len(vectors) != len(texts):
            raise UpstreamUnavailable(f"embedding provider returned {len(vectors)} vectors for {len(texts)} texts")
        return [list(v) for v in vectors]
