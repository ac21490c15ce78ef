"""Embedding providers for similarity lookups."""

import logging
import os
from abc import ABC, abstractmethod

from openai import AsyncOpenAI, OpenAIError

from config.settings import CacheConfig, OpenAIConfig
from debate_engine.exceptions import UpstreamError

logger = logging.getLogger(__name__)

# Keeps requests under the embedding model's input limit
MAX_EMBEDDING_INPUT_CHARS = 8000


class Embedder(ABC):
    """Turns text into a dense vector."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        pass


class OpenAIEmbedder(Embedder):
    """Embeddings from the OpenAI API."""

    def __init__(
        self,
        openai_config: OpenAIConfig,
        cache_config: CacheConfig,
        client: AsyncOpenAI | None = None,
    ):
        self.model = cache_config.embedding_model
        api_key = openai_config.api_key or os.getenv("OPENAI_API_KEY")
        if client is not None:
            self._client: AsyncOpenAI | None = client
        elif api_key:
            self._client = AsyncOpenAI(
                api_key=api_key,
                timeout=openai_config.timeout,
                max_retries=openai_config.max_retries,
            )
        else:
            logger.warning("No OpenAI API key found. Embeddings are unavailable.")
            self._client = None

    async def embed(self, text: str) -> list[float]:
        if self._client is None:
            raise UpstreamError("OpenAI client not configured", details={"service": "embeddings"})
        try:
            response = await self._client.embeddings.create(
                model=self.model,
                input=text[:MAX_EMBEDDING_INPUT_CHARS],
            )
        except OpenAIError as e:
            logger.error(f"Embedding request failed: {e}")
            raise UpstreamError(
                f"Embedding request failed: {type(e).__name__}",
                details={"service": "embeddings"},
            ) from e
        return list(response.data[0].embedding)
