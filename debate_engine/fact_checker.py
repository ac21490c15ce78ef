"""Fact lookup and ingestion against the facts vector index."""

import hashlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime

from models.embeddings import Embedder
from .models import FactCheckResult
from .store.base import BaseStoreClient
from .store.keys import FACTS_INDEX, fact_key

logger = logging.getLogger(__name__)


def make_fact_id(content: str) -> str:
    """Content-derived id, so re-adding the same fact overwrites it."""
    return hashlib.sha1(content.encode("utf-8")).hexdigest()[:16]


class FactChecker(ABC):
    @abstractmethod
    async def check(self, text: str) -> FactCheckResult | None:
        """Closest known fact for ``text``, or None when nothing matches."""
        pass

    @abstractmethod
    async def add_fact(self, content: str, source: str = "user", category: str = "general") -> str:
        """Store a fact and return its id."""
        pass


class VectorFactChecker(FactChecker):
    """Nearest-neighbour search over stored fact embeddings."""

    def __init__(self, store: BaseStoreClient, embedder: Embedder, index_name: str = FACTS_INDEX):
        self.store = store
        self.embedder = embedder
        self.index_name = index_name

    async def check(self, text: str) -> FactCheckResult | None:
        vector = await self.embedder.embed(text)
        matches = await self.store.similarity_search(
            self.index_name, vector, top_k=1, return_fields=["content", "source"]
        )
        if not matches:
            return None

        best = matches[0]
        content = best.fields.get("content")
        if not content:
            return None
        logger.debug(f"Closest fact {best.key} (similarity {best.similarity:.3f})")
        return FactCheckResult(fact=content, score=best.similarity, fact_id=best.key)

    async def add_fact(self, content: str, source: str = "user", category: str = "general") -> str:
        # Embedding and storage failures propagate; a fact is never half-written
        vector = await self.embedder.embed(content)
        fact_id = make_fact_id(content)
        await self.store.similarity_add(
            fact_key(fact_id),
            vector,
            {
                "id": fact_id,
                "content": content,
                "source": source,
                "category": category,
                "created_at": datetime.now().isoformat(),
            },
        )
        logger.info(f"Added fact {fact_id} ({category}, from {source})")
        return fact_id
