"""Similarity-based memoization of generation calls."""

import hashlib
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from config.settings import CacheConfig
from debate_engine.exceptions import StorageError, UpstreamError
from debate_engine.store.base import BaseStoreClient
from debate_engine.store.keys import CACHE_METRICS_KEY, CACHE_REGISTRY_KEY
from .embeddings import Embedder

logger = logging.getLogger(__name__)

RETURN_FIELDS = ["content", "original_prompt", "response", "topic", "created_at", "tokens_saved"]


@dataclass
class CacheHit:
    """A cached response close enough to the query prompt."""

    response: str
    similarity: float
    key: str
    topic: str | None = None
    original_prompt: str | None = None


@dataclass
class CacheMetrics:
    """Running cache accounting. Ratios are derived, never stored."""

    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    total_tokens_saved: int = 0
    estimated_cost_saved: float = 0.0
    similarity_sum: float = 0.0
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    last_updated: str | None = None

    @property
    def hit_ratio(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.cache_hits / self.total_requests

    @property
    def average_similarity(self) -> float:
        if self.cache_hits == 0:
            return 0.0
        return self.similarity_sum / self.cache_hits

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "hit_ratio": round(self.hit_ratio, 4),
            "total_tokens_saved": self.total_tokens_saved,
            "estimated_cost_saved": round(self.estimated_cost_saved, 6),
            "average_similarity": round(self.average_similarity, 4),
            "created_at": self.created_at,
            "last_updated": self.last_updated,
        }


class SemanticCache:
    """Looks up and stores generation results by prompt similarity."""

    def __init__(self, store: BaseStoreClient, embedder: Embedder, config: CacheConfig):
        self.store_client = store
        self.embedder = embedder
        self.config = config
        self.metrics = CacheMetrics()

    def create_cache_key(self, prompt: str, topic: str = "general") -> str:
        """Deterministic key from prompt and topic context."""
        digest = hashlib.sha256(f"{topic}::{prompt}".encode("utf-8")).hexdigest()
        return f"{self.config.key_prefix}{digest[:16]}"

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Rough estimate: one token per four characters of English text."""
        return math.ceil(len(text) / 4)

    @staticmethod
    def contextual_prompt(prompt: str, topic: str) -> str:
        return f"Topic: {topic}. {prompt}"

    async def embed_prompt(self, prompt: str, topic: str = "general") -> list[float] | None:
        """Embedding used for both lookup and store, or None when the embedder is down."""
        try:
            return await self.embedder.embed(self.contextual_prompt(prompt, topic))
        except UpstreamError as e:
            logger.warning(f"Cache lookup skipped, embedding unavailable: {e}")
            return None

    async def lookup(
        self,
        prompt: str,
        topic: str = "general",
        embedding: list[float] | None = None,
    ) -> CacheHit | None:
        """Return the best cached response at or above the similarity threshold."""
        vector = embedding if embedding is not None else await self.embed_prompt(prompt, topic)
        if vector is None:
            await self.record_miss()
            return None

        matches = await self.store_client.similarity_search(
            self.config.index_name,
            vector,
            top_k=self.config.top_k,
            return_fields=RETURN_FIELDS,
        )

        if matches:
            best = matches[0]
            if best.similarity >= self.config.similarity_threshold:
                response = str(best.fields.get("response") or "")
                tokens = best.fields.get("tokens_saved")
                tokens_saved = int(tokens) if tokens else self.estimate_tokens(response)
                logger.debug(f"Cache HIT {best.key} (similarity {best.similarity:.3f})")
                await self._record_hit(best.similarity, tokens_saved)
                return CacheHit(
                    response=response,
                    similarity=best.similarity,
                    key=best.key,
                    topic=best.fields.get("topic"),
                    original_prompt=best.fields.get("original_prompt"),
                )

        logger.debug(f"Cache MISS for topic {topic}")
        await self.record_miss()
        return None

    async def store(
        self,
        prompt: str,
        response: str,
        topic: str = "general",
        metadata: dict[str, Any] | None = None,
        embedding: list[float] | None = None,
    ) -> str:
        """Persist a response with its embedding. Raises on storage failure."""
        contextual = self.contextual_prompt(prompt, topic)
        vector = embedding if embedding is not None else await self.embedder.embed(contextual)
        key = self.create_cache_key(prompt, topic)
        tokens = self.estimate_tokens(response)

        fields: dict[str, str | int | float] = {
            "content": contextual,
            "original_prompt": prompt,
            "topic": topic,
            "response": response,
            "created_at": datetime.now().isoformat(),
            "tokens_saved": tokens,
            "estimated_cost": tokens / 1000 * self.config.cost_per_1k_tokens,
        }
        for name, value in (metadata or {}).items():
            fields[f"meta_{name}"] = str(value)

        await self.store_client.similarity_add(
            key,
            vector,
            fields,
            ttl_seconds=self.config.ttl_seconds,
            registry_key=CACHE_REGISTRY_KEY,
        )
        await self.store_client.similarity_evict(
            CACHE_REGISTRY_KEY,
            self.config.max_entries,
            max_age_seconds=self.config.ttl_seconds,
        )
        logger.info(f"Response cached with key {key}")
        return key

    async def _record_hit(self, similarity: float, tokens_saved: int) -> None:
        self.metrics.total_requests += 1
        self.metrics.cache_hits += 1
        self.metrics.similarity_sum += similarity
        self.metrics.total_tokens_saved += tokens_saved
        self.metrics.estimated_cost_saved += tokens_saved / 1000 * self.config.cost_per_1k_tokens
        await self._persist_metrics()

    async def record_miss(self) -> None:
        self.metrics.total_requests += 1
        self.metrics.cache_misses += 1
        await self._persist_metrics()

    async def _persist_metrics(self) -> None:
        self.metrics.last_updated = datetime.now().isoformat()
        try:
            await self.store_client.document_set(CACHE_METRICS_KEY, self.metrics.to_dict())
        except StorageError as e:
            logger.warning(f"Could not persist cache metrics: {e}")

    def get_stats(self) -> dict[str, Any]:
        """Current accounting plus configuration."""
        return {
            **self.metrics.to_dict(),
            "similarity_threshold": self.config.similarity_threshold,
            "max_entries": self.config.max_entries,
            "ttl_seconds": self.config.ttl_seconds,
        }
