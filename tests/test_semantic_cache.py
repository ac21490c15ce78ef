"""Tests for similarity-based response caching."""

from __future__ import annotations

import asyncio

import pytest

from config.settings import CacheConfig
from debate_engine.store.keys import CACHE_METRICS_KEY, CACHE_REGISTRY_KEY
from debate_engine.store.redis_store import RedisStoreClient
from models.semantic_cache import CacheMetrics, SemanticCache
from conftest import FakeEmbedder, FakeRedis


def make_cache(store: RedisStoreClient, config: CacheConfig, embedder: FakeEmbedder | None = None) -> SemanticCache:
    return SemanticCache(store, embedder or FakeEmbedder(), config)


def test_threshold_boundary(store: RedisStoreClient, fake_redis: FakeRedis, cache_config: CacheConfig) -> None:
    """Similarity 0.85 is a hit; 0.84 is a miss."""
    cache = make_cache(store, cache_config)

    fake_redis.search_results["cache-index"] = [
        ("cache:prompt:a", 0.15, {"response": "cached answer", "topic": "t", "tokens_saved": "10"}),
    ]
    hit = asyncio.run(cache.lookup("prompt", "t", embedding=[1.0, 0.0, 0.0]))
    assert hit is not None
    assert hit.response == "cached answer"
    assert hit.similarity == pytest.approx(0.85)

    fake_redis.search_results["cache-index"] = [
        ("cache:prompt:a", 0.16, {"response": "cached answer", "topic": "t", "tokens_saved": "10"}),
    ]
    assert asyncio.run(cache.lookup("prompt", "t", embedding=[1.0, 0.0, 0.0])) is None


def test_best_match_wins(store: RedisStoreClient, fake_redis: FakeRedis, cache_config: CacheConfig) -> None:
    cache = make_cache(store, cache_config)
    fake_redis.search_results["cache-index"] = [
        ("cache:prompt:far", 0.10, {"response": "far"}),
        ("cache:prompt:near", 0.02, {"response": "near"}),
    ]

    hit = asyncio.run(cache.lookup("prompt", embedding=[1.0, 0.0, 0.0]))

    assert hit is not None
    assert hit.key == "cache:prompt:near"


def test_store_then_lookup_round_trip(store: RedisStoreClient, fake_redis: FakeRedis, cache_config: CacheConfig) -> None:
    """A stored response is found again for an identical embedding."""
    embedder = FakeEmbedder(default=[0.2, 0.9, 0.1])
    cache = make_cache(store, cache_config, embedder)

    async def scenario():
        key = await cache.store("What about carbon taxes?", "They work.", "climate", {"agent_id": "senatorbot"})
        hit = await cache.lookup("What about carbon taxes?", "climate")
        return key, hit

    key, hit = asyncio.run(scenario())

    assert key == cache.create_cache_key("What about carbon taxes?", "climate")
    assert key.startswith("cache:prompt:")
    assert len(key) == len("cache:prompt:") + 16
    assert hit is not None and hit.response == "They work."
    assert fake_redis.hashes[key]["meta_agent_id"] == "senatorbot"
    assert fake_redis.hashes[key]["tokens_saved"] == 3
    assert fake_redis.expirations[key] == cache_config.ttl_seconds
    assert key in fake_redis.zsets[CACHE_REGISTRY_KEY]


def test_metrics_accounting(store: RedisStoreClient, fake_redis: FakeRedis, cache_config: CacheConfig) -> None:
    """Hits and misses are counted and the ratio is derived from the counts."""
    cache = make_cache(store, cache_config)

    fake_redis.search_results["cache-index"] = [("cache:prompt:a", 0.05, {"response": "x", "tokens_saved": "500"})]
    asyncio.run(cache.lookup("p1", embedding=[1.0, 0.0, 0.0]))
    fake_redis.search_results["cache-index"] = []
    asyncio.run(cache.lookup("p2", embedding=[1.0, 0.0, 0.0]))
    asyncio.run(cache.lookup("p3", embedding=[1.0, 0.0, 0.0]))

    metrics = cache.metrics
    assert metrics.total_requests == 3
    assert metrics.cache_hits == 1
    assert metrics.cache_misses == 2
    assert metrics.hit_ratio == pytest.approx(1 / 3)
    assert metrics.total_tokens_saved == 500
    assert metrics.estimated_cost_saved == pytest.approx(500 * 0.002 / 1000)

    snapshot = fake_redis.documents[CACHE_METRICS_KEY]
    assert snapshot["total_requests"] == 3
    assert snapshot["hit_ratio"] == pytest.approx(0.3333, abs=1e-4)


def test_metrics_survive_store_outage(store: RedisStoreClient, fake_redis: FakeRedis, cache_config: CacheConfig) -> None:
    """Lookups during an outage are misses and do not raise."""
    cache = make_cache(store, cache_config)
    fake_redis.available = False

    assert asyncio.run(cache.lookup("prompt", embedding=[1.0, 0.0, 0.0])) is None
    assert cache.metrics.cache_misses == 1


def test_embedding_failure_is_a_miss(store: RedisStoreClient, cache_config: CacheConfig) -> None:
    cache = make_cache(store, cache_config, FakeEmbedder(fail=True))

    assert asyncio.run(cache.lookup("prompt", "topic")) is None
    assert cache.metrics.total_requests == 1


def test_eviction_bounds_entries(store: RedisStoreClient, fake_redis: FakeRedis, cache_config: CacheConfig) -> None:
    """Storing past max_entries evicts the oldest registered entries."""
    cache = make_cache(store, cache_config)

    async def scenario():
        keys = []
        for i in range(cache_config.max_entries + 2):
            keys.append(await cache.store(f"prompt {i}", f"response {i}", "topic"))
        return keys

    keys = asyncio.run(scenario())

    registry = fake_redis.zsets[CACHE_REGISTRY_KEY]
    assert len(registry) == cache_config.max_entries
    remaining = [key for key in keys if key in fake_redis.hashes]
    assert len(remaining) == cache_config.max_entries


def test_hit_ratio_zero_without_requests() -> None:
    metrics = CacheMetrics()

    assert metrics.hit_ratio == 0.0
    assert metrics.to_dict()["hit_ratio"] == 0.0


def test_estimate_tokens_rounds_up() -> None:
    assert SemanticCache.estimate_tokens("") == 0
    assert SemanticCache.estimate_tokens("abcd") == 1
    assert SemanticCache.estimate_tokens("abcde") == 2
