"""Pytest configuration and shared fixtures.

Provides in-memory doubles for the Redis client, the realtime event sink and
the OpenAI-backed collaborators so every test runs without network access.
"""

import asyncio
import copy
import math
import re
import time
from collections import defaultdict
from types import SimpleNamespace
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from config.settings import AppConfig, CacheConfig, DebateConfig, StoreConfig, SystemConfig
from debate_engine.exceptions import UpstreamError
from debate_engine.models import GeneratedMessage
from debate_engine.store.redis_store import RedisStoreClient, unpack_vector
from models.embeddings import Embedder
from models.generation import MessageGenerator


# =============================================================================
# FAKE REDIS
# =============================================================================


class _FakeJSON:
    def __init__(self, redis: "FakeRedis"):
        self._redis = redis

    async def get(self, key: str) -> Any:
        self._redis.check()
        return copy.deepcopy(self._redis.documents.get(key))

    async def set(self, key: str, path: str, value: Any) -> bool:
        self._redis.check()
        self._redis.documents[key] = copy.deepcopy(value)
        return True


class _FakeTimeSeries:
    def __init__(self, redis: "FakeRedis"):
        self._redis = redis

    async def add(self, key: str, timestamp: int | str, value: float) -> int:
        self._redis.check()
        if not self._redis.timeseries_enabled:
            raise ResponseError("unknown command 'TS.ADD'")
        ts = int(time.time() * 1000) if timestamp == "*" else int(timestamp)
        self._redis.series[key].append([ts, float(value)])
        return ts

    async def range(self, key: str, start: int | str, end: int | str) -> list[list[float]]:
        self._redis.check()
        return [list(sample) for sample in self._redis.series.get(key, [])]


class _FakeSearch:
    def __init__(self, redis: "FakeRedis", index_name: str):
        self._redis = redis
        self._index_name = index_name

    async def info(self) -> dict:
        self._redis.check()
        if self._index_name not in self._redis.indexes:
            raise ResponseError("Unknown index name")
        return {"index_name": self._index_name}

    async def create_index(self, fields: list, definition: Any = None) -> str:
        self._redis.check()
        self._redis.indexes.add(self._index_name)
        return "OK"

    async def search(self, query: Any, query_params: dict | None = None) -> SimpleNamespace:
        self._redis.check()
        if self._index_name in self._redis.search_results:
            scored = list(self._redis.search_results[self._index_name])
        else:
            scored = self._scan(unpack_vector(query_params["query_vector"]))

        top_k = int(re.search(r"KNN (\d+)", query.query_string()).group(1))
        scored.sort(key=lambda item: item[1])
        docs = [
            SimpleNamespace(id=key, score=str(distance), **{k: v for k, v in fields.items() if k != "id"})
            for key, distance, fields in scored[:top_k]
        ]
        return SimpleNamespace(total=len(docs), docs=docs)

    def _scan(self, vector: list[float]) -> list[tuple[str, float, dict]]:
        prefix = self._redis.index_prefixes.get(self._index_name, "")
        scored = []
        for key, mapping in self._redis.hashes.items():
            if not key.startswith(prefix) or "vector" not in mapping:
                continue
            fields = {name: value for name, value in mapping.items() if name != "vector"}
            scored.append((key, cosine_distance(vector, unpack_vector(mapping["vector"])), fields))
        return scored


def cosine_distance(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return 1.0 if norm == 0 else 1.0 - dot / norm


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis``.

    Flip ``available`` to False to simulate an outage: every command then
    raises a connection error, as the real client does once retries run out.
    """

    def __init__(self) -> None:
        self.available = True
        self.timeseries_enabled = True
        self.closed = False
        self.documents: dict[str, Any] = {}
        self.streams: dict[str, list[tuple[str, dict[str, str]]]] = defaultdict(list)
        self.series: dict[str, list[list[float]]] = defaultdict(list)
        self.hashes: dict[str, dict[str, Any]] = {}
        self.zsets: dict[str, dict[str, float]] = defaultdict(dict)
        self.expirations: dict[str, int] = {}
        self.indexes: set[str] = set()
        self.index_prefixes = {"cache-index": "cache:prompt:", "facts-index": "fact:"}
        self.search_results: dict[str, list[tuple[str, float, dict]]] = {}
        self._seq = 0

    def check(self) -> None:
        if not self.available:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    async def ping(self) -> bool:
        self.check()
        return True

    async def dbsize(self) -> int:
        self.check()
        return len(self.documents) + len(self.streams) + len(self.series) + len(self.hashes)

    def json(self) -> _FakeJSON:
        return _FakeJSON(self)

    def ts(self) -> _FakeTimeSeries:
        return _FakeTimeSeries(self)

    def ft(self, index_name: str) -> _FakeSearch:
        return _FakeSearch(self, index_name)

    async def xadd(self, key: str, fields: dict[str, str]) -> str:
        self.check()
        self._seq += 1
        entry_id = f"{int(time.time() * 1000)}-{self._seq}"
        self.streams[key].append((entry_id, {k: str(v) for k, v in fields.items()}))
        return entry_id

    async def xrevrange(self, key: str, max: str = "+", min: str = "-", count: int | None = None) -> list:
        self.check()
        entries = list(reversed(self.streams.get(key, [])))
        return entries[:count] if count else entries

    async def hset(self, key: str, mapping: dict[str, Any]) -> int:
        self.check()
        self.hashes.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def expire(self, key: str, seconds: int) -> bool:
        self.check()
        self.expirations[key] = seconds
        return True

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self.check()
        self.zsets[key].update(mapping)
        return len(mapping)

    async def zcard(self, key: str) -> int:
        self.check()
        return len(self.zsets.get(key, {}))

    async def zpopmin(self, key: str, count: int = 1) -> list[tuple[str, float]]:
        self.check()
        members = sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1])[:count]
        for member, _score in members:
            del self.zsets[key][member]
        return members

    async def zremrangebyscore(self, key: str, min: str | float, max: str | float) -> int:
        self.check()
        low = float(min)
        high = float(max)
        doomed = [m for m, score in self.zsets.get(key, {}).items() if low <= score <= high]
        for member in doomed:
            del self.zsets[key][member]
        return len(doomed)

    async def delete(self, *keys: str) -> int:
        self.check()
        removed = 0
        for key in keys:
            for table in (self.documents, self.streams, self.series, self.hashes, self.zsets):
                if key in table:
                    del table[key]
                    removed += 1
        return removed

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================


class RecordingSink:
    """Event sink that keeps every emitted event."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def emit(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event["type"] for event in self.events]


class FakeGenerator(MessageGenerator):
    """Deterministic statements; agents listed in ``failing`` raise upstream errors."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[tuple[str, str, str]] = []

    async def generate(self, agent_id: str, debate_id: str, topic: str) -> GeneratedMessage:
        self.calls.append((agent_id, debate_id, topic))
        if agent_id in self.failing:
            raise UpstreamError(f"generation failed for {agent_id}")
        return GeneratedMessage(agent_id=agent_id, text=f"{agent_id} statement {len(self.calls)} on {topic}")


class GatedGenerator(MessageGenerator):
    """Blocks inside ``generate`` until ``release`` is set.

    The events are created lazily so they bind to the running loop.
    """

    def __init__(self) -> None:
        self.entered: asyncio.Event | None = None
        self.release: asyncio.Event | None = None
        self.calls = 0

    def arm(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, agent_id: str, debate_id: str, topic: str) -> GeneratedMessage:
        self.calls += 1
        self.entered.set()
        await self.release.wait()
        return GeneratedMessage(agent_id=agent_id, text="late statement")


class FakeEmbedder(Embedder):
    """Returns preset vectors per text, or a constant default."""

    def __init__(self, default: list[float] | None = None, fail: bool = False) -> None:
        self.default = default or [1.0, 0.0, 0.0]
        self.vectors: dict[str, list[float]] = {}
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise UpstreamError("embedding service down")
        return self.vectors.get(text, self.default)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# SHARED FIXTURES
# =============================================================================


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis: FakeRedis) -> RedisStoreClient:
    """Store client wired to the in-memory Redis double."""
    return RedisStoreClient(StoreConfig(operation_timeout_seconds=1.0), client=fake_redis)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def debate_config() -> DebateConfig:
    """Limits small enough to hit in a test; no waiting between turns."""
    return DebateConfig(
        max_concurrent_debates=3,
        max_agents=3,
        max_batch_topics=5,
        start_cooldown_seconds=1.0,
        message_cooldown_seconds=0,
        rounds=2,
    )


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(similarity_threshold=0.85, max_entries=3, embedding_dim=3)


@pytest.fixture
def app_config(debate_config: DebateConfig, cache_config: CacheConfig) -> AppConfig:
    return AppConfig(
        debate=debate_config.model_copy(update={"start_cooldown_seconds": 0}),
        cache=cache_config,
        system=SystemConfig(environment="test"),
    )


@pytest.fixture
def sample_debate_topic() -> str:
    return "climate change policy"


@pytest.fixture
def two_participants() -> list[str]:
    return ["senatorbot", "reformerbot"]


# =============================================================================
# PYTEST CONFIGURATION HOOKS
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
