"""Redis implementation of the store client.

One ``redis.asyncio`` connection pool serves every component. Connection
errors are retried by the pool's ``Retry`` policy with exponential backoff;
once that is exhausted the client flips to disconnected and read paths fall
back to their empty values while writes raise ``StorageUnavailableError``.
"""

import asyncio
import logging
import struct
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.commands.search.field import TextField, VectorField
from redis.commands.search.query import Query
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

try:
    from redis.commands.search.index_definition import IndexDefinition, IndexType
except ImportError:  # redis-py < 6 spells the module in camelCase
    from redis.commands.search.indexDefinition import IndexDefinition, IndexType

from config.settings import StoreConfig
from debate_engine.exceptions import StorageError, StorageUnavailableError
from .base import (
    MISSING,
    BaseStoreClient,
    HealthStatus,
    LogEntry,
    SeriesSample,
    SimilarityMatch,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

VECTOR_FIELD = "vector"


def pack_vector(vector: list[float]) -> bytes:
    """Encode a vector as little-endian FLOAT32 bytes for the search index."""
    return struct.pack(f"<{len(vector)}f", *vector)


def unpack_vector(blob: bytes) -> list[float]:
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


class RedisStoreClient(BaseStoreClient):
    """Store client backed by Redis with the JSON, Search and TimeSeries modules."""

    def __init__(self, config: StoreConfig, client: Redis | None = None):
        self.config = config
        self._client: Redis = client if client is not None else self._create_client()
        self._connected = False
        self._failures = 0
        self._last_error: str | None = None

    def _create_client(self) -> Redis:
        retry = Retry(
            ExponentialBackoff(
                cap=self.config.backoff_cap_seconds,
                base=self.config.backoff_base_seconds,
            ),
            self.config.max_retries,
        )
        return Redis.from_url(
            self.config.url,
            decode_responses=True,
            retry=retry,
            retry_on_error=[RedisConnectionError, RedisTimeoutError],
            socket_connect_timeout=self.config.socket_connect_timeout_seconds,
        )

    @property
    def is_connected(self) -> bool:
        return self._connected

    def get_status(self) -> dict[str, Any]:
        """Get connection status."""
        return {
            "connected": self._connected,
            "failures": self._failures,
            "last_error": self._last_error,
        }

    def _mark_connected(self) -> None:
        if not self._connected:
            logger.info("Redis connection established")
        self._connected = True
        self._last_error = None

    def _mark_disconnected(self, error: BaseException) -> None:
        if self._connected:
            logger.error(f"Redis connection lost: {error}")
        self._connected = False
        self._failures += 1
        self._last_error = str(error)

    async def _execute(
        self,
        name: str,
        operation: Callable[[Redis], Awaitable[T]],
        fallback: Any = MISSING,
        timeout: float | None = None,
    ) -> T:
        """Run ``operation`` and normalise failures.

        With no fallback the failure is raised as a ``StorageError``; with a
        fallback it is logged and the fallback returned.
        """
        try:
            if timeout is not None:
                result = await asyncio.wait_for(operation(self._client), timeout)
            else:
                result = await operation(self._client)
        except asyncio.TimeoutError as e:
            # Must precede OSError: asyncio.TimeoutError is the builtin TimeoutError
            error: StorageError = StorageError(
                f"Redis {name} timed out after {timeout}s", details={"operation": name}
            )
            cause: BaseException = e
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            self._mark_disconnected(e)
            error = StorageUnavailableError(
                f"Redis unavailable during {name}", details={"operation": name}
            )
            cause = e
        except RedisError as e:
            # The connection answered, so it is alive even though the command failed
            self._mark_connected()
            error = StorageError(f"Redis {name} failed: {e}", details={"operation": name})
            cause = e
        else:
            self._mark_connected()
            return result

        if fallback is not MISSING:
            logger.warning(f"{error.message}; using fallback value")
            return fallback
        raise error from cause

    async def connect(self) -> bool:
        """Verify the connection with a PING."""
        try:
            await self._execute("ping", lambda client: client.ping())
        except StorageError as e:
            logger.error(f"Redis connection failed: {e}")
            return False
        logger.info(f"Redis store connected at {self.config.url}")
        return True

    async def disconnect(self) -> None:
        """Graceful disconnect."""
        try:
            await self._client.aclose()
            logger.info("Redis client disconnected gracefully")
        except (RedisError, OSError) as e:
            logger.error(f"Error during Redis disconnect: {e}")
        finally:
            self._connected = False

    async def health_check(self) -> HealthStatus:
        timestamp = datetime.now().isoformat()
        timeout = self.config.operation_timeout_seconds
        try:
            ping = await self._execute("ping", lambda client: client.ping(), timeout=timeout)
            db_size = await self._execute("dbsize", lambda client: client.dbsize(), timeout=timeout)
        except StorageError as e:
            return {
                "status": "unhealthy",
                "connected": False,
                "error": e.message,
                "timestamp": timestamp,
            }
        return {
            "status": "healthy",
            "connected": True,
            "ping": "PONG" if ping is True else str(ping),
            "db_size": int(db_size),
            "timestamp": timestamp,
        }

    # Documents

    async def document_get(self, key: str, fallback: Any = MISSING) -> Any:
        return await self._execute(
            "document_get",
            lambda client: client.json().get(key),
            fallback=fallback,
            timeout=self.config.operation_timeout_seconds,
        )

    async def document_set(self, key: str, value: Any) -> None:
        await self._execute("document_set", lambda client: client.json().set(key, "$", value))

    # Logs

    async def log_append(self, key: str, fields: dict[str, str]) -> str:
        entry_id = await self._execute("log_append", lambda client: client.xadd(key, fields))
        return str(entry_id)

    async def log_read(
        self,
        key: str,
        range_start: str = "+",
        range_end: str = "-",
        limit: int | None = None,
    ) -> list[LogEntry]:
        raw = await self._execute(
            "log_read",
            lambda client: client.xrevrange(key, max=range_start, min=range_end, count=limit),
            fallback=[],
            timeout=self.config.operation_timeout_seconds,
        )
        return [{"id": str(entry_id), "fields": dict(fields)} for entry_id, fields in raw]

    # Series

    async def series_append(
        self, key: str, timestamp: int | str, value: float, degrade: bool = False
    ) -> int | None:
        stored = await self._execute(
            "series_append",
            lambda client: client.ts().add(key, timestamp, value),
            fallback=None if degrade else MISSING,
        )
        return None if stored is None else int(stored)

    async def series_range(
        self, key: str, start: int | str = "-", end: int | str = "+"
    ) -> list[SeriesSample]:
        raw = await self._execute(
            "series_range",
            lambda client: client.ts().range(key, start, end),
            fallback=[],
            timeout=self.config.operation_timeout_seconds,
        )
        return [{"timestamp": int(ts), "value": float(value)} for ts, value in raw]

    # Similarity index

    async def similarity_search(
        self,
        index_name: str,
        query_vector: list[float],
        top_k: int = 5,
        return_fields: list[str] | None = None,
    ) -> list[SimilarityMatch]:
        fields = list(return_fields or [])
        query = (
            Query(f"*=>[KNN {top_k} @{VECTOR_FIELD} $query_vector AS score]")
            .sort_by("score")
            .return_fields(*fields, "score")
            .paging(0, top_k)
            .dialect(2)
        )
        params = {"query_vector": pack_vector(query_vector)}

        result = await self._execute(
            "similarity_search",
            lambda client: client.ft(index_name).search(query, query_params=params),
            fallback=None,
            timeout=self.config.operation_timeout_seconds,
        )
        if result is None:
            return []

        matches = [
            SimilarityMatch(
                key=doc.id,
                distance=float(getattr(doc, "score", 1.0)),
                fields={name: getattr(doc, name, None) for name in fields},
            )
            for doc in result.docs
        ]
        matches.sort(key=lambda match: match.distance)
        return matches

    async def similarity_add(
        self,
        key: str,
        vector: list[float],
        fields: dict[str, str | int | float],
        ttl_seconds: int | None = None,
        registry_key: str | None = None,
    ) -> None:
        mapping: dict[str, Any] = {**fields, VECTOR_FIELD: pack_vector(vector)}

        async def write(client: Redis) -> None:
            await client.hset(key, mapping=mapping)
            if ttl_seconds:
                await client.expire(key, ttl_seconds)
            if registry_key:
                await client.zadd(registry_key, {key: time.time()})

        await self._execute("similarity_add", write)

    async def similarity_evict(
        self, registry_key: str, max_entries: int, max_age_seconds: int | None = None
    ) -> list[str]:
        async def evict(client: Redis) -> list[str]:
            if max_age_seconds:
                # Records past their TTL are already gone; drop them from the registry
                await client.zremrangebyscore(registry_key, "-inf", time.time() - max_age_seconds)
            overflow = int(await client.zcard(registry_key)) - max_entries
            if overflow <= 0:
                return []
            popped = await client.zpopmin(registry_key, overflow)
            keys = [member for member, _score in popped]
            if keys:
                await client.delete(*keys)
            return keys

        evicted = await self._execute("similarity_evict", evict)
        if evicted:
            logger.info(f"Evicted {len(evicted)} entries from {registry_key}")
        return evicted

    async def create_similarity_index(
        self,
        index_name: str,
        prefix: str,
        dim: int,
        text_fields: list[str] | None = None,
    ) -> bool:
        async def create(client: Redis) -> bool:
            search = client.ft(index_name)
            try:
                await search.info()
                return False
            except ResponseError:
                pass

            schema = [TextField(name) for name in (text_fields or [])]
            schema.append(
                VectorField(
                    VECTOR_FIELD,
                    "HNSW",
                    {"TYPE": "FLOAT32", "DIM": dim, "DISTANCE_METRIC": "COSINE"},
                )
            )
            await search.create_index(
                schema,
                definition=IndexDefinition(prefix=[prefix], index_type=IndexType.HASH),
            )
            return True

        created = await self._execute("create_similarity_index", create)
        if created:
            logger.info(f"Created vector index {index_name} on prefix {prefix}")
        return created
