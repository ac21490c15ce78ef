"""Typed persistence over Redis documents, logs, series and vector indexes."""

from .base import (
    MISSING,
    BaseStoreClient,
    HealthStatus,
    LogEntry,
    SeriesSample,
    SimilarityMatch,
)
from .redis_store import RedisStoreClient, pack_vector, unpack_vector
from .schema import StoreSchemaManager

__all__ = [
    "MISSING",
    "BaseStoreClient",
    "HealthStatus",
    "LogEntry",
    "SeriesSample",
    "SimilarityMatch",
    "RedisStoreClient",
    "StoreSchemaManager",
    "pack_vector",
    "unpack_vector",
]
