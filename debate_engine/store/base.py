"""Abstract store client exposing the four persistence shapes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, TypedDict


class LogEntry(TypedDict):
    """A single immutable entry read back from a log."""

    id: str
    fields: dict[str, str]


class SeriesSample(TypedDict):
    """A (timestamp, value) pair from a numeric series."""

    timestamp: int
    value: float


class HealthStatus(TypedDict, total=False):
    status: str
    connected: bool
    ping: str | None
    db_size: int
    error: str
    timestamp: str


@dataclass
class SimilarityMatch:
    """A ranked nearest-neighbour result.

    ``distance`` is the cosine distance reported by the index; similarity is
    derived from it so callers never compare raw distances to thresholds.
    """

    key: str
    distance: float
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


class _Missing:
    """Sentinel meaning "no fallback supplied, raise on failure"."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


class BaseStoreClient(ABC):
    """Typed facade over the backing store.

    Writes raise ``StorageError`` on failure. Reads accept or imply a fallback
    and degrade to it instead of raising, so a store outage never cascades
    into foreground errors on read paths. Consult ``is_connected`` before
    treating an empty read as "no data".
    """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the last round-trip to the store succeeded."""
        pass

    @abstractmethod
    async def connect(self) -> bool:
        """Open the connection. Returns False (never raises) when unreachable."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection gracefully."""
        pass

    @abstractmethod
    async def health_check(self) -> HealthStatus:
        """Ping and size probe."""
        pass

    # Documents

    @abstractmethod
    async def document_get(self, key: str, fallback: Any = MISSING) -> Any:
        """Return the JSON document at ``key`` (None if absent)."""
        pass

    @abstractmethod
    async def document_set(self, key: str, value: Any) -> None:
        pass

    # Logs

    @abstractmethod
    async def log_append(self, key: str, fields: dict[str, str]) -> str:
        """Append an immutable entry and return its store-assigned id."""
        pass

    @abstractmethod
    async def log_read(
        self,
        key: str,
        range_start: str = "+",
        range_end: str = "-",
        limit: int | None = None,
    ) -> list[LogEntry]:
        """Read entries newest-first between ``range_start`` and ``range_end``."""
        pass

    # Series

    @abstractmethod
    async def series_append(
        self, key: str, timestamp: int | str, value: float, degrade: bool = False
    ) -> int | None:
        pass

    @abstractmethod
    async def series_range(
        self, key: str, start: int | str = "-", end: int | str = "+"
    ) -> list[SeriesSample]:
        pass

    # Similarity index

    @abstractmethod
    async def similarity_search(
        self,
        index_name: str,
        query_vector: list[float],
        top_k: int = 5,
        return_fields: list[str] | None = None,
    ) -> list[SimilarityMatch]:
        """Nearest neighbours ordered by ascending distance; ``[]`` on failure."""
        pass

    @abstractmethod
    async def similarity_add(
        self,
        key: str,
        vector: list[float],
        fields: dict[str, str | int | float],
        ttl_seconds: int | None = None,
        registry_key: str | None = None,
    ) -> None:
        """Write an indexable record, optionally registering it for eviction."""
        pass

    @abstractmethod
    async def similarity_evict(
        self, registry_key: str, max_entries: int, max_age_seconds: int | None = None
    ) -> list[str]:
        """Delete the oldest registered records beyond ``max_entries``."""
        pass

    @abstractmethod
    async def create_similarity_index(
        self,
        index_name: str,
        prefix: str,
        dim: int,
        text_fields: list[str] | None = None,
    ) -> bool:
        """Create a cosine vector index if it does not exist yet."""
        pass
