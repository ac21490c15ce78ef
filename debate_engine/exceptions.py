"""Error taxonomy shared by the store, the lifecycle manager and the web layer."""

import math
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes exposed to API clients."""

    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    STORAGE = "storage"
    UPSTREAM = "upstream"
    INTERNAL = "internal"


class StanceStreamError(Exception):
    """Base exception for all application errors."""

    code: ErrorCode = ErrorCode.INTERNAL
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | list[Any] | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        """Render the uniform error envelope."""
        body: dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code.value,
        }
        if self.details is not None:
            body["details"] = self.details
        if self.retry_after is not None:
            body["retryAfter"] = self.retry_after
        return body


class ValidationError(StanceStreamError):
    """Malformed or out-of-range input."""

    code = ErrorCode.VALIDATION
    status_code = 400


class NotFoundError(ValidationError):
    status_code = 404


class ConflictError(ValidationError):
    status_code = 409


class RateLimitError(StanceStreamError):
    """Admission or lifecycle throttling. Always carries a retry hint."""

    code = ErrorCode.RATE_LIMIT
    status_code = 429

    def __init__(
        self,
        message: str,
        retry_after: float,
        details: dict[str, Any] | list[Any] | None = None,
    ):
        super().__init__(message, details=details, retry_after=max(1, math.ceil(retry_after)))


class StorageError(StanceStreamError):
    """Backing store operation failed."""

    code = ErrorCode.STORAGE
    status_code = 503


class StorageUnavailableError(StorageError):
    """Store could not be reached after reconnect attempts were exhausted."""


class UpstreamError(StanceStreamError):
    """External generation or verification service failed."""

    code = ErrorCode.UPSTREAM
    status_code = 503


# Lifecycle conditions. Each is distinct so callers can tell
# "try again shortly" apart from "system at capacity".


class CooldownActiveError(RateLimitError):
    """A debate was accepted too recently."""


class ConcurrencyLimitError(RateLimitError):
    """The concurrent debate ceiling has been reached."""


class DebateAlreadyRunningError(ConflictError):
    """Requested debate id is already live."""


class TooManyAgentsError(ValidationError):
    """Participant count exceeds the configured maximum."""


class DebateNotFoundError(NotFoundError):
    """No live debate with the requested id."""


class AgentNotFoundError(NotFoundError):
    """No stored profile for the requested agent."""
