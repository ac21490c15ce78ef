"""Debate orchestration core: data models, error taxonomy and the turn runner."""

from .exceptions import ErrorCode, StanceStreamError
from .models import (
    AgentProfile,
    CancellationToken,
    DebateInstance,
    DebateStatus,
    FactCheckResult,
    GeneratedMessage,
    Tone,
)

__all__ = [
    "ErrorCode",
    "StanceStreamError",
    "AgentProfile",
    "CancellationToken",
    "DebateInstance",
    "DebateStatus",
    "FactCheckResult",
    "GeneratedMessage",
    "Tone",
]
