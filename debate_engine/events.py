"""Realtime event contract shared by the lifecycle manager and runners."""

from datetime import datetime
from typing import Any, Protocol


class EventSink(Protocol):
    """Fire-and-forget destination for realtime events.

    ``emit`` must not block or await; implementations queue or drop.
    """

    def emit(self, event: dict[str, Any]) -> None: ...


def make_event(event_type: str, **payload: Any) -> dict[str, Any]:
    """Build an event envelope with a type tag and timestamp."""
    return {"type": event_type, **payload, "timestamp": datetime.now().isoformat()}
