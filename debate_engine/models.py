"""Data models for the debate engine."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field

StanceValue = Annotated[float, Field(ge=0.0, le=1.0)]


class Tone(str, Enum):
    """Communication tone of an agent."""

    MEASURED = "measured"
    PASSIONATE = "passionate"
    ANALYTICAL = "analytical"
    AGGRESSIVE = "aggressive"
    DIPLOMATIC = "diplomatic"


class DebateStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class AgentProfile(BaseModel):
    """Persona document stored per agent."""

    name: str
    role: str
    tone: Tone = Tone.MEASURED
    stance: dict[str, StanceValue] = Field(default_factory=dict)
    biases: list[str] = Field(default_factory=list)

    def merged_with(self, updates: dict[str, Any]) -> "AgentProfile":
        """Return a new profile with a partial update applied.

        Scalar fields and ``biases`` are replaced; ``stance`` is merged key by
        key so updating one topic leaves the others intact. The result is
        re-validated, so an out-of-range stance never reaches storage.
        """
        data = self.model_dump(mode="json")
        for key, value in updates.items():
            if key == "stance" and value is not None:
                data["stance"] = {**data["stance"], **value}
            elif value is not None:
                data[key] = value
        return AgentProfile.model_validate(data)


class CancellationToken:
    """Cooperative stop flag handed to a debate's background task.

    The task checks ``cancelled`` at its checkpoints; nothing is interrupted
    mid-call.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on cancellation."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self.cancelled


@dataclass
class DebateInstance:
    """A live debate tracked by the lifecycle manager."""

    debate_id: str
    topic: str
    agents: list[str]
    status: DebateStatus = DebateStatus.RUNNING
    start_time: datetime = field(default_factory=datetime.now)
    message_count: int = 0
    fact_checks: int = 0
    failed_turns: int = 0

    def snapshot(self) -> dict[str, Any]:
        """Serializable view with elapsed duration."""
        elapsed = int((datetime.now() - self.start_time).total_seconds())
        return {
            "debateId": self.debate_id,
            "topic": self.topic,
            "agents": list(self.agents),
            "status": self.status.value,
            "startTime": self.start_time.isoformat(),
            "messageCount": self.message_count,
            "factChecks": self.fact_checks,
            "failedTurns": self.failed_turns,
            "duration": f"{elapsed}s",
        }


@dataclass
class GeneratedMessage:
    """Output of a message generator for one turn."""

    agent_id: str
    text: str
    cache_hit: bool = False
    similarity: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class FactCheckResult:
    """Closest known fact for a statement."""

    fact: str
    score: float
    fact_id: str | None = None


DEFAULT_AGENT_PROFILES: dict[str, AgentProfile] = {
    "senatorbot": AgentProfile(
        name="SenatorBot",
        role="Moderate US Senator",
        tone=Tone.MEASURED,
        stance={"climate_policy": 0.4, "economic_risk": 0.8},
        biases=["fiscal responsibility", "bipartisan compromise"],
    ),
    "reformerbot": AgentProfile(
        name="ReformerBot",
        role="Progressive Policy Advocate",
        tone=Tone.PASSIONATE,
        stance={"climate_policy": 0.9, "economic_risk": 0.3},
        biases=["climate justice", "rapid decarbonization", "green technology investments"],
    ),
}
