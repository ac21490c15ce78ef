import re

from pydantic import BaseModel, Field, field_validator

ID_PATTERN = r"^[a-zA-Z0-9_-]+$"
DEFAULT_AGENTS = ["senatorbot", "reformerbot"]


def validate_agent_ids(agents: list[str]) -> list[str]:
    """Shared participant list checks. Ids end up in store keys."""
    for agent_id in agents:
        if not 1 <= len(agent_id) <= 50:
            raise ValueError("Agent ids must be 1-50 characters")
        if not re.fullmatch(ID_PATTERN, agent_id):
            raise ValueError(f"Agent id '{agent_id}' may only contain letters, digits, underscores and hyphens")
    if len(set(agents)) != len(agents):
        raise ValueError("Agent ids must be unique")
    return agents


class DebateStartRequest(BaseModel):
    """Request model for starting a single debate."""

    debateId: str | None = Field(default=None, min_length=1, max_length=100, pattern=ID_PATTERN)
    topic: str = Field(default="climate change policy", min_length=3, max_length=200)
    agents: list[str] = Field(
        default_factory=lambda: list(DEFAULT_AGENTS), min_length=1, max_length=10
    )

    @field_validator("topic")
    @classmethod
    def strip_topic(cls, v: str) -> str:
        stripped = v.strip()
        if len(stripped) < 3:
            raise ValueError("Topic must be at least 3 characters")
        return stripped

    @field_validator("agents")
    @classmethod
    def validate_agents(cls, v: list[str]) -> list[str]:
        return validate_agent_ids(v)
