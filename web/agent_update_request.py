from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from debate_engine.models import StanceValue, Tone


class AgentUpdateRequest(BaseModel):
    """Partial agent profile update. Unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=100)
    role: str | None = Field(default=None, min_length=1, max_length=100)
    tone: Tone | None = None
    stance: dict[str, StanceValue] | None = None
    biases: list[str] | None = None

    def changes(self) -> dict[str, Any]:
        """Only the fields the caller actually sent."""
        return self.model_dump(mode="json", exclude_none=True)
